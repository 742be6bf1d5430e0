# ABOUTME: Provides a CLI that runs simulated adaptive assessments and prints ranked recommendations.
# ABOUTME: Reads item banks and response logs from parquet/CSV; the engine itself stays I/O free.

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from src.common.config import EngineConfig, load_engine_config
from src.common.evaluation import evaluate_by_subject, evaluate_predictions
from src.common.features import frame_to_history, load_item_bank
from src.common.interest import classify_interest_level, profiles_from_history
from src.common.recommendation import recommend, recommend_degrees, subject_affinities
from src.common.schemas import Item, SubjectScore
from src.common.time_analysis import detect_rapid_guessing
from src.irt_cat.estimation import prequential_predictions, theta_to_percentage, update_ability_estimate
from src.irt_cat.probability import item_probability, total_information
from src.irt_cat.session import SessionComplete, SessionState, record_response, select_next_item, session_statistics, start_session

console = Console()
app = typer.Typer(help="Run IRT adaptive assessments and rank subject recommendations.")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show engine debug logging.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def read_frame(path: Path) -> pd.DataFrame:
    if not path.exists():
        console.print(f"[red]Missing file at {path}[/red]")
        raise typer.Exit(code=1)
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    return pd.read_csv(path)


def _load_bank(bank_path: Path) -> List[Item]:
    items, quarantined = load_item_bank(read_frame(bank_path))
    if not quarantined.empty:
        console.print(f"[yellow]Quarantined {len(quarantined)} malformed item(s)[/yellow]")
    if not items:
        console.print("[red]Item bank has no usable items[/red]")
        raise typer.Exit(code=1)
    return items


def simulate_session(
    items: Sequence[Item],
    subject_ids: Sequence[str],
    true_theta: float,
    config: EngineConfig,
    seed: int = 0,
    grade: Optional[int] = None,
    seconds_per_item: float = 45.0,
) -> SessionState:
    """Answer items as a simulated student whose responses follow the 3PL model at ``true_theta``."""
    rng = np.random.default_rng(seed)
    session = start_session(subject_ids, config, grade=grade, seed=seed)
    while True:
        session, served = select_next_item(session, items)
        if isinstance(served, SessionComplete):
            return session
        correct = bool(rng.random() < item_probability(true_theta, served))
        seconds = float(max(1.0, rng.normal(seconds_per_item, seconds_per_item / 3)))
        session = record_response(session, served, correct, seconds)


def _scores_table(scores: Sequence[SubjectScore]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Rank")
    table.add_column("Subject")
    table.add_column("Score")
    table.add_column("Ability")
    table.add_column("Interest")
    table.add_column("Potential")
    table.add_column("Reason")
    for score in scores:
        ability = f"{score.ability_score:.1f}" if score.ability_available else f"{score.ability_score:.1f} (default)"
        interest = f"{score.interest_score:.1f}" if score.interest_available else f"{score.interest_score:.1f} (default)"
        table.add_row(
            str(score.rank),
            score.subject_id,
            f"{score.recommendation_score:.1f}",
            ability,
            interest,
            f"{score.potential_score:.1f}",
            score.reasoning.get("en", ""),
        )
    return table


@app.command()
def simulate(
    bank_path: Path = typer.Option(Path("data/item_bank.parquet"), "--bank-path", help="Item bank parquet or CSV."),
    subjects: Optional[str] = typer.Option(None, "--subjects", help="Comma-separated subject ids; defaults to all."),
    true_theta: float = typer.Option(0.0, "--true-theta", help="Ability of the simulated student."),
    config_path: Optional[Path] = typer.Option(Path("configs/engine.yaml"), "--config", help="Engine config YAML."),
    seed: int = typer.Option(0, "--seed", help="Seed for item selection and simulated answers."),
    grade: Optional[int] = typer.Option(None, "--grade", help="School grade (1-12) for the ability prior."),
    output: Optional[Path] = typer.Option(None, "--output", help="Write the final session as JSON."),
) -> None:
    """
    Run one simulated multi-subject session and show abilities, statistics and recommendations.
    """
    config = load_engine_config(config_path if config_path and config_path.exists() else None)
    items = _load_bank(bank_path)
    subject_ids = [s.strip() for s in subjects.split(",")] if subjects else list(dict.fromkeys(i.subject_id for i in items))

    console.rule("[bold blue]Adaptive Assessment Simulation[/bold blue]")
    session = simulate_session(items, subject_ids, true_theta, config, seed=seed, grade=grade)
    stats = session_statistics(session)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Subject")
    table.add_column("Answered")
    table.add_column("Accuracy")
    table.add_column("Theta")
    table.add_column("SE")
    table.add_column("Confidence")
    table.add_column("Stopped")
    for sid, sub in stats["subjects"].items():
        table.add_row(
            sid,
            str(sub["questions_answered"]),
            f"{sub['accuracy']:.0f}%",
            f"{sub['theta']:.2f}",
            f"{sub['standard_error']:.2f}",
            f"{sub['stopping_confidence']:.0f}",
            str(sub["completion_reason"]),
        )
    console.print(table)
    console.print(f"[bold]Session:[/] {stats['questions_answered']} answer(s), {stats['completion_reason']}")

    predictions = pd.DataFrame(prequential_predictions(list(session.history), config.irt, grade))
    metrics = evaluate_predictions(predictions, ["auc", "brier", "calibration_ece"])
    console.print("[bold]Prequential fit:[/] " + ", ".join(f"{k}={v:.3f}" for k, v in metrics.items()))
    for row in evaluate_by_subject(predictions, ["brier"]).itertuples(index=False):
        console.print(f"[dim]  {row.subject_id}: brier={row.brier:.3f} over {row.n_responses} response(s)[/dim]")

    events = [e for e, _ in session.history]
    interests = profiles_from_history(events, config.interest)
    categories = {i.subject_id: i.category for i in items if i.category}
    scores = recommend(session.abilities(), interests, options=config.recommendation, categories=categories)
    console.print()
    console.print("[bold yellow]Recommendations[/bold yellow]")
    console.print(_scores_table(scores))

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(session.to_dict(), indent=2, default=str))
        console.print(f"[green]Session written to {output}[/green]")


@app.command("inspect-bank")
def inspect_bank(
    bank_path: Path = typer.Option(Path("data/item_bank.parquet"), "--bank-path", help="Item bank parquet or CSV."),
    theta: float = typer.Option(0.0, "--theta", help="Ability at which to report item information."),
) -> None:
    """
    Validate an item bank and summarize it per subject.
    """
    frame = read_frame(bank_path)
    items, quarantined = load_item_bank(frame)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Subject")
    table.add_column("Items")
    table.add_column("Mean b")
    table.add_column("Mean a")
    table.add_column(f"Info @ {theta:+.1f}")
    by_subject: Dict[str, List[Item]] = {}
    for item in items:
        by_subject.setdefault(item.subject_id, []).append(item)
    for sid, subject_items in sorted(by_subject.items()):
        table.add_row(
            sid,
            str(len(subject_items)),
            f"{np.mean([i.difficulty for i in subject_items]):.2f}",
            f"{np.mean([i.discrimination for i in subject_items]):.2f}",
            f"{total_information(theta, subject_items):.2f}",
        )
    console.print(table)

    if not quarantined.empty:
        console.print(f"[yellow]{len(quarantined)} quarantined row(s)[/yellow]")
        q_table = Table(show_header=True, header_style="bold red")
        q_table.add_column("Row")
        q_table.add_column("Error")
        for index, row in quarantined.iterrows():
            q_table.add_row(str(index), str(row["error"]))
        console.print(q_table)


@app.command("recommend")
def recommend_subjects(
    responses_path: Path = typer.Option(..., "--responses-path", help="Response log parquet or CSV."),
    bank_path: Path = typer.Option(Path("data/item_bank.parquet"), "--bank-path", help="Item bank parquet or CSV."),
    student_id: Optional[str] = typer.Option(None, "--student-id", help="Filter the log to one student."),
    config_path: Optional[Path] = typer.Option(Path("configs/engine.yaml"), "--config", help="Engine config YAML."),
    degree_weights_path: Optional[Path] = typer.Option(None, "--degree-weights", help="YAML mapping degree -> subject -> weight."),
    grade: Optional[int] = typer.Option(None, "--grade", help="School grade (1-12) for the ability prior."),
    limit: Optional[int] = typer.Option(None, "--limit", help="Number of subjects to show."),
) -> None:
    """
    Rebuild abilities and interests from a response log and rank subjects (and degrees).
    """
    config = load_engine_config(config_path if config_path and config_path.exists() else None)
    items = {i.item_id: i for i in _load_bank(bank_path)}
    frame = read_frame(responses_path)
    if student_id is not None and "student_id" in frame.columns:
        frame = frame.assign(student_id=frame["student_id"].astype(str))
        frame = frame[frame["student_id"] == student_id]
        alert = detect_rapid_guessing(frame, student_id, config.timing)
        if alert is not None:
            console.print(f"[yellow]Rapid guessing ({alert.severity}): {alert.recommendation}[/yellow]")
    events = [e for e in frame_to_history(frame) if e.item_id in items]
    if not events:
        console.print("[yellow]No responses match the item bank[/yellow]")
        raise typer.Exit(code=1)

    abilities = {}
    for sid in dict.fromkeys(e.subject_id for e in events):
        pairs = [(e, items[e.item_id]) for e in events if e.subject_id == sid]
        abilities[sid] = update_ability_estimate(pairs, config.irt, grade)
    interests = profiles_from_history(events, config.interest)

    options = config.recommendation
    if limit is not None:
        options = replace(options, limit=limit)
    categories = {i.subject_id: i.category for i in items.values() if i.category}
    scores = recommend(abilities, interests, options=options, categories=categories)

    console.rule("[bold blue]Subject Recommendations[/bold blue]")
    console.print(_scores_table(scores))
    for sid, profile in interests.items():
        console.print(
            f"[dim]{sid}: theta={abilities[sid].theta:+.2f} ({theta_to_percentage(abilities[sid].theta):.0f}%), "
            f"interest={profile.interest_score:.0f} ({classify_interest_level(profile.interest_score)})[/dim]"
        )

    if degree_weights_path is not None:
        with open(degree_weights_path) as f:
            degree_weights = yaml.safe_load(f) or {}
        # Degree scoring needs every subject, not just the displayed top-N.
        unfiltered = replace(options, limit=max(1, len(abilities)), min_interest=0.0, diversify=False)
        all_scores = recommend(abilities, interests, options=unfiltered, categories=categories)
        degrees = recommend_degrees(subject_affinities(all_scores), degree_weights, limit=options.limit)
        d_table = Table(show_header=True, header_style="bold magenta")
        d_table.add_column("Degree")
        d_table.add_column("Score")
        d_table.add_column("Top subjects")
        for degree in degrees:
            top = ", ".join(f"{c['subject_id']} ({c['contribution']:.2f})" for c in degree["top_subjects"])
            d_table.add_row(str(degree["degree_id"]), f"{degree['score']:.3f}", top)
        console.print()
        console.print("[bold yellow]Degrees[/bold yellow]")
        console.print(d_table)


if __name__ == "__main__":
    app()
