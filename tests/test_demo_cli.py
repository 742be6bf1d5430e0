# ABOUTME: Verifies the assessment CLI exposes its commands and runs end to end.
# ABOUTME: Uses small CSV item banks and response logs written to a temp directory.

import json

import pandas as pd
from typer.testing import CliRunner

from scripts import run_assessment
from src.common.config import EngineConfig
from src.common.features import items_to_frame
from src.common.schemas import Item

runner = CliRunner()


def _items():
    items = []
    for sid, category in (("math", "stem"), ("art", "arts")):
        for index in range(8):
            items.append(
                Item(
                    item_id=f"{sid}-{index}",
                    subject_id=sid,
                    difficulty=-1.75 + 0.5 * index,
                    discrimination=1.2,
                    guessing=0.2,
                    category=category,
                )
            )
    return items


def _write_bank(tmp_path):
    path = tmp_path / "bank.csv"
    items_to_frame(_items()).drop(columns=["skill_ids"]).to_csv(path, index=False)
    return path


def test_cli_has_assessment_commands():
    app = run_assessment.app
    command_names = {cmd.name or cmd.callback.__name__ for cmd in app.registered_commands}
    assert {"simulate", "inspect-bank", "recommend"} <= command_names


def test_simulate_session_runs_to_completion():
    session = run_assessment.simulate_session(_items(), ["math", "art"], true_theta=0.5, config=EngineConfig(), seed=3)
    assert session.is_terminated
    assert all(s.is_complete for s in session.subjects.values())
    assert len(session.used_item_ids) == len(set(session.used_item_ids))


def test_simulate_command_prints_recommendations(tmp_path):
    bank = _write_bank(tmp_path)
    output = tmp_path / "session.json"
    result = runner.invoke(
        run_assessment.app,
        ["simulate", "--bank-path", str(bank), "--config", str(tmp_path / "missing.yaml"), "--seed", "5", "--output", str(output)],
    )
    assert result.exit_code == 0, result.output
    assert "Recommendations" in result.output
    saved = json.loads(output.read_text())
    assert saved["phase"] == "terminated"


def test_inspect_bank_reports_quarantined_rows(tmp_path):
    bank = _write_bank(tmp_path)
    frame = pd.read_csv(bank)
    frame.loc[0, "discrimination"] = -1.0
    frame.to_csv(bank, index=False)

    result = runner.invoke(run_assessment.app, ["inspect-bank", "--bank-path", str(bank)])
    assert result.exit_code == 0, result.output
    assert "quarantined" in result.output


def test_recommend_command_ranks_subjects_and_degrees(tmp_path):
    bank = _write_bank(tmp_path)
    responses = tmp_path / "responses.csv"
    pd.DataFrame(
        {
            "student_id": ["s1"] * 6,
            "item_id": ["math-3", "math-4", "math-5", "art-2", "art-3", "unknown"],
            "subject_id": ["math", "math", "math", "art", "art", "art"],
            "correct": [True, True, False, False, True, True],
            "time_taken_seconds": [45, 50, 70, 12, 30, 20],
        }
    ).to_csv(responses, index=False)
    degrees = tmp_path / "degrees.yaml"
    degrees.write_text("engineering:\n  math: 2\n  art: 1\ndesign:\n  art: 2\n")

    result = runner.invoke(
        run_assessment.app,
        [
            "recommend",
            "--responses-path",
            str(responses),
            "--bank-path",
            str(bank),
            "--student-id",
            "s1",
            "--config",
            str(tmp_path / "missing.yaml"),
            "--degree-weights",
            str(degrees),
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Subject Recommendations" in result.output
    assert "Degrees" in result.output


def test_missing_bank_exits_with_error(tmp_path):
    result = runner.invoke(run_assessment.app, ["inspect-bank", "--bank-path", str(tmp_path / "nope.parquet")])
    assert result.exit_code == 1
