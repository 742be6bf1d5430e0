# ABOUTME: Infers per-subject interest (0-100) from behavioural telemetry, independent of ability.
# ABOUTME: Updates profiles per interaction, smooths across sessions and classifies engagement trends.

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from .config import InterestConfig, TimingConfig
from .schemas import Interaction, InterestProfile, ResponseEvent, clamp
from .time_analysis import analyze_timing

logger = logging.getLogger(__name__)

INTEREST_REASONS: Dict[str, Dict[str, str]] = {
    "high_interest_high_performance": {
        "en": "You show strong interest and excellent performance in this subject",
        "ar": "تظهر اهتمامًا قويًا وأداءً ممتازًا في هذا الموضوع",
        "he": "אתה מראה עניין חזק וביצועים מצוינים בנושא זה",
    },
    "high_interest_developing_skills": {
        "en": "You are highly engaged and developing your skills in this area",
        "ar": "أنت منخرط بشكل كبير وتطور مهاراتك في هذا المجال",
        "he": "אתה מעורב מאוד ומפתח את כישוריך בתחום זה",
    },
    "engaged_thoughtful": {
        "en": "You take time to think deeply about this subject",
        "ar": "تأخذ وقتًا للتفكير بعمق في هذا الموضوع",
        "he": "אתה לוקח זמן לחשוב בעומק על הנושא הזה",
    },
    "consistent_interest": {
        "en": "You show consistent interest in this subject",
        "ar": "تظهر اهتمامًا ثابتًا بهذا الموضوع",
        "he": "אתה מראה עניין עקבי בנושא זה",
    },
    "moderate_interest": {
        "en": "This subject aligns with your interests",
        "ar": "هذا الموضوع يتماشى مع اهتماماتك",
        "he": "נושא זה מתאים לתחומי העניין שלך",
    },
}


@dataclass(frozen=True)
class EngagementPattern:
    trend: str
    consistency: float
    avg_time: Optional[float] = None
    std_dev: Optional[float] = None
    peak_engagement: Optional[Interaction] = None


def _metric(metrics: Mapping[str, Any], key: str) -> float:
    """Read a metric as a non-negative finite float; anything else counts as 0."""
    try:
        value = float(metrics.get(key) or 0.0)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) and value > 0 else 0.0


def calculate_interest_score(metrics: Mapping[str, Any], config: Optional[InterestConfig] = None) -> float:
    """
    Weighted interest score in [0, 100].

    Components (default weights): attempt rate 30, completion rate 25, time
    engagement 20 (peaks at the optimal time per question and decays linearly
    with the relative deviation), voluntary engagement 15 (saturates at three
    voluntary attempts) and success rate 10.
    """
    config = config or InterestConfig()
    w_attempt, w_completion, w_time, w_voluntary, w_success = config.weights

    attempted = _metric(metrics, "questions_attempted")
    total = _metric(metrics, "total_questions")
    attempt_rate = min(1.0, attempted / max(1.0, total))
    completion = clamp(_metric(metrics, "completion_rate"), 0.0, 100.0) / 100.0

    optimal = max(1e-6, config.optimal_time_seconds)
    deviation = abs(_metric(metrics, "avg_time_per_question") - optimal) / optimal
    time_engagement = max(0.0, 1.0 - deviation)

    voluntary = min(1.0, _metric(metrics, "voluntary_attempts") / max(1, config.voluntary_saturation))
    success = clamp(_metric(metrics, "correct_answers") / attempted, 0.0, 1.0) if attempted > 0 else 0.0

    score = (
        attempt_rate * w_attempt
        + completion * w_completion
        + time_engagement * w_time
        + voluntary * w_voluntary
        + success * w_success
    )
    return clamp(score, 0.0, 100.0)


def _seconds(value: Any) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return 0.0
    return seconds if math.isfinite(seconds) and seconds > 0 else 0.0


def update_interest(
    profile: Optional[InterestProfile],
    interaction: Interaction,
    config: Optional[InterestConfig] = None,
    subject_id: Optional[str] = None,
) -> InterestProfile:
    """
    Fold one interaction into a profile and return the new profile.

    The interaction window is bounded by ``config.history_window``; counters
    keep the full totals. ``subject_id`` is required when no profile exists.
    """
    config = config or InterestConfig()
    if profile is None:
        if subject_id is None:
            raise ValueError("subject_id is required when no interest profile exists.")
        profile = InterestProfile(subject_id=subject_id)

    seconds = _seconds(interaction.time_taken_seconds)
    interaction = replace(interaction, time_taken_seconds=seconds)
    attempted = profile.questions_attempted + 1
    time_spent = profile.time_spent + seconds
    voluntary = profile.voluntary_attempts + (1 if interaction.voluntary else 0)
    completed = profile.completed_questions + (1 if interaction.completed else 0)
    correct = profile.correct_answers + (1 if interaction.correct else 0)

    avg_time = time_spent / attempted
    completion_rate = clamp(completed / attempted * 100.0, 0.0, 100.0)
    accuracy = correct / attempted * 100.0
    score = calculate_interest_score(
        {
            "questions_attempted": attempted,
            "total_questions": profile.total_questions or attempted,
            "completion_rate": completion_rate,
            "avg_time_per_question": avg_time,
            "voluntary_attempts": voluntary,
            "correct_answers": correct,
        },
        config,
    )
    window = (profile.interactions + (interaction,))[-max(1, config.history_window):]

    return replace(
        profile,
        interest_score=score,
        time_spent=time_spent,
        questions_attempted=attempted,
        voluntary_attempts=voluntary,
        completed_questions=completed,
        correct_answers=correct,
        completion_rate=completion_rate,
        avg_time_per_question=avg_time,
        accuracy=accuracy,
        interactions=window,
    )


def profile_from_history(
    subject_id: str,
    events: Iterable[ResponseEvent],
    config: Optional[InterestConfig] = None,
) -> InterestProfile:
    """Rebuild a subject's interest profile from its response history alone."""
    profile = InterestProfile(subject_id=subject_id)
    for event in events:
        if event.subject_id == subject_id:
            profile = update_interest(profile, Interaction.from_response(event), config)
    return profile


def profiles_from_history(events: Sequence[ResponseEvent], config: Optional[InterestConfig] = None) -> Dict[str, InterestProfile]:
    subject_ids = dict.fromkeys(event.subject_id for event in events)
    return {sid: profile_from_history(sid, events, config) for sid in subject_ids}


def smooth_session_interest(
    previous_score: Optional[float],
    session_profile: InterestProfile,
    config: Optional[InterestConfig] = None,
    timing: Optional[TimingConfig] = None,
) -> int:
    """
    Blend a new session into the stored cross-session interest score.

    new = round(0.85 * prev + 0.15 * clamp(prev + delta, 0, 100)), where delta
    adds the timing reward, an accuracy nudge around the pivot and an
    engagement nudge from the session's own interest score. Without a previous
    score the session score is taken as is.
    """
    config = config or InterestConfig()
    if previous_score is None or not math.isfinite(previous_score):
        return int(round(clamp(session_profile.interest_score, 0.0, 100.0)))
    if not session_profile.has_data:
        return int(round(clamp(previous_score, 0.0, 100.0)))

    previous = clamp(previous_score, 0.0, 100.0)
    analysis = analyze_timing(session_profile.avg_time_per_question, session_profile.accuracy, timing)
    delta = (
        analysis.reward
        + (session_profile.accuracy - config.accuracy_pivot) * config.accuracy_nudge
        + (session_profile.interest_score - 50.0) * config.engagement_nudge
    )
    keep = clamp(config.smoothing_previous, 0.0, 1.0)
    blended = keep * previous + (1.0 - keep) * clamp(previous + delta, 0.0, 100.0)
    logger.debug("Smoothed interest %.1f -> %.1f (delta=%.2f, timing=%s)", previous, blended, delta, analysis.category)
    return int(round(clamp(blended, 0.0, 100.0)))


def classify_interest_level(score: float) -> str:
    if score >= 80:
        return "very_high"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    if score >= 20:
        return "low"
    return "very_low"


def detect_engagement_patterns(interactions: Sequence[Interaction], window: int = 5) -> EngagementPattern:
    """
    Trend and consistency of response times over the last ``window`` interactions.

    The trend counts rising versus falling consecutive times: more time spent
    reads as rising engagement. Consistency is 100 minus the coefficient of
    variation in percent, floored at 0.
    """
    if len(interactions) < 3:
        return EngagementPattern(trend="insufficient_data", consistency=0.0)

    recent = list(interactions)[-window:]
    times = [_seconds(i.time_taken_seconds) for i in recent]
    increasing = sum(1 for prev, cur in zip(times, times[1:]) if cur > prev)
    decreasing = sum(1 for prev, cur in zip(times, times[1:]) if cur < prev)
    if increasing > decreasing + 1:
        trend = "increasing"
    elif decreasing > increasing + 1:
        trend = "decreasing"
    else:
        trend = "stable"

    avg_time = sum(times) / len(times)
    std_dev = math.sqrt(sum((t - avg_time) ** 2 for t in times) / len(times))
    consistency = max(0.0, 100.0 - std_dev / max(1e-6, avg_time) * 100.0)
    peak = recent[times.index(max(times))]
    return EngagementPattern(trend=trend, consistency=consistency, avg_time=avg_time, std_dev=std_dev, peak_engagement=peak)


def predict_future_interest(profile: InterestProfile, config: Optional[InterestConfig] = None) -> Dict[str, Any]:
    config = config or InterestConfig()
    if len(profile.interactions) < 5:
        return {"predicted_score": profile.interest_score, "confidence": "low", "recommendation": "gather_more_data", "trend": None}

    pattern = detect_engagement_patterns(profile.interactions, config.trend_window)
    predicted = profile.interest_score
    if pattern.trend == "increasing":
        predicted = min(100.0, predicted + 10.0)
        recommendation = "high_potential"
    elif pattern.trend == "decreasing":
        predicted = max(0.0, predicted - 10.0)
        recommendation = "needs_motivation"
    else:
        recommendation = "maintain_engagement"

    if pattern.consistency > 70:
        confidence = "high"
    elif pattern.consistency > 40:
        confidence = "medium"
    else:
        confidence = "low"
    return {"predicted_score": predicted, "confidence": confidence, "recommendation": recommendation, "trend": pattern.trend}


def compare_interests(profiles: Mapping[str, InterestProfile]) -> List[Dict[str, Any]]:
    """Rank subjects by interest; the top 30% are flagged as top interests."""
    rows = [
        {
            "subject_id": sid,
            "interest_score": p.interest_score,
            "questions_attempted": p.questions_attempted,
            "avg_time": p.avg_time_per_question,
            "accuracy": p.accuracy,
        }
        for sid, p in profiles.items()
    ]
    rows.sort(key=lambda r: (-r["interest_score"], r["subject_id"]))
    top = math.ceil(len(rows) * 0.3)
    for index, row in enumerate(rows):
        row["rank"] = index + 1
        row["percentile"] = (len(rows) - index) / len(rows) * 100.0
        row["is_top_interest"] = row["rank"] <= top
    return rows


def discover_interests(responses: pd.DataFrame, config: Optional[InterestConfig] = None) -> pd.DataFrame:
    """
    Rank subjects from a discovery-phase response frame.

    Expects ``subject_id``, ``correct`` and ``time_taken_seconds`` columns.
    Every discovery question counts as completed and none as voluntary.
    """
    columns = ["subject_id", "interest_score", "questions_attempted", "avg_time", "accuracy"]
    if responses is None or responses.empty:
        return pd.DataFrame(columns=columns)

    frame = responses.copy()
    frame["time_taken_seconds"] = pd.to_numeric(frame["time_taken_seconds"], errors="coerce").fillna(0.0).clip(lower=0.0)
    frame["correct"] = frame["correct"].astype(bool)
    grouped = (
        frame.groupby("subject_id", sort=False)
        .agg(
            questions_attempted=("correct", "size"),
            correct_answers=("correct", "sum"),
            time_spent=("time_taken_seconds", "sum"),
        )
        .reset_index()
    )
    grouped["avg_time"] = grouped["time_spent"] / grouped["questions_attempted"]
    grouped["accuracy"] = grouped["correct_answers"] / grouped["questions_attempted"] * 100.0
    grouped["interest_score"] = [
        calculate_interest_score(
            {
                "questions_attempted": row.questions_attempted,
                "total_questions": row.questions_attempted,
                "completion_rate": 100.0,
                "avg_time_per_question": row.avg_time,
                "voluntary_attempts": 0,
                "correct_answers": row.correct_answers,
            },
            config,
        )
        for row in grouped.itertuples(index=False)
    ]
    return grouped.sort_values("interest_score", ascending=False, kind="mergesort")[columns].reset_index(drop=True)


def interest_reason_key(interest_score: float, accuracy: float, avg_time: float) -> str:
    if interest_score >= 80 and accuracy >= 70:
        return "high_interest_high_performance"
    if interest_score >= 80:
        return "high_interest_developing_skills"
    if interest_score >= 60 and avg_time > 60:
        return "engaged_thoughtful"
    if interest_score >= 60:
        return "consistent_interest"
    return "moderate_interest"


def generate_interest_recommendations(ranked: Sequence[Mapping[str, Any]], count: int = 3) -> List[Dict[str, Any]]:
    """Top subjects by interest among those with at least two attempts and a score above 30."""
    valid = [s for s in ranked if s.get("questions_attempted", 0) >= 2 and s.get("interest_score", 0) > 30]
    recommendations = []
    for index, subject in enumerate(valid[:count]):
        key = interest_reason_key(subject["interest_score"], subject.get("accuracy", 0.0), subject.get("avg_time", 0.0))
        recommendations.append(
            {
                "subject_id": subject["subject_id"],
                "rank": index + 1,
                "interest_score": subject["interest_score"],
                "interest_level": classify_interest_level(subject["interest_score"]),
                "reason_key": key,
                "reason": INTEREST_REASONS[key],
                "confidence": "high" if subject["questions_attempted"] >= 5 else "medium",
            }
        )
    return recommendations


def track_interest_evolution(scores: Sequence[float]) -> Dict[str, Any]:
    """Trend between the first and last stored interest scores."""
    if len(scores) < 2:
        return {"trend": "insufficient_data", "change": 0.0}
    first, last = float(scores[0]), float(scores[-1])
    change = last - first
    percent = change / max(1e-6, abs(first)) * 100.0
    if percent > 20:
        trend = "strongly_increasing"
    elif percent > 5:
        trend = "increasing"
    elif percent < -20:
        trend = "strongly_decreasing"
    elif percent < -5:
        trend = "decreasing"
    else:
        trend = "stable"
    return {"trend": trend, "change": change, "percent_change": percent, "initial_score": first, "current_score": last}
