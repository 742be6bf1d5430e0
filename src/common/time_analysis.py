# ABOUTME: Classifies response timing and flags rushing or rapid guessing from response telemetry.
# ABOUTME: Feeds timing rewards into interest smoothing and builds per-student timing reports.

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional

import pandas as pd

from .config import TimingConfig

TIME_CATEGORIES = ("very_fast", "optimal", "moderate", "slow", "timeout_risk")


@dataclass(frozen=True)
class TimingAnalysis:
    category: str
    likely_guessing: bool
    confident_mastery: bool
    reward: float


@dataclass
class GuessingAlert:
    student_id: str
    severity: str
    evidence: Dict
    recommendation: str


def classify_response_time(avg_seconds: float, thresholds: Optional[TimingConfig] = None) -> str:
    thresholds = thresholds or TimingConfig()
    seconds = avg_seconds if math.isfinite(avg_seconds) else 0.0
    if seconds < thresholds.very_fast_below:
        return "very_fast"
    if seconds <= thresholds.optimal_up_to:
        return "optimal"
    if seconds <= thresholds.moderate_up_to:
        return "moderate"
    if seconds <= thresholds.slow_up_to:
        return "slow"
    return "timeout_risk"


def analyze_timing(avg_seconds: float, accuracy: float, thresholds: Optional[TimingConfig] = None) -> TimingAnalysis:
    """
    Combine the time bucket with accuracy (0-100).

    Very fast answers with low accuracy look like guessing and are penalized;
    very fast answers with high accuracy read as confident mastery and are
    rewarded. Other buckets carry their configured reward.
    """
    thresholds = thresholds or TimingConfig()
    category = classify_response_time(avg_seconds, thresholds)
    rewards = thresholds.rewards
    if category == "very_fast":
        if accuracy >= thresholds.high_accuracy:
            return TimingAnalysis(category, False, True, rewards["very_fast_mastery"])
        if accuracy < thresholds.low_accuracy:
            return TimingAnalysis(category, True, False, rewards["very_fast_guessing"])
    return TimingAnalysis(category, False, False, rewards[category])


def detect_rapid_guessing(
    events_df: pd.DataFrame,
    student_id: str,
    thresholds: Optional[TimingConfig] = None,
) -> Optional[GuessingAlert]:
    """
    Flag a student who rushes through a large share of their answers.

    A response is rapid when ``classify_response_time`` puts it in the
    ``very_fast`` bucket, so the alert and ``analyze_timing`` share one
    definition. Rapid answers that are mostly correct read as mastery and raise
    no alert; mostly incorrect ones raise ``medium``, or ``high`` once the rapid
    share is twice ``rushing_share``. Anything in between is ``low``.
    """
    thresholds = thresholds or TimingConfig()
    student_events = events_df[events_df["student_id"] == student_id]
    total = len(student_events)
    if total < thresholds.min_guessing_responses:
        return None

    seconds = pd.to_numeric(student_events["time_taken_seconds"], errors="coerce").fillna(0.0)
    is_rapid = seconds.map(lambda s: classify_response_time(float(s), thresholds) == "very_fast").astype(bool).to_numpy()
    rapid = student_events[is_rapid]
    rapid_share = len(rapid) / total
    if rapid.empty or rapid_share < thresholds.rushing_share:
        return None

    rapid_accuracy = float(rapid["correct"].astype(float).mean() * 100.0)
    analysis = analyze_timing(float(seconds.to_numpy()[is_rapid].mean()), rapid_accuracy, thresholds)
    if analysis.confident_mastery:
        return None
    if analysis.likely_guessing:
        severity = "high" if rapid_share >= 2 * thresholds.rushing_share else "medium"
        advice = "Rapid answers are mostly wrong. Discount this session's interest signal and slow the pace."
    else:
        severity = "low"
        advice = "Some answers are rushed. Keep an eye on pacing."

    return GuessingAlert(
        student_id=student_id,
        severity=severity,
        evidence={
            "rapid_responses": int(len(rapid)),
            "total_responses": int(total),
            "rapid_share_pct": round(rapid_share * 100, 1),
            "rapid_accuracy_pct": round(rapid_accuracy, 1),
            "rapid_below_seconds": thresholds.very_fast_below,
        },
        recommendation=advice,
    )


def generate_timing_report(events_df: pd.DataFrame, thresholds: Optional[TimingConfig] = None) -> pd.DataFrame:
    """One row per (student, subject): average time, accuracy, time bucket and reward."""
    columns = ["student_id", "subject_id", "avg_time_seconds", "accuracy", "category", "likely_guessing", "confident_mastery", "reward"]
    if events_df is None or events_df.empty:
        return pd.DataFrame(columns=columns)

    rows: List[Dict] = []
    for (student_id, subject_id), group in events_df.groupby(["student_id", "subject_id"], sort=True):
        avg_time = float(pd.to_numeric(group["time_taken_seconds"], errors="coerce").fillna(0.0).mean())
        accuracy = float(group["correct"].astype(float).mean() * 100.0)
        analysis = analyze_timing(avg_time, accuracy, thresholds)
        rows.append(
            {
                "student_id": student_id,
                "subject_id": subject_id,
                "avg_time_seconds": avg_time,
                "accuracy": accuracy,
                "category": analysis.category,
                "likely_guessing": analysis.likely_guessing,
                "confident_mastery": analysis.confident_mastery,
                "reward": analysis.reward,
            }
        )
    return pd.DataFrame(rows, columns=columns)
