# ABOUTME: Tests response-time classification and rapid-guessing detection.
# ABOUTME: Uses synthetic response frames to trigger alerts, including config-driven thresholds.

import pandas as pd

from src.common.config import TimingConfig
from src.common.time_analysis import (
    GuessingAlert,
    analyze_timing,
    classify_response_time,
    detect_rapid_guessing,
    generate_timing_report,
)


def _mk_events(student_id: str, count: int, seconds: float, correct: bool, subject_id: str = "math"):
    return pd.DataFrame(
        {
            "student_id": [student_id] * count,
            "subject_id": [subject_id] * count,
            "correct": [correct] * count,
            "time_taken_seconds": [seconds] * count,
        }
    )


def test_classify_response_time_buckets():
    assert classify_response_time(4.0) == "very_fast"
    assert classify_response_time(45.0) == "optimal"
    assert classify_response_time(60.0) == "optimal"
    assert classify_response_time(75.0) == "moderate"
    assert classify_response_time(120.0) == "slow"
    assert classify_response_time(400.0) == "timeout_risk"
    assert classify_response_time(float("nan")) == "very_fast"


def test_fast_answers_split_into_mastery_and_guessing():
    mastery = analyze_timing(6.0, 90.0)
    guessing = analyze_timing(6.0, 20.0)
    rewards = TimingConfig().rewards

    assert mastery.confident_mastery and not mastery.likely_guessing
    assert mastery.reward == rewards["very_fast_mastery"]
    assert guessing.likely_guessing and not guessing.confident_mastery
    assert guessing.reward == rewards["very_fast_guessing"]
    assert analyze_timing(6.0, 65.0).reward == rewards["very_fast"]
    assert analyze_timing(40.0, 65.0).reward == rewards["optimal"]


def test_detect_rapid_guessing_flags_high_ratio():
    rapid = _mk_events("rusher", 15, 2.0, correct=False)
    slow = _mk_events("rusher", 5, 40.0, correct=True)
    df = pd.concat([rapid, slow])

    alert = detect_rapid_guessing(df, "rusher")
    assert isinstance(alert, GuessingAlert)
    assert alert.severity == "high"
    assert alert.evidence["rapid_responses"] == 15


def test_detect_rapid_guessing_ignores_short_or_calm_histories():
    assert detect_rapid_guessing(_mk_events("new", 5, 2.0, correct=False), "new") is None
    assert detect_rapid_guessing(_mk_events("calm", 20, 45.0, correct=True), "calm") is None


def test_detect_rapid_guessing_medium_severity():
    rapid = _mk_events("hurried", 6, 3.0, correct=False)
    slow = _mk_events("hurried", 14, 50.0, correct=True)
    alert = detect_rapid_guessing(pd.concat([rapid, slow]), "hurried")
    assert alert.severity == "medium"
    assert alert.evidence["rapid_share_pct"] == 30.0
    assert alert.evidence["rapid_accuracy_pct"] == 0.0


def test_fast_correct_answers_are_not_guessing():
    quick = _mk_events("ace", 12, 4.0, correct=True)
    slow = _mk_events("ace", 8, 40.0, correct=True)
    assert detect_rapid_guessing(pd.concat([quick, slow]), "ace") is None


def test_detect_rapid_guessing_low_severity_for_mixed_accuracy():
    events = pd.concat(
        [
            _mk_events("mixed", 3, 4.0, correct=True),
            _mk_events("mixed", 2, 4.0, correct=False),
            _mk_events("mixed", 15, 40.0, correct=True),
        ]
    )
    assert detect_rapid_guessing(events, "mixed").severity == "low"


def test_rapid_guessing_follows_timing_config():
    events = pd.concat([_mk_events("s9", 12, 8.0, correct=False), _mk_events("s9", 8, 45.0, correct=True)])

    assert detect_rapid_guessing(events, "s9").severity == "high"
    # 8 s is no longer "very fast" once the bucket ends at 5 s.
    assert classify_response_time(8.0, TimingConfig(very_fast_below=5.0)) == "optimal"
    assert detect_rapid_guessing(events, "s9", TimingConfig(very_fast_below=5.0)) is None
    assert detect_rapid_guessing(events, "s9", TimingConfig(rushing_share=0.7)) is None
    assert detect_rapid_guessing(events, "s9", TimingConfig(min_guessing_responses=30)) is None


def test_generate_timing_report_groups_by_student_and_subject():
    df = pd.concat(
        [
            _mk_events("s1", 4, 30.0, correct=True, subject_id="math"),
            _mk_events("s1", 3, 5.0, correct=False, subject_id="art"),
        ]
    )
    report = generate_timing_report(df).set_index("subject_id")
    assert report.loc["math", "category"] == "optimal"
    assert bool(report.loc["art", "likely_guessing"])
    assert report.loc["math", "accuracy"] == 100.0
    assert generate_timing_report(pd.DataFrame()).empty
