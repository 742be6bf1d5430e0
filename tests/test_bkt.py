# ABOUTME: Tests for Bayesian Knowledge Tracing mastery updates.
# ABOUTME: Verifies update direction, multi-skill updates, replay and response prediction.

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from src.bkt.tracker import (
    BktParams,
    overall_mastery,
    predict_response_probability,
    skills_from_history,
    update_multiple_skills,
    update_skill_mastery,
)
from src.common.config import BktConfig
from src.common.schemas import ResponseEvent, SkillState


@settings(max_examples=100, deadline=None)
@given(p_know=st.floats(min_value=0.0, max_value=1.0, allow_nan=False, allow_infinity=False))
def test_correct_never_lowers_mastery_below_incorrect(p_know):
    """Property: a correct answer leaves p_know at least as high as an incorrect one."""
    state = SkillState(skill_id="fractions", p_know=p_know)
    after_correct = update_skill_mastery(state, True)
    after_incorrect = update_skill_mastery(state, False)
    assert after_correct.p_know >= after_incorrect.p_know
    assert 0.0 <= after_incorrect.p_know <= 1.0
    assert 0.0 <= after_correct.p_know <= 1.0


@settings(max_examples=100, deadline=None)
@given(
    p_know=st.floats(min_value=0.0, max_value=0.999, allow_nan=False, allow_infinity=False),
    streak=st.integers(min_value=1, max_value=8),
)
def test_correct_streak_never_lowers_mastery(p_know, streak):
    """Property: each correct answer leaves p_know at or above its pre-update value."""
    state = SkillState(skill_id="fractions", p_know=p_know)
    for _ in range(streak):
        updated = update_skill_mastery(state, True)
        assert updated.p_know >= state.p_know
        state = updated


def test_known_update_values():
    params = BktParams()
    state = update_skill_mastery(None, True, params, skill_id="algebra")
    # posterior = 0.45 / (0.45 + 0.125) then learning transition.
    posterior = 0.45 / 0.575
    assert state.p_know == pytest.approx(posterior + (1 - posterior) * 0.3)
    assert state.attempts == 1
    assert state.correct_count == 1


def test_repeated_correct_answers_reach_mastery():
    state = None
    for _ in range(6):
        state = update_skill_mastery(state, True, skill_id="algebra")
    assert state.is_mastered
    assert not state.needs_practice


def test_missing_state_requires_skill_id():
    with pytest.raises(ValueError):
        update_skill_mastery(None, True)


def test_update_multiple_skills_keeps_untouched_skills():
    states = {"geometry": SkillState(skill_id="geometry", p_know=0.4)}
    updated = update_multiple_skills(states, ["algebra", "fractions", "algebra"], False)
    assert set(updated) == {"geometry", "algebra", "fractions"}
    assert updated["geometry"] == states["geometry"]
    assert updated["algebra"].attempts == 1


def test_overall_mastery_summary():
    states = {
        "a": SkillState(skill_id="a", p_know=0.97, is_mastered=True, needs_practice=False),
        "b": SkillState(skill_id="b", p_know=0.5, is_mastered=False, needs_practice=True),
    }
    summary = overall_mastery(states)
    assert summary["total_skills"] == 2
    assert summary["mastered_count"] == 1
    assert summary["needs_practice_count"] == 1
    assert summary["mastery_percentage"] == 50.0
    assert summary["average_mastery"] == pytest.approx(0.735)
    assert overall_mastery({})["total_skills"] == 0


def test_predict_response_probability():
    params = BktParams()
    assert predict_response_probability({}, [], params) == 0.5
    # Unseen skill uses p_init.
    assert predict_response_probability({}, ["x"], params) == pytest.approx(0.5 * 0.9 + 0.5 * 0.25)

    states = {"x": SkillState(skill_id="x", p_know=1.0), "y": SkillState(skill_id="y", p_know=0.0)}
    assert predict_response_probability(states, ["x"], params) == pytest.approx(0.9)
    assert predict_response_probability(states, ["x", "y"], params) == pytest.approx(0.25)


def test_skills_from_history_replays_tagged_events():
    events = [
        ResponseEvent(item_id="q1", subject_id="math", correct=True, time_taken_seconds=30, skill_ids=("algebra",)),
        ResponseEvent(item_id="q2", subject_id="math", correct=False, time_taken_seconds=30),
        ResponseEvent(item_id="q3", subject_id="math", correct=True, time_taken_seconds=30, skill_ids=("algebra", "ratios")),
    ]
    states = skills_from_history(events)
    assert set(states) == {"algebra", "ratios"}
    assert states["algebra"].attempts == 2
    assert skills_from_history(events) == states


def test_params_from_config():
    params = BktParams.from_config(BktConfig(p_learn=0.1, mastered_at=0.9))
    assert params.p_learn == 0.1
    assert params.mastered_at == 0.9
