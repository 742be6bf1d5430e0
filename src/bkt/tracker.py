# ABOUTME: Updates per-skill mastery with Bayesian Knowledge Tracing (learn/slip/guess).
# ABOUTME: Rebuilds skill states from response history and predicts correctness for pre-screening.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Sequence

from src.common.config import BktConfig
from src.common.schemas import ResponseEvent, SkillState, clamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BktParams:
    """
    Four BKT parameters plus the mastery classification cut-offs.

    p_learn: probability of moving from not-known to known after a practice opportunity.
    p_slip: probability of answering incorrectly despite knowing the skill.
    p_guess: probability of answering correctly without knowing the skill.
    p_init: prior mastery for a skill never seen before.
    """

    p_learn: float = 0.3
    p_slip: float = 0.1
    p_guess: float = 0.25
    p_init: float = 0.5
    mastered_at: float = 0.95
    practice_below: float = 0.7

    @classmethod
    def from_config(cls, config: BktConfig) -> "BktParams":
        return cls(
            p_learn=config.p_learn,
            p_slip=config.p_slip,
            p_guess=config.p_guess,
            p_init=config.p_init,
            mastered_at=config.mastered_at,
            practice_below=config.practice_below,
        )


def _posterior(p_know: float, correct: bool, params: BktParams) -> float:
    if correct:
        numerator = (1.0 - params.p_slip) * p_know
        evidence = numerator + params.p_guess * (1.0 - p_know)
    else:
        numerator = params.p_slip * p_know
        evidence = numerator + (1.0 - params.p_guess) * (1.0 - p_know)
    return numerator / max(1e-6, evidence)


def update_skill_mastery(
    skill_state: Optional[SkillState],
    correct: bool,
    params: Optional[BktParams] = None,
    skill_id: Optional[str] = None,
) -> SkillState:
    """
    Apply one observation to a skill and return the new state.

    The Bayes update conditions p_know on the response, then the learning
    transition p' = p + (1 - p) * p_learn is applied. A missing state starts
    from ``params.p_init``.
    """
    params = params or BktParams()
    if skill_state is None:
        if skill_id is None:
            raise ValueError("skill_id is required when no prior skill state is given.")
        skill_state = SkillState(skill_id=skill_id, p_know=params.p_init)

    posterior = _posterior(clamp(skill_state.p_know, 0.0, 1.0), correct, params)
    p_know = clamp(posterior + (1.0 - posterior) * params.p_learn, 0.0, 1.0)

    return SkillState(
        skill_id=skill_state.skill_id,
        p_know=p_know,
        attempts=skill_state.attempts + 1,
        correct_count=skill_state.correct_count + (1 if correct else 0),
        is_mastered=p_know >= params.mastered_at,
        needs_practice=p_know < params.practice_below,
    )


def update_multiple_skills(
    states: Mapping[str, SkillState],
    skill_ids: Iterable[str],
    correct: bool,
    params: Optional[BktParams] = None,
) -> Dict[str, SkillState]:
    """Update every tagged skill independently; untouched skills are carried over."""
    updated = dict(states)
    for skill_id in dict.fromkeys(skill_ids):
        updated[skill_id] = update_skill_mastery(updated.get(skill_id), correct, params, skill_id=skill_id)
    return updated


def overall_mastery(states: Mapping[str, SkillState]) -> Dict[str, float]:
    skills = list(states.values())
    if not skills:
        return {
            "average_mastery": 0.0,
            "mastered_count": 0,
            "total_skills": 0,
            "needs_practice_count": 0,
            "mastery_percentage": 0.0,
        }
    mastered = sum(1 for s in skills if s.is_mastered)
    return {
        "average_mastery": sum(s.p_know for s in skills) / len(skills),
        "mastered_count": mastered,
        "total_skills": len(skills),
        "needs_practice_count": sum(1 for s in skills if s.needs_practice),
        "mastery_percentage": mastered / len(skills) * 100.0,
    }


def predict_response_probability(
    states: Mapping[str, SkillState],
    required_skills: Sequence[str],
    params: Optional[BktParams] = None,
) -> float:
    """
    Expected correctness for an item needing ``required_skills``.

    Mastery is conjunctive: the product of per-skill p_know, then slip and
    guess are applied. Unseen skills use ``p_init``; no skills gives 0.5.
    Used for item pre-screening, never for live ability estimation.
    """
    params = params or BktParams()
    if not required_skills:
        return 0.5
    p_know_all = 1.0
    for skill_id in required_skills:
        state = states.get(skill_id)
        p_know_all *= params.p_init if state is None else state.p_know
    return p_know_all * (1.0 - params.p_slip) + (1.0 - p_know_all) * params.p_guess


def skills_from_history(
    events: Iterable[ResponseEvent],
    params: Optional[BktParams] = None,
) -> Dict[str, SkillState]:
    """Replay a response history into skill states; a pure function of the events."""
    states: Dict[str, SkillState] = {}
    for event in events:
        if event.skill_ids:
            states = update_multiple_skills(states, event.skill_ids, event.correct, params)
    return states
