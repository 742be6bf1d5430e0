# ABOUTME: Bayesian Knowledge Tracing package tracking per-skill mastery.
# ABOUTME: Exposes the tracker functions used alongside ability estimation.

from .tracker import (
    BktParams,
    overall_mastery,
    predict_response_probability,
    skills_from_history,
    update_multiple_skills,
    update_skill_mastery,
)

__all__ = [
    "BktParams",
    "overall_mastery",
    "predict_response_probability",
    "skills_from_history",
    "update_multiple_skills",
    "update_skill_mastery",
]
