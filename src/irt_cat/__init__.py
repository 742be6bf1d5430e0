# ABOUTME: IRT-driven computerized adaptive testing package.
# ABOUTME: Re-exports the probability model, estimators, selectors and session operations.

from .estimation import (
    adaptive_prior,
    confidence_interval,
    estimate_ability,
    estimate_eap,
    estimate_mle,
    grade_based_prior,
    is_precision_sufficient,
    percentage_to_theta,
    theta_to_percentage,
)
from .probability import expected_score, information, probability
from .selection import balance_content_coverage, select_initial_item, select_item
from .session import (
    SessionComplete,
    SessionPhase,
    SessionState,
    SubjectState,
    pause_session,
    rebuild_session,
    record_response,
    resume_session,
    select_next_item,
    session_statistics,
    start_session,
)

__all__ = [
    "SessionComplete",
    "SessionPhase",
    "SessionState",
    "SubjectState",
    "adaptive_prior",
    "balance_content_coverage",
    "confidence_interval",
    "estimate_ability",
    "estimate_eap",
    "estimate_mle",
    "expected_score",
    "grade_based_prior",
    "information",
    "is_precision_sufficient",
    "pause_session",
    "percentage_to_theta",
    "probability",
    "rebuild_session",
    "record_response",
    "resume_session",
    "select_initial_item",
    "select_item",
    "select_next_item",
    "session_statistics",
    "start_session",
    "theta_to_percentage",
]
