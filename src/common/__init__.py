# ABOUTME: Makes the shared common package importable across engines.
# ABOUTME: Re-exports record schemas, engine configuration and frame helpers for convenience.

from .config import EngineConfig, load_engine_config
from .evaluation import calibration_table, evaluate_by_subject, evaluate_predictions
from .features import build_response_features, history_to_frame, load_item_bank
from .schemas import (
    AbilityState,
    Interaction,
    InterestProfile,
    InvalidItemError,
    Item,
    Prior,
    ResponseEvent,
    SkillState,
    SubjectScore,
)

__all__ = [
    "AbilityState",
    "EngineConfig",
    "Interaction",
    "InterestProfile",
    "InvalidItemError",
    "Item",
    "Prior",
    "ResponseEvent",
    "SkillState",
    "SubjectScore",
    "build_response_features",
    "calibration_table",
    "evaluate_by_subject",
    "evaluate_predictions",
    "history_to_frame",
    "load_item_bank",
    "load_engine_config",
]
