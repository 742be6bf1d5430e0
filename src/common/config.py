# ABOUTME: Declares the engine configuration consumed by every component at construction.
# ABOUTME: Loads YAML overrides on top of the documented defaults.

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Type, TypeVar

import yaml

T = TypeVar("T")

SELECTION_STRATEGIES = ("maximum_information", "difficulty_matching", "random")
ESTIMATORS = ("eap", "mle")


@dataclass(frozen=True)
class IrtConfig:
    """Ability estimation settings."""

    estimator: str = "eap"
    quadrature_points: int = 41
    max_iterations: int = 20
    tolerance: float = 1e-3
    extreme_pattern_confidence: float = 10.0
    adaptive_prior_window: int = 10
    default_prior_sd: float = 1.0


@dataclass(frozen=True)
class SelectionConfig:
    strategy: str = "maximum_information"
    randomness: float = 0.0
    initial_difficulty: float = 0.0
    initial_top_n: int = 5


@dataclass(frozen=True)
class StoppingConfig:
    """Per-subject question bounds and the binomial stopping rule."""

    min_questions: int = 5
    max_questions: int = 7
    confidence_stop_at: float = 75.0
    se_stop_at: float = 0.20


@dataclass(frozen=True)
class BktConfig:
    p_learn: float = 0.3
    p_slip: float = 0.1
    p_guess: float = 0.25
    p_init: float = 0.5
    mastered_at: float = 0.95
    practice_below: float = 0.7


@dataclass(frozen=True)
class TimingConfig:
    """Upper bounds (seconds) of each response-time bucket."""

    very_fast_below: float = 10.0
    optimal_up_to: float = 60.0
    moderate_up_to: float = 90.0
    slow_up_to: float = 150.0
    high_accuracy: float = 80.0
    low_accuracy: float = 50.0
    # Rapid-guessing alerts: a share of very fast answers over a minimum history.
    min_guessing_responses: int = 10
    rushing_share: float = 0.25
    rewards: Mapping[str, float] = field(
        default_factory=lambda: {
            "very_fast_mastery": 4.0,
            "very_fast_guessing": -6.0,
            "very_fast": -2.0,
            "optimal": 3.0,
            "moderate": 1.0,
            "slow": -1.0,
            "timeout_risk": -3.0,
        }
    )


@dataclass(frozen=True)
class InterestConfig:
    optimal_time_seconds: float = 60.0
    voluntary_saturation: int = 3
    weights: Tuple[float, float, float, float, float] = (30.0, 25.0, 20.0, 15.0, 10.0)
    history_window: int = 20
    trend_window: int = 5
    smoothing_previous: float = 0.85
    accuracy_pivot: float = 60.0
    accuracy_nudge: float = 0.08
    engagement_nudge: float = 0.05


@dataclass(frozen=True)
class RecommendationConfig:
    ability_weight: float = 0.4
    interest_weight: float = 0.3
    potential_weight: float = 0.3
    exploration_weight: float = 0.3
    missing_signal_default: float = 0.35
    min_trusted_questions: int = 5
    limit: int = 5
    min_interest: float = 30.0
    diversify: bool = True


@dataclass(frozen=True)
class EngineConfig:
    """Explicit tuning surface passed into every component."""

    irt: IrtConfig = field(default_factory=IrtConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    stopping: StoppingConfig = field(default_factory=StoppingConfig)
    bkt: BktConfig = field(default_factory=BktConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    interest: InterestConfig = field(default_factory=InterestConfig)
    recommendation: RecommendationConfig = field(default_factory=RecommendationConfig)

    def __post_init__(self) -> None:
        if self.irt.estimator not in ESTIMATORS:
            raise ValueError(f"Unsupported estimator '{self.irt.estimator}'. Expected one of: {', '.join(ESTIMATORS)}.")
        if self.irt.quadrature_points < 3:
            raise ValueError("quadrature_points must be at least 3.")
        if self.selection.strategy not in SELECTION_STRATEGIES:
            raise ValueError(
                f"Unsupported selection strategy '{self.selection.strategy}'. "
                f"Expected one of: {', '.join(SELECTION_STRATEGIES)}."
            )
        validate_question_bounds(self.stopping.min_questions, self.stopping.max_questions)

    def with_bounds(self, min_questions: int, max_questions: int) -> "EngineConfig":
        stopping = replace(self.stopping, min_questions=min_questions, max_questions=max_questions)
        return replace(self, stopping=stopping)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def validate_question_bounds(min_questions: int, max_questions: int) -> None:
    if min_questions < 1 or max_questions < 1:
        raise ValueError(f"Question bounds must be positive, got min={min_questions}, max={max_questions}.")
    if max_questions < min_questions:
        raise ValueError(f"max_questions ({max_questions}) must be >= min_questions ({min_questions}).")


def _section(cls: Type[T], values: Optional[Mapping[str, Any]]) -> T:
    if not values:
        return cls()
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}.")
    data = dict(values)
    if "weights" in data and isinstance(data["weights"], list):
        data["weights"] = tuple(data["weights"])
    if "rewards" in data:
        data["rewards"] = {**TimingConfig().rewards, **data["rewards"]}
    return cls(**data)


def engine_config_from_dict(cfg: Optional[Mapping[str, Any]]) -> EngineConfig:
    cfg = cfg or {}
    return EngineConfig(
        irt=_section(IrtConfig, cfg.get("irt")),
        selection=_section(SelectionConfig, cfg.get("selection")),
        stopping=_section(StoppingConfig, cfg.get("stopping")),
        bkt=_section(BktConfig, cfg.get("bkt")),
        timing=_section(TimingConfig, cfg.get("timing")),
        interest=_section(InterestConfig, cfg.get("interest")),
        recommendation=_section(RecommendationConfig, cfg.get("recommendation")),
    )


def load_engine_config(config_path: Optional[Path]) -> EngineConfig:
    """Load engine settings from YAML; missing keys keep their defaults."""

    if config_path is None:
        return EngineConfig()
    with open(config_path) as f:
        cfg = yaml.safe_load(f) or {}
    return engine_config_from_dict(cfg)
