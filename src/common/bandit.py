# ABOUTME: Implements the UCB-style multi-armed bandit scorer over subjects.
# ABOUTME: Blends ability, interest and potential with an exploration bonus for data-scarce subjects.

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np

from .config import RecommendationConfig
from .schemas import clamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubjectSignals:
    """
    Inputs for one subject arm, each on a 0-1 scale.

    ``None`` marks a signal with no data behind it; it is replaced by the
    below-neutral default and reported through the ``*_available`` flags.
    """

    subject_id: str
    category: str = "unknown"
    ability: Optional[float] = None
    interest: Optional[float] = None
    potential: Optional[float] = None
    confidence: float = 0.0  # 0-100
    attempts: int = 0


@dataclass(frozen=True)
class ArmScore:
    score: float  # 0-100
    affinity: float
    reliability: float
    exploration_bonus: float
    ability: float
    interest: float
    potential: float

    def components(self) -> Dict[str, float]:
        return {
            "affinity": self.affinity,
            "reliability": self.reliability,
            "exploration_bonus": self.exploration_bonus,
        }


def reliability_factor(attempts: int, min_trusted_questions: int = 5) -> float:
    """0.7 with no answers, rising linearly to 1.0 at the trusted-question threshold."""
    threshold = max(1, min_trusted_questions)
    return 0.7 + 0.3 * clamp(max(0, attempts) / threshold, 0.0, 1.0)


def exploration_bonus(attempts: int, confidence: float) -> float:
    """
    Per-subject UCB exploration term scaled by uncertainty, capped at 1.0.

    (1 - confidence/100) * sqrt(2 ln(max(1, n) + 1) / (n + 1)); subjects with
    few attempts or low confidence get the larger bonus. The term depends only
    on the subject's own attempts, so answering other subjects never inflates it.
    """
    uncertainty = 1.0 - clamp(confidence, 0.0, 100.0) / 100.0
    n = max(0, attempts)
    return min(1.0, uncertainty * math.sqrt(2.0 * math.log(max(1, n) + 1) / (n + 1)))


def calculate_learning_potential(
    ability_score: float,
    interest_score: float,
    growth_rate: float = 0.0,
    recent_improvement: bool = False,
    confidence: float = 50.0,
) -> float:
    """
    Growth potential (0-100) from current ability and interest scores.

    Interest weighs more than ability (0.6 vs 0.4); positive growth adds up to
    20 points plus 10 for a recent improvement; low confidence discounts the
    result by up to 30%.
    """
    base = 0.4 * ability_score + 0.6 * interest_score
    bonus = min(20.0, growth_rate * 10.0) if growth_rate > 0 else 0.0
    if recent_improvement:
        bonus += 10.0
    multiplier = 0.7 + clamp(confidence, 0.0, 100.0) / 100.0 * 0.3
    return clamp((base + bonus) * multiplier, 0.0, 100.0)


class SubjectBandit:
    """
    Upper Confidence Bound scorer over subject arms.

    Algorithm:
    1. Fill missing signals with the below-neutral default
    2. Affinity = weighted mean of the signals, normalized by the weight sum
    3. Shrink affinity toward the default for subjects with few answers
    4. Add the UCB exploration bonus
    5. Score: affinity + w_explore * bonus * (1 - affinity)

    The bonus only fills the headroom above the affinity, so a subject with no
    data scores at most 0.35 + 0.65 * w_explore and never outranks a measured
    subject whose affinity is above that.
    """

    def __init__(self, config: Optional[RecommendationConfig] = None):
        self.config = config or RecommendationConfig()

    def _signal(self, value: Optional[float]) -> float:
        if value is None or not math.isfinite(value):
            return self.config.missing_signal_default
        return clamp(value, 0.0, 1.0)

    def affinity(self, signals: SubjectSignals) -> Tuple[float, float, Tuple[float, float, float]]:
        cfg = self.config
        values = (self._signal(signals.ability), self._signal(signals.interest), self._signal(signals.potential))
        weights = [max(0.0, w) for w in (cfg.ability_weight, cfg.interest_weight, cfg.potential_weight)]
        weight_sum = sum(weights)
        if weight_sum <= 0:
            base = cfg.missing_signal_default
        else:
            base = sum(w * v for w, v in zip(weights, values)) / weight_sum
        reliability = reliability_factor(signals.attempts, cfg.min_trusted_questions)
        shrunk = cfg.missing_signal_default + (base - cfg.missing_signal_default) * reliability
        return clamp(shrunk, 0.0, 1.0), reliability, values

    def score(self, signals: SubjectSignals) -> ArmScore:
        affinity, reliability, (ability, interest, potential) = self.affinity(signals)
        bonus = exploration_bonus(signals.attempts, signals.confidence)
        w_explore = clamp(self.config.exploration_weight, 0.0, 1.0)
        blended = affinity + w_explore * bonus * (1.0 - affinity)
        return ArmScore(
            score=clamp(blended, 0.0, 1.0) * 100.0,
            affinity=affinity,
            reliability=reliability,
            exploration_bonus=bonus,
            ability=ability,
            interest=interest,
            potential=potential,
        )


def thompson_sample(success_count: int, failure_count: int, rng: Optional[np.random.Generator] = None) -> float:
    """Draw a 0-100 score from Beta(successes + 1, failures + 1)."""
    rng = rng or np.random.default_rng()
    return float(rng.beta(max(0, success_count) + 1, max(0, failure_count) + 1)) * 100.0


def update_recommendation_weights(
    weights: RecommendationConfig,
    feedback: Mapping[str, Any],
    learning_rate: float = 0.1,
) -> RecommendationConfig:
    """
    Adapt blend weights from student feedback.

    A rejected or poorly rated recommendation raises the exploration weight
    (capped at 0.5). A successful outcome boosts the ability weight and an
    unsuccessful one the interest weight. The three signal weights are then
    renormalized to sum to 1.
    """
    accepted = bool(feedback.get("accepted", False))
    rating = float(feedback.get("rating", 0) or 0)
    outcome = feedback.get("outcome")

    exploration = weights.exploration_weight
    if not accepted or rating <= 2:
        exploration = min(0.5, exploration + learning_rate)

    ability, interest, potential = weights.ability_weight, weights.interest_weight, weights.potential_weight
    if outcome == "successful":
        ability *= 1.0 + learning_rate
    elif outcome == "unsuccessful":
        interest *= 1.0 + learning_rate

    total = ability + interest + potential
    if total <= 0:
        raise ValueError("Recommendation weights must have a positive sum.")
    logger.debug("Updated weights from feedback %s", dict(feedback))
    return replace(
        weights,
        ability_weight=ability / total,
        interest_weight=interest / total,
        potential_weight=potential / total,
        exploration_weight=exploration,
    )


def recommendation_confidence(attempts: int, confidence: float, ability_score: float, interest_score: float) -> Dict[str, Any]:
    data_confidence = min(100.0, max(0, attempts) / 5.0 * 100.0)
    consistency = 100.0 if abs(ability_score - interest_score) < 20 else 70.0
    overall = data_confidence * 0.4 + clamp(confidence, 0.0, 100.0) * 0.4 + consistency * 0.2
    if overall >= 80:
        level = "high"
    elif overall >= 60:
        level = "medium"
    else:
        level = "low"
    return {
        "score": overall,
        "level": level,
        "factors": {
            "data_confidence": data_confidence,
            "score_confidence": confidence,
            "consistency_confidence": consistency,
        },
    }
