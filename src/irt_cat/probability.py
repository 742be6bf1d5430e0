# ABOUTME: Implements the 3PL item response function and its Fisher information.
# ABOUTME: Pure, clamped, overflow-safe helpers shared by estimation and item selection.

from __future__ import annotations

import logging
import math
from typing import Iterable, Tuple

from src.common.schemas import (
    DEFAULT_GUESSING,
    DIFFICULTY_RANGE,
    DISCRIMINATION_RANGE,
    MAX_GUESSING,
    THETA_MAX,
    THETA_MIN,
    Item,
    clamp,
)

logger = logging.getLogger(__name__)

EXPONENT_LIMIT = 35.0
P_EPSILON = 1e-9
DENOMINATOR_FLOOR = 1e-6


def sanitize_parameters(theta: float, b: float, a: float, c: float) -> Tuple[float, float, float, float]:
    """Clamp theta and item parameters into their domains; NaN falls back to the domain centre."""

    raw = (theta, b, a, c)
    theta = 0.0 if math.isnan(theta) else clamp(theta, THETA_MIN, THETA_MAX)
    b = 0.0 if math.isnan(b) else clamp(b, *DIFFICULTY_RANGE)
    a = 1.0 if math.isnan(a) else clamp(a, *DISCRIMINATION_RANGE)
    c = DEFAULT_GUESSING if math.isnan(c) else clamp(c, 0.0, MAX_GUESSING)
    if (theta, b, a, c) != raw:
        logger.debug("Clamped IRT inputs %s -> %s", raw, (theta, b, a, c))
    return theta, b, a, c


def _logistic(x: float) -> float:
    x = clamp(x, -EXPONENT_LIMIT, EXPONENT_LIMIT)
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def probability(theta: float, b: float, a: float, c: float = DEFAULT_GUESSING) -> float:
    """
    Probability of a correct response under the 3PL model.

    P(theta) = c + (1 - c) / (1 + exp(-a (theta - b)))

    The result is kept strictly inside (c, 1) so log-likelihoods stay finite.
    """
    theta, b, a, c = sanitize_parameters(theta, b, a, c)
    p = c + (1.0 - c) * _logistic(a * (theta - b))
    gap = (1.0 - c) * P_EPSILON
    return clamp(p, c + gap, 1.0 - gap)


def probability_derivative(theta: float, b: float, a: float, c: float = DEFAULT_GUESSING) -> float:
    """dP/dtheta = a (P - c)(1 - P) / (1 - c)."""
    theta, b, a, c = sanitize_parameters(theta, b, a, c)
    p = probability(theta, b, a, c)
    return a * (p - c) * (1.0 - p) / max(DENOMINATOR_FLOOR, 1.0 - c)


def information(theta: float, b: float, a: float, c: float = DEFAULT_GUESSING) -> float:
    """
    Fisher information of a 3PL item at theta.

    I(theta) = a^2 * (Q / P) * ((P - c) / (1 - c))^2

    Peaks close to theta = b (exactly at b when c = 0) and shrinks as a -> 0
    or c -> 1.
    """
    theta, b, a, c = sanitize_parameters(theta, b, a, c)
    p = probability(theta, b, a, c)
    q = 1.0 - p
    ratio = (p - c) / max(DENOMINATOR_FLOOR, 1.0 - c)
    value = (a * a) * (q / max(DENOMINATOR_FLOOR, p)) * ratio * ratio
    return max(0.0, value)


def item_probability(theta: float, item: Item) -> float:
    return probability(theta, item.difficulty, item.discrimination, item.guessing)


def item_information(theta: float, item: Item) -> float:
    return information(theta, item.difficulty, item.discrimination, item.guessing)


def total_information(theta: float, items: Iterable[Item]) -> float:
    return sum(item_information(theta, item) for item in items)


def expected_score(theta: float, items: Iterable[Item]) -> Tuple[float, int, float]:
    """Expected number correct, item count and expected percentage at theta."""

    probs = [item_probability(theta, item) for item in items]
    if not probs:
        return 0.0, 0, 0.0
    total = float(sum(probs))
    return total, len(probs), total / len(probs) * 100.0
