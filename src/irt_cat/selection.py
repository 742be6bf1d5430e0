# ABOUTME: Chooses the next item for an adaptive test from the unused pool.
# ABOUTME: Implements maximum-information, difficulty-matching and random strategies.

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np

from src.common.config import SELECTION_STRATEGIES, SelectionConfig
from src.common.schemas import Item

from .probability import item_information

logger = logging.getLogger(__name__)


def selection_rng(seed: int, step: int) -> np.random.Generator:
    """Generator derived from the session seed and step, so draws replay identically."""
    return np.random.default_rng([int(seed), int(step)])


def unused_items(pool: Iterable[Item], used_ids: Iterable[str]) -> List[Item]:
    used = set(used_ids)
    return [item for item in pool if item.item_id not in used]


def rank_by_information(theta: float, candidates: Sequence[Item]) -> List[Item]:
    return sorted(candidates, key=lambda item: (-item_information(theta, item), item.item_id))


def rank_by_difficulty_match(theta: float, candidates: Sequence[Item]) -> List[Item]:
    return sorted(candidates, key=lambda item: (abs(item.difficulty - theta), item.item_id))


RANKERS: Dict[str, Callable[[float, Sequence[Item]], List[Item]]] = {
    "maximum_information": rank_by_information,
    "difficulty_matching": rank_by_difficulty_match,
}


def _pick_from_top(ranked: List[Item], randomness: float, rng: Optional[np.random.Generator]) -> Item:
    if rng is None or randomness <= 0 or randomness >= 1:
        return ranked[0]
    top_n = max(1, math.ceil(len(ranked) * randomness))
    return ranked[int(rng.integers(top_n))]


def select_item(
    theta: float,
    candidates: Sequence[Item],
    strategy: str = "maximum_information",
    randomness: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> Optional[Item]:
    """
    Pick one item from ``candidates`` (already filtered to unused items).

    ``randomness`` in (0, 1) picks uniformly among the best ``ceil(n * r)``
    candidates; 0 keeps selection deterministic. Returns None when empty.
    """
    if strategy not in SELECTION_STRATEGIES:
        raise ValueError(f"Unsupported selection strategy '{strategy}'. Expected one of: {', '.join(SELECTION_STRATEGIES)}.")
    if not candidates:
        return None
    if strategy == "random":
        ordered = sorted(candidates, key=lambda item: item.item_id)
        if rng is None:
            return ordered[0]
        return ordered[int(rng.integers(len(ordered)))]
    ranked = RANKERS[strategy](theta, candidates)
    return _pick_from_top(ranked, randomness, rng)


def select_initial_item(
    candidates: Sequence[Item],
    target_difficulty: float = 0.0,
    top_n: int = 5,
    rng: Optional[np.random.Generator] = None,
    discovery: bool = False,
) -> Optional[Item]:
    """
    First item of a subject: random among the ``top_n`` closest to the target
    difficulty, or uniform over the pool in interest-discovery mode.
    """
    if not candidates:
        return None
    if discovery:
        return select_item(target_difficulty, candidates, "random", rng=rng)
    ranked = rank_by_difficulty_match(target_difficulty, candidates)
    top = ranked[: max(1, min(top_n, len(ranked)))]
    if rng is None:
        return top[0]
    return top[int(rng.integers(len(top)))]


def balance_content_coverage(
    candidates: Sequence[Item],
    used_items: Iterable[Item],
    field: str = "category",
) -> List[Item]:
    """
    Keep only candidates from the least-covered content areas.

    Coverage is counted over ``used_items`` by the given Item attribute; areas
    never used count as zero. Falls back to all candidates if nothing matches.
    """
    counts = Counter(getattr(item, field, None) for item in used_items)
    if not candidates:
        return []
    lowest = min(counts.get(getattr(item, field, None), 0) for item in candidates)
    prioritized = [item for item in candidates if counts.get(getattr(item, field, None), 0) == lowest]
    return prioritized or list(candidates)


def choose_next(
    theta: float,
    available: Sequence[Item],
    answered: int,
    config: SelectionConfig,
    rng: np.random.Generator,
    discovery: bool = False,
) -> Optional[Item]:
    """Session-level dispatch: initial item for an unanswered subject, strategy afterwards."""
    if answered == 0:
        return select_initial_item(
            available,
            target_difficulty=config.initial_difficulty,
            top_n=config.initial_top_n,
            rng=rng,
            discovery=discovery,
        )
    strategy = "random" if discovery else config.strategy
    return select_item(theta, available, strategy, config.randomness, rng)
