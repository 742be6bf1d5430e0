# ABOUTME: Tests for adaptive item selection strategies.
# ABOUTME: Checks information ranking, randomesque picks, initial items and content balancing.

import unittest

import numpy as np

from src.common.config import SelectionConfig
from src.common.schemas import Item
from src.irt_cat.probability import item_information
from src.irt_cat.selection import (
    balance_content_coverage,
    choose_next,
    rank_by_difficulty_match,
    select_initial_item,
    select_item,
    selection_rng,
    unused_items,
)


def make_items():
    return [
        Item(item_id="q-easy", subject_id="math", difficulty=-2.0, discrimination=1.0, guessing=0.0, category="algebra"),
        Item(item_id="q-low", subject_id="math", difficulty=-0.5, discrimination=1.0, guessing=0.0, category="algebra"),
        Item(item_id="q-mid", subject_id="math", difficulty=0.1, discrimination=1.0, guessing=0.0, category="geometry"),
        Item(item_id="q-high", subject_id="math", difficulty=1.2, discrimination=1.0, guessing=0.0, category="geometry"),
        Item(item_id="q-hard", subject_id="math", difficulty=2.5, discrimination=1.0, guessing=0.0, category="stats"),
    ]


class TestSelectItem(unittest.TestCase):
    def setUp(self):
        self.items = make_items()

    def test_maximum_information_picks_most_informative(self):
        chosen = select_item(0.0, self.items, "maximum_information")
        best = max(self.items, key=lambda item: item_information(0.0, item))
        self.assertEqual(chosen, best)
        self.assertEqual(chosen.item_id, "q-mid")

    def test_difficulty_matching_picks_closest(self):
        self.assertEqual(select_item(1.0, self.items, "difficulty_matching").item_id, "q-high")

    def test_empty_candidates_return_none(self):
        self.assertIsNone(select_item(0.0, [], "maximum_information"))

    def test_unknown_strategy_raises(self):
        with self.assertRaises(ValueError):
            select_item(0.0, self.items, "most_popular")

    def test_random_is_reproducible_for_same_seed_and_step(self):
        first = select_item(0.0, self.items, "random", rng=selection_rng(7, 3))
        second = select_item(0.0, list(reversed(self.items)), "random", rng=selection_rng(7, 3))
        self.assertEqual(first, second)

    def test_randomness_limits_pick_to_top_candidates(self):
        ranked_ids = [i.item_id for i in sorted(self.items, key=lambda i: -item_information(0.0, i))]
        top_two = set(ranked_ids[:2])
        for step in range(20):
            chosen = select_item(0.0, self.items, "maximum_information", randomness=0.4, rng=selection_rng(1, step))
            self.assertIn(chosen.item_id, top_two)

    def test_zero_randomness_is_deterministic(self):
        picks = {select_item(0.0, self.items, "maximum_information", 0.0, selection_rng(1, s)).item_id for s in range(10)}
        self.assertEqual(picks, {"q-mid"})


class TestInitialAndSessionDispatch(unittest.TestCase):
    def setUp(self):
        self.items = make_items()

    def test_initial_item_comes_from_closest_to_target(self):
        closest = {i.item_id for i in rank_by_difficulty_match(0.0, self.items)[:2]}
        for step in range(10):
            chosen = select_initial_item(self.items, 0.0, top_n=2, rng=selection_rng(3, step))
            self.assertIn(chosen.item_id, closest)

    def test_initial_item_without_rng_is_closest(self):
        self.assertEqual(select_initial_item(self.items, 1.0).item_id, "q-high")
        self.assertIsNone(select_initial_item([]))

    def test_choose_next_uses_strategy_after_first_answer(self):
        config = SelectionConfig(strategy="difficulty_matching")
        chosen = choose_next(2.4, self.items, answered=3, config=config, rng=np.random.default_rng(0))
        self.assertEqual(chosen.item_id, "q-hard")

    def test_discovery_mode_samples_whole_pool(self):
        config = SelectionConfig()
        seen = {
            choose_next(0.0, self.items, answered=2, config=config, rng=selection_rng(5, s), discovery=True).item_id
            for s in range(60)
        }
        self.assertGreater(len(seen), 2)


def test_unused_items_filters_used_ids():
    items = make_items()
    remaining = unused_items(items, ["q-mid", "q-hard"])
    assert [i.item_id for i in remaining] == ["q-easy", "q-low", "q-high"]


def test_balance_content_coverage_prefers_least_used_category():
    items = make_items()
    used = [items[0], items[1], items[2]]
    candidates = [items[3], items[4]]
    assert [i.item_id for i in balance_content_coverage(candidates, used)] == ["q-hard"]
    assert balance_content_coverage([], used) == []
