# ABOUTME: Unit tests for the UCB subject bandit used by recommendations.
# ABOUTME: Verifies default handling, shrinkage, exploration and weight adaptation.

import math
import unittest

import numpy as np

from src.common.bandit import (
    SubjectBandit,
    SubjectSignals,
    calculate_learning_potential,
    exploration_bonus,
    recommendation_confidence,
    reliability_factor,
    thompson_sample,
    update_recommendation_weights,
)
from src.common.config import RecommendationConfig


class TestSubjectBandit(unittest.TestCase):
    def setUp(self):
        self.config = RecommendationConfig()
        self.bandit = SubjectBandit(self.config)

    def test_missing_signals_use_below_neutral_default(self):
        affinity, reliability, values = self.bandit.affinity(SubjectSignals(subject_id="art"))
        self.assertEqual(values, (0.35, 0.35, 0.35))
        self.assertAlmostEqual(affinity, 0.35)
        self.assertAlmostEqual(reliability, 0.7)

    def test_affinity_shrinks_toward_default_with_few_attempts(self):
        strong = dict(ability=0.9, interest=0.9, potential=0.9)
        fresh, _, _ = self.bandit.affinity(SubjectSignals(subject_id="math", attempts=1, **strong))
        trusted, _, _ = self.bandit.affinity(SubjectSignals(subject_id="math", attempts=5, **strong))
        self.assertAlmostEqual(trusted, 0.9)
        self.assertLess(fresh, trusted)
        self.assertGreater(fresh, 0.35)

    def test_weights_are_normalized(self):
        doubled = SubjectBandit(RecommendationConfig(ability_weight=0.8, interest_weight=0.6, potential_weight=0.6))
        signals = SubjectSignals(subject_id="math", ability=0.8, interest=0.4, potential=0.6, attempts=10)
        self.assertAlmostEqual(doubled.affinity(signals)[0], self.bandit.affinity(signals)[0])

    def test_score_adds_bonus_within_headroom(self):
        signals = SubjectSignals(subject_id="math", ability=0.6, interest=0.7, potential=0.5, confidence=40, attempts=3)
        arm = self.bandit.score(signals)
        expected = arm.affinity + 0.3 * arm.exploration_bonus * (1 - arm.affinity)
        self.assertAlmostEqual(arm.score, expected * 100.0)
        self.assertGreaterEqual(arm.score, arm.affinity * 100.0)
        self.assertEqual(set(arm.components()), {"affinity", "reliability", "exploration_bonus"})

    def test_subject_without_data_stays_below_measured_affinity(self):
        empty = self.bandit.score(SubjectSignals(subject_id="art"))
        self.assertAlmostEqual(empty.exploration_bonus, 1.0)
        self.assertAlmostEqual(empty.score, (0.35 + 0.3 * 0.65) * 100.0)
        certain = SubjectSignals(subject_id="math", ability=0.7, interest=0.7, potential=0.7, confidence=100, attempts=8)
        self.assertLess(empty.score, self.bandit.score(certain).score)

    def test_non_finite_signal_is_treated_as_missing(self):
        _, _, values = self.bandit.affinity(SubjectSignals(subject_id="x", ability=float("nan"), interest=2.0))
        self.assertEqual(values[0], 0.35)
        self.assertEqual(values[1], 1.0)


class TestBanditHelpers(unittest.TestCase):
    def test_reliability_factor_range(self):
        self.assertAlmostEqual(reliability_factor(0), 0.7)
        self.assertAlmostEqual(reliability_factor(5), 1.0)
        self.assertAlmostEqual(reliability_factor(50), 1.0)

    def test_exploration_bonus_decreases_with_attempts_and_confidence(self):
        self.assertGreater(exploration_bonus(0, 0), exploration_bonus(10, 0))
        self.assertGreater(exploration_bonus(3, 10), exploration_bonus(3, 90))
        self.assertEqual(exploration_bonus(3, 100), 0.0)
        self.assertAlmostEqual(exploration_bonus(1, 0), math.sqrt(math.log(2)))

    def test_exploration_bonus_is_capped(self):
        self.assertEqual(exploration_bonus(0, 0), 1.0)
        self.assertLessEqual(exploration_bonus(-4, 0), 1.0)

    def test_learning_potential(self):
        self.assertAlmostEqual(calculate_learning_potential(50, 50, confidence=100), 50.0)
        self.assertAlmostEqual(calculate_learning_potential(50, 50, confidence=0), 35.0)
        boosted = calculate_learning_potential(50, 50, growth_rate=5, recent_improvement=True, confidence=100)
        self.assertAlmostEqual(boosted, 80.0)
        self.assertEqual(calculate_learning_potential(100, 100, growth_rate=3, confidence=100), 100.0)

    def test_thompson_sample_is_seeded(self):
        first = thompson_sample(8, 2, np.random.default_rng(3))
        second = thompson_sample(8, 2, np.random.default_rng(3))
        self.assertEqual(first, second)
        self.assertTrue(0.0 <= first <= 100.0)

    def test_update_weights_from_feedback(self):
        base = RecommendationConfig()
        rejected = update_recommendation_weights(base, {"accepted": False, "rating": 1, "outcome": "unsuccessful"})
        self.assertAlmostEqual(rejected.exploration_weight, 0.4)
        self.assertGreater(rejected.interest_weight, base.interest_weight)
        self.assertAlmostEqual(rejected.ability_weight + rejected.interest_weight + rejected.potential_weight, 1.0)

        liked = update_recommendation_weights(base, {"accepted": True, "rating": 5, "outcome": "successful"})
        self.assertAlmostEqual(liked.exploration_weight, base.exploration_weight)
        self.assertGreater(liked.ability_weight, base.ability_weight)

        capped = base
        for _ in range(5):
            capped = update_recommendation_weights(capped, {"accepted": False})
        self.assertAlmostEqual(capped.exploration_weight, 0.5)

    def test_recommendation_confidence_levels(self):
        self.assertEqual(recommendation_confidence(10, 90, 70, 75)["level"], "high")
        self.assertEqual(recommendation_confidence(0, 0, 90, 20)["level"], "low")
