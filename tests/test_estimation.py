# ABOUTME: Tests for MLE and EAP ability estimation, priors and theta scale conversions.
# ABOUTME: Covers extreme response patterns, empty histories and long-history stability.

import math
import unittest

from hypothesis import given, settings
from hypothesis import strategies as st

from src.common.config import IrtConfig
from src.common.schemas import Item, Prior, ResponseEvent
from src.irt_cat.estimation import (
    adaptive_prior,
    confidence_interval,
    estimate_ability,
    estimate_eap,
    estimate_mle,
    grade_based_prior,
    is_precision_sufficient,
    log_likelihood,
    percentage_to_theta,
    prequential_predictions,
    theta_to_percentage,
    update_ability_estimate,
)


def make_history(pattern, difficulties=None, subject_id="math", guessing=0.0):
    difficulties = difficulties or [(-2.0 + 4.0 * i / max(1, len(pattern) - 1)) for i in range(len(pattern))]
    history = []
    for index, (correct, b) in enumerate(zip(pattern, difficulties)):
        item = Item(item_id=f"{subject_id}-{index}", subject_id=subject_id, difficulty=b, discrimination=1.2, guessing=guessing)
        event = ResponseEvent(item_id=item.item_id, subject_id=subject_id, correct=correct, time_taken_seconds=40.0)
        history.append((event, item))
    return history


class TestThetaScale(unittest.TestCase):
    def test_endpoints_and_centre(self):
        self.assertEqual(theta_to_percentage(-3.0), 0.0)
        self.assertEqual(theta_to_percentage(0.0), 50.0)
        self.assertEqual(theta_to_percentage(3.0), 100.0)
        self.assertEqual(percentage_to_theta(50.0), 0.0)

    def test_out_of_range_values_are_clamped(self):
        self.assertEqual(theta_to_percentage(10.0), 100.0)
        self.assertEqual(percentage_to_theta(-20.0), -3.0)

    def test_confidence_interval_is_clamped_to_domain(self):
        interval = confidence_interval(0.0, 0.5, 0.95)
        self.assertAlmostEqual(interval.lower, -0.98)
        self.assertAlmostEqual(interval.upper, 0.98)
        self.assertAlmostEqual(interval.width, 1.96)

        edge = confidence_interval(2.5, 1.0, 0.95)
        self.assertEqual(edge.upper, 3.0)
        self.assertAlmostEqual(edge.width, 3.92)

    def test_confidence_interval_uses_requested_level(self):
        self.assertAlmostEqual(confidence_interval(0.0, 1.0, 0.99).width, 5.16)
        eighty = confidence_interval(0.0, 1.0, 0.80)
        self.assertAlmostEqual(eighty.upper, 1.2816, places=4)
        self.assertLess(eighty.width, confidence_interval(0.0, 1.0, 0.95).width)
        for level in (0.0, 1.0, 1.5, float("nan")):
            with self.assertRaises(ValueError):
                confidence_interval(0.0, 1.0, level)

    def test_precision_threshold(self):
        self.assertTrue(is_precision_sufficient(0.25))
        self.assertFalse(is_precision_sufficient(0.35))


@settings(max_examples=100, deadline=None)
@given(theta=st.floats(min_value=-3.0, max_value=3.0, allow_nan=False, allow_infinity=False))
def test_percentage_round_trip(theta):
    """Property: percentage_to_theta inverts theta_to_percentage inside the domain."""
    assert abs(percentage_to_theta(theta_to_percentage(theta)) - theta) < 1e-9


class TestPriors(unittest.TestCase):
    def test_grade_prior_table(self):
        self.assertEqual(grade_based_prior(1).mean, -1.5)
        self.assertEqual(grade_based_prior(8).mean, 0.0)
        self.assertEqual(grade_based_prior(12).mean, 0.8)
        self.assertEqual(grade_based_prior(None), Prior(mean=0.0, sd=1.0))
        self.assertEqual(grade_based_prior(13).mean, 0.0)

    def test_adaptive_prior_needs_three_responses(self):
        prior = Prior(mean=0.0, sd=1.0)
        self.assertEqual(adaptive_prior([True, True], prior), prior)

    def test_adaptive_prior_shifts_and_tightens(self):
        prior = Prior(mean=0.0, sd=1.0)
        strong = adaptive_prior([True] * 5, prior)
        self.assertAlmostEqual(strong.mean, 0.3)
        self.assertAlmostEqual(strong.sd, 0.85)

        weak = adaptive_prior([False] * 10, prior)
        self.assertAlmostEqual(weak.mean, -0.3)
        self.assertAlmostEqual(weak.sd, 0.7)

        middling = adaptive_prior([True, False, True, False], prior)
        self.assertEqual(middling.mean, 0.0)

    def test_adaptive_prior_sd_has_floor(self):
        self.assertEqual(adaptive_prior([True] * 20, Prior(mean=0.0, sd=0.6)).sd, 0.5)


class TestMle(unittest.TestCase):
    def test_all_correct_maps_to_upper_bound_with_low_confidence(self):
        state = estimate_mle(make_history([True] * 6))
        self.assertEqual(state.theta, 3.0)
        self.assertEqual(state.method, "mle")
        self.assertLessEqual(state.confidence, 10.0)
        self.assertFalse(state.converged)

    def test_all_incorrect_maps_to_lower_bound(self):
        state = estimate_mle(make_history([False] * 4))
        self.assertEqual(state.theta, -3.0)
        self.assertLessEqual(state.confidence, 10.0)

    def test_mixed_pattern_matches_likelihood_maximum(self):
        history = make_history([True, True, False, True, False, False, True, False])
        state = estimate_mle(history)
        grid = [x / 1000.0 for x in range(-3000, 3001)]
        best = max(grid, key=lambda t: log_likelihood(t, history))
        self.assertAlmostEqual(state.theta, best, delta=0.02)
        self.assertTrue(math.isfinite(state.standard_error))
        self.assertEqual(state.n_responses, 8)

    def test_more_correct_answers_raise_the_estimate(self):
        low = estimate_mle(make_history([True, False, False, False, True, False]))
        high = estimate_mle(make_history([True, True, True, False, True, False]))
        self.assertGreater(high.theta, low.theta)

    def test_empty_history(self):
        state = estimate_mle([])
        self.assertEqual(state.theta, 0.0)
        self.assertEqual(state.confidence, 0.0)


class TestEap(unittest.TestCase):
    def test_empty_history_returns_prior(self):
        state = estimate_eap([], Prior(mean=-0.6, sd=0.9))
        self.assertEqual(state.theta, -0.6)
        self.assertEqual(state.standard_error, 0.9)
        self.assertEqual(state.confidence, 0.0)

    def test_all_correct_stays_finite_and_moves_up(self):
        state = estimate_eap(make_history([True] * 6), Prior(mean=0.0, sd=1.0))
        self.assertGreater(state.theta, 0.0)
        self.assertLess(state.theta, 3.0)
        self.assertLess(state.posterior_sd, 1.0)
        self.assertTrue(0.0 <= state.confidence <= 100.0)

    def test_long_history_does_not_underflow(self):
        pattern = [index % 3 != 0 for index in range(300)]
        difficulties = [((index * 7) % 61) / 10.0 - 3.0 for index in range(300)]
        state = estimate_eap(make_history(pattern, difficulties, guessing=0.2), Prior())
        self.assertTrue(math.isfinite(state.theta))
        self.assertTrue(math.isfinite(state.standard_error))
        self.assertLess(state.standard_error, 0.3)

    def test_prior_pulls_estimate(self):
        history = make_history([True, False, True])
        low = estimate_eap(history, Prior(mean=-1.5, sd=0.5))
        high = estimate_eap(history, Prior(mean=1.5, sd=0.5))
        self.assertLess(low.theta, high.theta)


class TestDispatch(unittest.TestCase):
    def test_estimate_ability_methods(self):
        history = make_history([True, False, True, True, False])
        self.assertEqual(estimate_ability([]).method, "prior")
        self.assertEqual(estimate_ability(history).method, "mle")
        self.assertEqual(estimate_ability(history, prior=Prior()).method, "eap")

    def test_empty_history_uses_prior_mean(self):
        state = estimate_ability([], prior=Prior(mean=0.4, sd=1.0))
        self.assertEqual(state.theta, 0.4)
        self.assertEqual(state.confidence, 0.0)

    def test_update_switches_to_mle_after_five_responses(self):
        config = IrtConfig(estimator="mle")
        self.assertEqual(update_ability_estimate(make_history([True, False, True, False]), config).method, "eap")
        self.assertEqual(update_ability_estimate(make_history([True, False, True, False, True]), config).method, "mle")
        self.assertEqual(update_ability_estimate(make_history([True, False, True, False, True]), IrtConfig()).method, "eap")

    def test_prequential_predictions_only_use_earlier_responses(self):
        history = make_history([True, True, False]) + make_history([False, True], subject_id="art")
        rows = prequential_predictions(history)
        self.assertEqual(len(rows), 5)
        self.assertEqual(rows[0]["theta"], 0.0)
        # First art response has no earlier art responses.
        self.assertEqual(rows[3]["theta"], 0.0)
        self.assertGreater(rows[2]["theta"], 0.0)
        for row in rows:
            self.assertTrue(0.0 < row["y_pred"] < 1.0)
