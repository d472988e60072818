"""
Tests for the Bayesian comparator and frequentist helpers.
"""

import pytest

from content_autotest.models.enums import StopReason
from content_autotest.models.schemas import BayesianResult
from content_autotest.services.bayesian import (
    BayesianComparator,
    StatisticalConfig,
    calculate_power,
    required_sample_size,
    two_proportion_confidence,
)


CONFIG = StatisticalConfig(confidence_threshold=0.95, minimum_sample_size=100, minimum_detectable_effect=5.0)


@pytest.fixture
def comparator() -> BayesianComparator:
    return BayesianComparator(iterations=20000, seed=7)


class TestCompare:

    def test_clear_winner(self, comparator: BayesianComparator) -> None:
        # 8% vs 12% on 1000 trials each
        result = comparator.compare(80, 1000, 120, 1000, CONFIG)

        assert result.probability_beat_control > 0.95
        assert result.expected_lift_percent == pytest.approx(50.0)
        assert result.is_significant is True
        assert result.confidence_threshold == 0.95
        assert 0 < result.credible_interval_lower < 0.04 < result.credible_interval_upper

    def test_below_minimum_sample_returns_zero_result(self, comparator: BayesianComparator) -> None:
        result = comparator.compare(4, 50, 6, 50, CONFIG)

        assert result.probability_beat_control == 0.0
        assert result.expected_lift_percent == 0.0
        assert result.is_significant is False

    def test_small_lift_is_not_significant(self, comparator: BayesianComparator) -> None:
        # Very large sample: near-certain B > A but only a 2% relative lift
        result = comparator.compare(100_000, 1_000_000, 102_000, 1_000_000, CONFIG)

        assert result.probability_beat_control > 0.95
        assert result.expected_lift_percent == pytest.approx(2.0)
        assert result.is_significant is False

    def test_zero_control_rate_gives_zero_lift(self, comparator: BayesianComparator) -> None:
        result = comparator.compare(0, 200, 10, 200, CONFIG)

        assert result.expected_lift_percent == 0.0
        assert result.is_significant is False

    @pytest.mark.parametrize('arms', [
        (-1, 100, 10, 100),
        (10, 100, 101, 100),
        (10, -5, 10, 100),
    ])
    def test_invalid_counts_raise(self, comparator: BayesianComparator, arms) -> None:
        with pytest.raises(ValueError):
            comparator.compare(*arms, CONFIG)

    def test_seeded_comparisons_are_reproducible(self) -> None:
        first = BayesianComparator(iterations=5000, seed=11).compare(90, 1000, 100, 1000, CONFIG)
        second = BayesianComparator(iterations=5000, seed=11).compare(90, 1000, 100, 1000, CONFIG)

        assert first.probability_beat_control == second.probability_beat_control

    def test_iterations_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            BayesianComparator(iterations=0)


class TestShouldStopEarly:

    def test_winner_found(self, comparator: BayesianComparator) -> None:
        decision = comparator.should_stop_early(comparator.compare(80, 1000, 120, 1000, CONFIG))

        assert decision.should_stop is True
        assert decision.reason == StopReason.WINNER_FOUND

    def test_futility(self, comparator: BayesianComparator) -> None:
        decision = comparator.should_stop_early(comparator.compare(120, 1000, 80, 1000, CONFIG))

        assert decision.should_stop is True
        assert decision.reason == StopReason.FUTILITY_STOPPED

    def test_continue_when_inconclusive(self, comparator: BayesianComparator) -> None:
        decision = comparator.should_stop_early(comparator.compare(100, 1000, 102, 1000, CONFIG))

        assert decision.should_stop is False
        assert decision.reason == StopReason.CONTINUE_TESTING

    def test_below_minimum_result_is_not_futility(self, comparator: BayesianComparator) -> None:
        below_minimum = comparator.compare(0, 50, 0, 50, CONFIG)

        assert below_minimum.sample_sufficient is False
        assert comparator.should_stop_early(below_minimum).reason == StopReason.CONTINUE_TESTING

    def test_zero_probability_on_full_sample_is_futility(self, comparator: BayesianComparator) -> None:
        # Monte Carlo draws can put P(B > A) at exactly zero for a clearly worse challenger
        hopeless = BayesianResult(
            probability_beat_control=0.0, expected_lift_percent=-90.0, is_significant=False, confidence_threshold=0.95
        )

        decision = comparator.should_stop_early(hopeless)

        assert decision.should_stop is True
        assert decision.reason == StopReason.FUTILITY_STOPPED


class TestFrequentistHelpers:

    def test_two_proportion_confidence(self) -> None:
        assert two_proportion_confidence(80, 1000, 120, 1000) == pytest.approx(99.7, abs=0.1)
        assert two_proportion_confidence(100, 1000, 100, 1000) == pytest.approx(0.0)

    def test_two_proportion_confidence_degenerate(self) -> None:
        assert two_proportion_confidence(0, 0, 5, 100) == 0.0
        assert two_proportion_confidence(0, 100, 0, 100) == 0.0

    def test_required_sample_size(self) -> None:
        # 10% baseline, 20% relative lift, 95% confidence, 80% power
        size = required_sample_size(0.10, 20.0)

        assert 3800 <= size <= 3900

    def test_required_sample_size_shrinks_with_larger_effect(self) -> None:
        assert required_sample_size(0.10, 50.0) < required_sample_size(0.10, 20.0)

    @pytest.mark.parametrize('rate,effect', [(0.0, 10.0), (1.0, 10.0), (0.1, 0.0)])
    def test_required_sample_size_rejects_bad_inputs(self, rate: float, effect: float) -> None:
        with pytest.raises(ValueError):
            required_sample_size(rate, effect)

    def test_power_matches_planned_sample(self) -> None:
        size = required_sample_size(0.10, 20.0)

        assert calculate_power(size, 0.10, 20.0) == pytest.approx(0.8, abs=0.01)
        assert calculate_power(size // 4, 0.10, 20.0) < 0.5
        assert calculate_power(0, 0.10, 20.0) == 0.0
