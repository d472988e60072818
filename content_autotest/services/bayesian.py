"""
Bayesian comparison primitive for conversion-style experiments.

Stateless, no IO. Each arm's conversion rate gets a Beta(successes + 1,
failures + 1) posterior (uniform prior); P(challenger > control) is estimated
by Monte Carlo sampling with numpy.

    expected lift % = (rate_B - rate_A) / rate_A * 100        (0 when rate_A = 0)
    significant     = P(B > A) >= confidence threshold AND |lift| >= minimum detectable effect

Below the minimum sample on either arm the comparison is not run and a zero
result is returned.

Also provides the frequentist helpers used for reporting and planning:
two-proportion z-test confidence, required sample size and power.
"""

import math
from dataclasses import dataclass
from statistics import NormalDist
from typing import Optional, Tuple

import numpy as np

from content_autotest.models.enums import StopReason
from content_autotest.models.schemas import BayesianResult, EarlyStopDecision


DEFAULT_ITERATIONS: int = 10000
DEFAULT_FUTILITY_THRESHOLD: float = 0.1
CREDIBLE_INTERVAL_Z: float = 1.96

_STANDARD_NORMAL = NormalDist()


@dataclass(frozen=True)
class StatisticalConfig:
    confidence_threshold: float = 0.95
    minimum_sample_size: int = 100
    minimum_detectable_effect: float = 5.0


def _validate_arm(successes: int, trials: int, label: str) -> None:
    if trials < 0 or successes < 0:
        raise ValueError(f"{label}: successes and trials must be non-negative")
    if successes > trials:
        raise ValueError(f"{label}: successes ({successes}) exceed trials ({trials})")


def _beta_moments(successes: int, trials: int) -> Tuple[float, float]:
    """Mean and variance of the Beta(s + 1, n - s + 1) posterior."""
    alpha = successes + 1
    beta = trials - successes + 1
    total = alpha + beta
    mean = alpha / total
    variance = (alpha * beta) / (total ** 2 * (total + 1))
    return mean, variance


class BayesianComparator:
    """
    Monte Carlo Beta-Binomial comparison of a challenger against the control.

    Args:
        iterations: Posterior draws per comparison.
        seed: Seed for numpy's default_rng; None draws fresh entropy.
        futility_threshold: P(B > A) below this stops for futility once both arms
            reach the minimum sample.
    """

    def __init__(
        self,
        iterations: int = DEFAULT_ITERATIONS,
        seed: Optional[int] = None,
        futility_threshold: float = DEFAULT_FUTILITY_THRESHOLD,
    ):
        if iterations <= 0:
            raise ValueError("iterations must be positive")
        self.iterations = iterations
        self.futility_threshold = futility_threshold
        self._rng = np.random.default_rng(seed)

    def probability_beats_control(
        self, successes_a: int, trials_a: int, successes_b: int, trials_b: int
    ) -> float:
        samples_a = self._rng.beta(successes_a + 1, trials_a - successes_a + 1, size=self.iterations)
        samples_b = self._rng.beta(successes_b + 1, trials_b - successes_b + 1, size=self.iterations)
        return float(np.mean(samples_b > samples_a))

    def compare(
        self,
        successes_a: int,
        trials_a: int,
        successes_b: int,
        trials_b: int,
        config: StatisticalConfig,
    ) -> BayesianResult:
        """
        Compare challenger B against control A.

        Raises:
            ValueError: On negative counts or successes above trials.
        """
        _validate_arm(successes_a, trials_a, "control")
        _validate_arm(successes_b, trials_b, "challenger")

        if trials_a < config.minimum_sample_size or trials_b < config.minimum_sample_size:
            return BayesianResult(
                probability_beat_control=0.0,
                expected_lift_percent=0.0,
                is_significant=False,
                confidence_threshold=config.confidence_threshold,
                sample_sufficient=False,
            )

        probability = self.probability_beats_control(successes_a, trials_a, successes_b, trials_b)

        rate_a = successes_a / trials_a
        rate_b = successes_b / trials_b
        lift = (rate_b - rate_a) / rate_a * 100.0 if rate_a > 0 else 0.0

        # Normal approximation of the posterior rate difference (B - A)
        mean_a, var_a = _beta_moments(successes_a, trials_a)
        mean_b, var_b = _beta_moments(successes_b, trials_b)
        spread = CREDIBLE_INTERVAL_Z * math.sqrt(var_a + var_b)

        return BayesianResult(
            probability_beat_control=probability,
            expected_lift_percent=lift,
            is_significant=probability >= config.confidence_threshold
            and abs(lift) >= config.minimum_detectable_effect,
            confidence_threshold=config.confidence_threshold,
            credible_interval_lower=(mean_b - mean_a) - spread,
            credible_interval_upper=(mean_b - mean_a) + spread,
        )

    def should_stop_early(self, result: BayesianResult) -> EarlyStopDecision:
        """Winner found, futility, or keep collecting data."""
        if result.is_significant and result.probability_beat_control >= result.confidence_threshold:
            return EarlyStopDecision(should_stop=True, reason=StopReason.WINNER_FOUND)

        if result.sample_sufficient and result.probability_beat_control < self.futility_threshold:
            return EarlyStopDecision(should_stop=True, reason=StopReason.FUTILITY_STOPPED)

        return EarlyStopDecision(should_stop=False, reason=StopReason.CONTINUE_TESTING)


# =============================================================================
# Frequentist Helpers
# =============================================================================

def two_proportion_confidence(successes_a: int, trials_a: int, successes_b: int, trials_b: int) -> float:
    """Two-tailed z-test confidence (0-100) that the two rates differ."""
    if trials_a == 0 or trials_b == 0:
        return 0.0

    pooled = (successes_a + successes_b) / (trials_a + trials_b)
    standard_error = math.sqrt(pooled * (1 - pooled) * (1 / trials_a + 1 / trials_b))
    if standard_error == 0:
        return 0.0

    z = abs(successes_b / trials_b - successes_a / trials_a) / standard_error
    confidence = (1 - 2 * (1 - _STANDARD_NORMAL.cdf(z))) * 100.0
    return max(0.0, min(100.0, confidence))


def required_sample_size(
    baseline_rate: float,
    minimum_detectable_effect: float,
    confidence_threshold: float = 0.95,
    power: float = 0.8,
) -> int:
    """
    Samples per arm needed to detect a relative lift of minimum_detectable_effect percent.

    Args:
        baseline_rate: Control conversion rate as a fraction (0-1).
        minimum_detectable_effect: Relative lift in percent.
    """
    if not 0 < baseline_rate < 1:
        raise ValueError("baseline_rate must be between 0 and 1")
    if minimum_detectable_effect <= 0:
        raise ValueError("minimum_detectable_effect must be positive")

    z_alpha = _STANDARD_NORMAL.inv_cdf(1 - (1 - confidence_threshold) / 2)
    z_beta = _STANDARD_NORMAL.inv_cdf(power)
    expected_rate = baseline_rate * (1 + minimum_detectable_effect / 100.0)
    pooled = (baseline_rate + expected_rate) / 2

    numerator = 2 * (z_alpha + z_beta) ** 2 * pooled * (1 - pooled)
    return math.ceil(numerator / (expected_rate - baseline_rate) ** 2)


def calculate_power(
    sample_size: int,
    baseline_rate: float,
    effect: float,
    confidence_threshold: float = 0.95,
) -> float:
    """Probability of detecting a relative lift of `effect` percent with sample_size per arm."""
    if sample_size <= 0:
        return 0.0

    z_alpha = _STANDARD_NORMAL.inv_cdf(1 - (1 - confidence_threshold) / 2)
    expected_rate = baseline_rate * (1 + effect / 100.0)
    pooled = (baseline_rate + expected_rate) / 2
    standard_error = math.sqrt(2 * pooled * (1 - pooled) / sample_size)
    if standard_error == 0:
        return 0.0

    z_beta = (expected_rate - baseline_rate) / standard_error - z_alpha
    return _STANDARD_NORMAL.cdf(z_beta)
