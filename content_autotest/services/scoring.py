"""
Metric Scorer: normalizes raw metrics and combines them into a composite score.

Pure functions, no IO. The composite score is on a 0-10000 scale:

    composite = round(clamp(sum(normalized_i * weight_i) / sum(weight_i), 0, 1) * 10000)

Normalization by metric family:
- Rates (cta_click, conversion, scroll_depth): percent clipped to [0, 100], / 100
- Duration (dwell_time): seconds / 300, clipped to [0, 1]
- Counts (unique_views, total_events): min(log10(value + 1) / 3, 1)
- Unknown keys normalize to 0

Scores are only comparable when produced by the same MetricWeightProfile.
compare_to_baseline and ensure_same_profile raise ProfileMismatchError when a
baseline scored under one profile is compared with a score from another.

Usage:
    from content_autotest.services.scoring import score

    scored = score(metrics, profile)
    print(scored.composite_score)
"""

import math
from typing import Dict, List, Optional, Sequence

import numpy as np

from content_autotest.core.exceptions import ProfileMismatchError
from content_autotest.models.enums import MetricDirection, MetricKey
from content_autotest.models.schemas import (
    BaselineComparison,
    MetricWeightProfile,
    PerformanceBaseline,
    ScoredVariant,
    VariantMetrics,
)


# =============================================================================
# Module Constants
# =============================================================================

MAX_COMPOSITE_SCORE: int = 10000

# Dwell time at or above this many seconds normalizes to 1.0
DWELL_TIME_CEILING_SECONDS: float = 300.0

# log10 decades covered by count metrics: 10^3 views normalizes to 1.0
COUNT_LOG_DECADES: float = 3.0

RATE_METRICS = frozenset({MetricKey.CTA_CLICK.value, MetricKey.CONVERSION.value, MetricKey.SCROLL_DEPTH.value})
DURATION_METRICS = frozenset({MetricKey.DWELL_TIME.value})
COUNT_METRICS = frozenset({MetricKey.UNIQUE_VIEWS.value, MetricKey.TOTAL_EVENTS.value})


# =============================================================================
# Normalization
# =============================================================================

def _clip(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(value, upper))


def normalize_metric_value(metric_key: str, value: float) -> float:
    """
    Normalize a raw metric value to [0, 1].

    Args:
        metric_key: Metric key (see MetricKey).
        value: Raw value: a percentage for rates, seconds for dwell time,
            a count for views and events.

    Returns:
        float: Normalized value in [0, 1]; 0.0 for unknown keys.
    """
    if value is None or math.isnan(value):
        return 0.0

    if metric_key in RATE_METRICS:
        return _clip(value, 0.0, 100.0) / 100.0

    if metric_key in DURATION_METRICS:
        return _clip(value / DWELL_TIME_CEILING_SECONDS)

    if metric_key in COUNT_METRICS:
        return min(math.log10(max(value, 0.0) + 1.0) / COUNT_LOG_DECADES, 1.0)

    return 0.0


def get_metric_value(metrics: VariantMetrics, metric_key: str) -> float:
    """Read the raw value of a metric key from a VariantMetrics record."""
    lookup = {
        MetricKey.CTA_CLICK.value: metrics.cta_click_rate,
        MetricKey.CONVERSION.value: metrics.conversion_rate,
        MetricKey.DWELL_TIME.value: metrics.dwell_time_avg,
        MetricKey.SCROLL_DEPTH.value: metrics.scroll_depth_avg,
        MetricKey.UNIQUE_VIEWS.value: float(metrics.unique_views),
        MetricKey.TOTAL_EVENTS.value: float(metrics.total_events),
    }
    return lookup.get(metric_key, 0.0)


def metrics_from_baseline(baseline: PerformanceBaseline) -> VariantMetrics:
    """Rebuild the raw metrics a baseline was scored from."""
    breakdown = baseline.metric_breakdown
    return VariantMetrics(
        total_views=baseline.total_views,
        unique_views=baseline.unique_views,
        total_events=baseline.total_events,
        cta_click_rate=breakdown.get(MetricKey.CTA_CLICK.value, 0.0),
        conversion_rate=breakdown.get(MetricKey.CONVERSION.value, 0.0),
        dwell_time_avg=breakdown.get(MetricKey.DWELL_TIME.value, 0.0),
        scroll_depth_avg=breakdown.get(MetricKey.SCROLL_DEPTH.value, 0.0),
    )


# =============================================================================
# Composite Scoring
# =============================================================================

def composite_from_normalized(normalized: Dict[str, float], profile: MetricWeightProfile) -> int:
    """
    Weighted mean of normalized values, scaled to 0-10000.

    Returns 0 when the profile's weights sum to zero.
    """
    total_weight = sum(entry.weight for entry in profile.metrics)
    if total_weight <= 0:
        return 0

    weighted_sum = sum(normalized.get(entry.metric_key, 0.0) * entry.weight for entry in profile.metrics)
    return int(round(_clip(weighted_sum / total_weight) * MAX_COMPOSITE_SCORE))


def score(metrics: VariantMetrics, profile: MetricWeightProfile) -> ScoredVariant:
    """
    Compute the composite score of a set of metrics under a weight profile.

    Deterministic: the same metrics and profile always produce the same score.

    Args:
        metrics: Raw metrics of a variant or content item.
        profile: Weighted metric profile.

    Returns:
        ScoredVariant: composite score, raw breakdown and normalized breakdown.
    """
    breakdown: Dict[str, float] = {}
    normalized: Dict[str, float] = {}

    for entry in profile.metrics:
        raw = get_metric_value(metrics, entry.metric_key)
        breakdown[entry.metric_key] = raw
        normalized[entry.metric_key] = normalize_metric_value(entry.metric_key, raw)

    return ScoredVariant(
        variant_id=metrics.variant_id,
        profile_id=profile.id,
        composite_score=composite_from_normalized(normalized, profile),
        metric_breakdown=breakdown,
        normalized_scores=normalized,
        sample_size=metrics.unique_views,
    )


def score_and_rank(metrics_list: Sequence[VariantMetrics], profile: MetricWeightProfile) -> List[ScoredVariant]:
    """Score every variant under one profile, best composite first."""
    scored = [score(metrics, profile) for metrics in metrics_list]
    return sorted(scored, key=lambda item: item.composite_score, reverse=True)


# =============================================================================
# Baseline Comparison
# =============================================================================

def ensure_same_profile(baseline: PerformanceBaseline, profile: MetricWeightProfile) -> None:
    """
    Raise ProfileMismatchError unless the baseline was scored with this profile.

    A baseline without a recorded profile cannot be compared safely either.
    """
    if baseline.profile_id is None or baseline.profile_id != profile.id:
        raise ProfileMismatchError(baseline.profile_id, profile.id)


def compare_to_baseline(
    metrics: VariantMetrics,
    baseline: PerformanceBaseline,
    profile: MetricWeightProfile,
) -> BaselineComparison:
    """
    Compare a variant's composite score with a baseline's.

    Raises:
        ProfileMismatchError: If the baseline was scored with a different profile.
    """
    ensure_same_profile(baseline, profile)

    variant_score = score(metrics, profile).composite_score
    delta = variant_score - baseline.composite_score
    improvement = (delta / baseline.composite_score * 100.0) if baseline.composite_score > 0 else 0.0

    return BaselineComparison(
        profile_id=profile.id,
        baseline_score=baseline.composite_score,
        variant_score=variant_score,
        score_delta=delta,
        improvement_percent=round(improvement, 2),
    )


def identify_underperforming_metrics(
    metrics: VariantMetrics,
    baseline: PerformanceBaseline,
    profile: MetricWeightProfile,
) -> List[str]:
    """
    List the profile's metrics where the variant is worse than the baseline.

    Maximize metrics are worse when below the baseline, minimize metrics when above.
    """
    ensure_same_profile(baseline, profile)

    baseline_metrics = metrics_from_baseline(baseline)
    underperforming: List[str] = []

    for entry in profile.metrics:
        current = get_metric_value(metrics, entry.metric_key)
        reference = get_metric_value(baseline_metrics, entry.metric_key)
        if entry.direction == MetricDirection.MINIMIZE:
            if current > reference:
                underperforming.append(entry.metric_key)
        elif current < reference:
            underperforming.append(entry.metric_key)

    return underperforming


# =============================================================================
# Percentiles
# =============================================================================

def score_to_percentile(composite_score: int) -> float:
    """
    Linear approximation of a composite score's percentile: score / 10000 * 100.

    Biased whenever real scores do not spread uniformly over the 0-10000 range;
    see empirical_percentile for the distribution-aware alternative.
    """
    return composite_score / MAX_COMPOSITE_SCORE * 100.0


def value_to_percentile(value: float) -> float:
    """Percentile of a raw rate-like metric value, capped at 100."""
    return min(value, 100.0)


def empirical_percentile(value: float, reference: Sequence[float]) -> Optional[float]:
    """
    Percent of reference values at or below `value` (weak percentile rank).

    Returns None for an empty reference set.
    """
    if len(reference) == 0:
        return None

    values = np.asarray(reference, dtype=float)
    return float(np.count_nonzero(values <= value) / values.size * 100.0)
