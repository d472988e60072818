"""
Baseline Aggregator: rolling-window performance baselines per content item and segment.

A baseline summarizes every variant of a content item's experiments over the
trailing window [now - window_days, now], optionally filtered to one persona and
funnel stage, and scores it with the content type's default weight profile.

Raw metrics:
- conversion_rate = total_events / unique_views * 100 (0 when unique_views = 0)
- cta_click_rate  = cta_clicks / total_views * 100 (0 when total_views = 0)
- dwell_time_avg / scroll_depth_avg: means over events carrying those attributes
- variance        = p(1 - p) / n with p = conversion_rate / 100, n = unique_views
                    (None when n = 0); a Bernoulli proxy, not a multi-metric variance

Batch mode recomputes one baseline per persona x funnel stage plus one overall
baseline per content item; a failing item is logged and skipped.

Usage:
    aggregator = BaselineAggregator(store, events)
    baseline = await aggregator.aggregate("hero", "item-1", persona="parent")
    updated = await aggregator.batch_update_baselines("hero", ["item-1", "item-2"])
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from content_autotest.core.config import Settings, get_settings
from content_autotest.models.enums import FunnelStage, MetricKey, Persona
from content_autotest.models.schemas import (
    EventAggregate,
    MetricWeightProfile,
    PerformanceBaseline,
    VariantMetrics,
)
from content_autotest.services.scoring import score
from content_autotest.services.store import ContentStore, EventSource


logger = logging.getLogger(__name__)

DEFAULT_PERSONAS: List[str] = [persona.value for persona in Persona]
DEFAULT_FUNNEL_STAGES: List[str] = [stage.value for stage in FunnelStage]

# Keys stored in a baseline's metric_breakdown
BREAKDOWN_KEYS = (
    MetricKey.CTA_CLICK.value,
    MetricKey.CONVERSION.value,
    MetricKey.DWELL_TIME.value,
    MetricKey.SCROLL_DEPTH.value,
)


# =============================================================================
# Pure Helpers
# =============================================================================

def metrics_from_aggregate(aggregate: EventAggregate, variant_id: Optional[str] = None) -> VariantMetrics:
    """Derive rates from aggregate event counts."""
    conversion_rate = (
        aggregate.total_events / aggregate.unique_views * 100.0 if aggregate.unique_views > 0 else 0.0
    )
    cta_click_rate = (
        aggregate.cta_clicks / aggregate.total_views * 100.0 if aggregate.total_views > 0 else 0.0
    )
    return VariantMetrics(
        variant_id=variant_id,
        total_views=aggregate.total_views,
        unique_views=aggregate.unique_views,
        total_events=aggregate.total_events,
        cta_clicks=aggregate.cta_clicks,
        conversion_rate=conversion_rate,
        cta_click_rate=cta_click_rate,
        dwell_time_avg=aggregate.dwell_time_avg,
        scroll_depth_avg=aggregate.scroll_depth_avg,
    )


def calculate_variance(metrics: VariantMetrics) -> Optional[float]:
    """Bernoulli variance p(1-p)/n of the conversion rate, or None without samples."""
    n = metrics.unique_views
    if n <= 0:
        return None
    p = min(metrics.conversion_rate / 100.0, 1.0)
    return p * (1.0 - p) / n


def metric_breakdown(metrics: VariantMetrics) -> dict:
    return {
        MetricKey.CTA_CLICK.value: metrics.cta_click_rate,
        MetricKey.CONVERSION.value: metrics.conversion_rate,
        MetricKey.DWELL_TIME.value: metrics.dwell_time_avg,
        MetricKey.SCROLL_DEPTH.value: metrics.scroll_depth_avg,
    }


def select_default_profile(profiles: Sequence[MetricWeightProfile]) -> Optional[MetricWeightProfile]:
    """The profile flagged default, else the first one, else None."""
    for profile in profiles:
        if profile.is_default:
            return profile
    return profiles[0] if profiles else None


# =============================================================================
# Aggregator
# =============================================================================

class BaselineAggregator:
    """Computes and persists rolling performance baselines."""

    def __init__(self, store: ContentStore, events: EventSource, settings: Optional[Settings] = None):
        self.store = store
        self.events = events
        self.settings = settings or get_settings()

    async def get_default_profile(self, content_type: str) -> Optional[MetricWeightProfile]:
        profiles = await self.store.list_metric_weight_profiles(content_type)
        return select_default_profile(profiles)

    async def aggregate(
        self,
        content_type: str,
        content_item_id: str,
        persona: Optional[str] = None,
        funnel_stage: Optional[str] = None,
        window_days: Optional[int] = None,
        now: Optional[datetime] = None,
        profile: Optional[MetricWeightProfile] = None,
    ) -> PerformanceBaseline:
        """
        Compute the baseline for one content item and (optional) segment.

        Returns a zero-valued baseline, not an error, when the window holds no events.
        Without any weight profile for the content type the composite score is 0
        and profile_id is None.

        Args:
            content_type: Content type of the item.
            content_item_id: Live content item id.
            persona: Persona filter; None for all personas.
            funnel_stage: Funnel stage filter; None for all stages.
            window_days: Trailing window length (defaults to settings.baseline_window_days).
            now: Window end; defaults to the current UTC time.
            profile: Weight profile to score with; defaults to the content type's default.

        Returns:
            PerformanceBaseline: The computed (unsaved) baseline.
        """
        window_days = window_days or self.settings.baseline_window_days
        window_end = now or datetime.now(timezone.utc)
        window_start = window_end - timedelta(days=window_days)

        if profile is None:
            profile = await self.get_default_profile(content_type)

        baseline = PerformanceBaseline(
            content_type=content_type,
            content_item_id=content_item_id,
            persona=persona,
            funnel_stage=funnel_stage,
            window_start=window_start,
            window_end=window_end,
            window_days=window_days,
            metric_breakdown={key: 0.0 for key in BREAKDOWN_KEYS},
            profile_id=profile.id if profile else None,
            computed_at=window_end,
        )

        variant_ids = await self.events.variant_ids_with_events(
            content_type, content_item_id, window_start, window_end
        )
        if not variant_ids:
            return baseline

        aggregate = await self.events.aggregate(
            variant_ids, window_start, window_end, persona=persona, funnel_stage=funnel_stage
        )
        metrics = metrics_from_aggregate(aggregate)

        baseline.total_views = metrics.total_views
        baseline.unique_views = metrics.unique_views
        baseline.total_events = metrics.total_events
        baseline.sample_size = metrics.unique_views
        baseline.metric_breakdown = metric_breakdown(metrics)
        baseline.variance = calculate_variance(metrics)
        if profile is not None:
            baseline.composite_score = score(metrics, profile).composite_score

        return baseline

    async def update_baseline(
        self,
        content_type: str,
        content_item_id: str,
        persona: Optional[str] = None,
        funnel_stage: Optional[str] = None,
        window_days: Optional[int] = None,
    ) -> PerformanceBaseline:
        """Compute and persist (overwrite) one baseline."""
        baseline = await self.aggregate(content_type, content_item_id, persona, funnel_stage, window_days)
        return await self.store.upsert_baseline(baseline)

    async def batch_update_baselines(
        self,
        content_type: str,
        content_item_ids: Sequence[str],
        window_days: Optional[int] = None,
        personas: Optional[Sequence[str]] = None,
        funnel_stages: Optional[Sequence[str]] = None,
    ) -> int:
        """
        Recompute every segment baseline plus the overall baseline for each item.

        Items are processed sequentially. A failure on one item is logged and
        the batch moves on to the next item.

        Returns:
            int: Number of baselines written.
        """
        personas = list(personas or DEFAULT_PERSONAS)
        funnel_stages = list(funnel_stages or DEFAULT_FUNNEL_STAGES)
        now = datetime.now(timezone.utc)
        profile = await self.get_default_profile(content_type)
        if profile is None:
            logger.warning(f"No metric weight profile for content type {content_type}; scores will be 0")

        updated = 0
        for content_item_id in content_item_ids:
            try:
                segments = [(p, s) for p in personas for s in funnel_stages] + [(None, None)]
                for persona, stage in segments:
                    baseline = await self.aggregate(
                        content_type, content_item_id, persona, stage, window_days, now=now, profile=profile
                    )
                    await self.store.upsert_baseline(baseline)
                    updated += 1
            except Exception as e:
                logger.error(f"Error updating baselines for {content_type}/{content_item_id}: {e}")

        logger.info(f"Updated {updated} baselines for {len(content_item_ids)} {content_type} item(s)")
        return updated
