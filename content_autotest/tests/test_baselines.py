"""
Tests for the baseline aggregator.

Covers rate derivation, the zero baseline for windows without events, window
bounds, scoring with the default profile, the persona x funnel stage batch grid
and per-item failure isolation.
"""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from content_autotest.models.schemas import EventAggregate, MetricWeightProfile, VariantMetrics
from content_autotest.services.baselines import (
    BaselineAggregator,
    calculate_variance,
    metrics_from_aggregate,
    select_default_profile,
)

from content_autotest.tests.conftest import FakeEventSource, InMemoryContentStore


SAMPLE_AGGREGATE = EventAggregate(
    total_views=200,
    unique_views=100,
    total_events=20,
    cta_clicks=10,
    dwell_time_avg=60.0,
    scroll_depth_avg=50.0,
)


class FlakyEventSource(FakeEventSource):
    """Raises for one content item to exercise per-item isolation."""

    def __init__(self, failing_item: str):
        super().__init__()
        self.failing_item = failing_item

    async def variant_ids_with_events(self, content_type, content_item_id, window_start, window_end) -> List[str]:
        if content_item_id == self.failing_item:
            raise RuntimeError("analytics timeout")
        return await super().variant_ids_with_events(content_type, content_item_id, window_start, window_end)


# =============================================================================
# Pure Helpers
# =============================================================================

class TestHelpers:

    def test_metrics_from_aggregate_rates(self) -> None:
        metrics = metrics_from_aggregate(SAMPLE_AGGREGATE, variant_id='var-a')

        assert metrics.variant_id == 'var-a'
        assert metrics.conversion_rate == pytest.approx(20.0)
        assert metrics.cta_click_rate == pytest.approx(5.0)
        assert metrics.dwell_time_avg == 60.0

    def test_metrics_from_empty_aggregate(self) -> None:
        metrics = metrics_from_aggregate(EventAggregate())
        assert metrics.conversion_rate == 0.0
        assert metrics.cta_click_rate == 0.0

    def test_variance_is_bernoulli_proxy(self) -> None:
        assert calculate_variance(VariantMetrics(unique_views=100, conversion_rate=20.0)) == pytest.approx(0.0016)
        assert calculate_variance(VariantMetrics(unique_views=0)) is None

    def test_select_default_profile(self, hero_profile: MetricWeightProfile) -> None:
        other = hero_profile.model_copy(update={'id': 'profile-other', 'is_default': False})

        assert select_default_profile([other, hero_profile]).id == 'profile-hero'
        assert select_default_profile([other]).id == 'profile-other'
        assert select_default_profile([]) is None


# =============================================================================
# Aggregation
# =============================================================================

@pytest.mark.asyncio
class TestAggregate:

    async def test_no_events_gives_zero_baseline(self, store, events, settings) -> None:
        aggregator = BaselineAggregator(store, events, settings)

        baseline = await aggregator.aggregate('hero', 'hero-1', 'parent', 'awareness')

        assert baseline.sample_size == 0
        assert baseline.composite_score == 0
        assert baseline.variance is None
        assert baseline.profile_id == 'profile-hero'
        assert events.calls == []

    async def test_segment_baseline_is_scored(self, store, events, settings) -> None:
        # Arrange
        events.set_item_variants('hero', 'hero-1', ['var-a', 'var-b'])
        events.set_aggregate(['var-a', 'var-b'], SAMPLE_AGGREGATE, persona='parent', funnel_stage='awareness')
        aggregator = BaselineAggregator(store, events, settings)

        # Act
        baseline = await aggregator.aggregate('hero', 'hero-1', 'parent', 'awareness')

        # Assert: cta 5% -> 0.05, dwell 60s -> 0.2, scroll 50% -> 0.5
        assert baseline.unique_views == 100
        assert baseline.sample_size == 100
        assert baseline.metric_breakdown['conversion'] == pytest.approx(20.0)
        assert baseline.metric_breakdown['cta_click'] == pytest.approx(5.0)
        assert baseline.variance == pytest.approx(0.0016)
        assert baseline.composite_score == 2300
        assert baseline.profile_id == 'profile-hero'

    async def test_window_bounds(self, store, events, settings) -> None:
        events.set_item_variants('hero', 'hero-1', ['var-a'])
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        aggregator = BaselineAggregator(store, events, settings)

        baseline = await aggregator.aggregate('hero', 'hero-1', window_days=7, now=now)

        assert baseline.window_end == now
        assert baseline.window_start == now - timedelta(days=7)
        assert events.calls[0]['window_start'] == now - timedelta(days=7)
        assert events.calls[0]['persona'] is None

    async def test_no_profile_scores_zero(self, events, settings) -> None:
        store = InMemoryContentStore()
        events.set_item_variants('banner', 'banner-1', ['var-a'])
        events.set_aggregate(['var-a'], SAMPLE_AGGREGATE)
        aggregator = BaselineAggregator(store, events, settings)

        baseline = await aggregator.aggregate('banner', 'banner-1')

        assert baseline.sample_size == 100
        assert baseline.composite_score == 0
        assert baseline.profile_id is None

    async def test_update_baseline_overwrites(self, store, events, settings) -> None:
        aggregator = BaselineAggregator(store, events, settings)

        await aggregator.update_baseline('hero', 'hero-1', 'parent', 'awareness')
        events.set_item_variants('hero', 'hero-1', ['var-a'])
        events.set_aggregate(['var-a'], SAMPLE_AGGREGATE, persona='parent', funnel_stage='awareness')
        await aggregator.update_baseline('hero', 'hero-1', 'parent', 'awareness')

        assert len(store.baselines) == 1
        stored = store.baselines[('hero', 'hero-1', 'parent', 'awareness')]
        assert stored.sample_size == 100


# =============================================================================
# Batch Updates
# =============================================================================

@pytest.mark.asyncio
class TestBatchUpdate:

    async def test_grid_plus_overall_per_item(self, store, events, settings) -> None:
        aggregator = BaselineAggregator(store, events, settings)

        updated = await aggregator.batch_update_baselines(
            'hero', ['hero-1', 'hero-2'], personas=['parent'], funnel_stages=['awareness', 'conversion']
        )

        assert updated == 6
        assert set(store.baselines) == {
            ('hero', item, persona, stage)
            for item in ('hero-1', 'hero-2')
            for persona, stage in [('parent', 'awareness'), ('parent', 'conversion'), (None, None)]
        }

    async def test_default_grid_covers_every_segment(self, store, events, settings) -> None:
        aggregator = BaselineAggregator(store, events, settings)

        updated = await aggregator.batch_update_baselines('hero', ['hero-1'])

        # 6 personas x 4 funnel stages + overall
        assert updated == 25

    async def test_failing_item_is_skipped(self, store, settings) -> None:
        events = FlakyEventSource(failing_item='hero-bad')
        aggregator = BaselineAggregator(store, events, settings)

        updated = await aggregator.batch_update_baselines(
            'hero', ['hero-bad', 'hero-1'], personas=['parent'], funnel_stages=['awareness']
        )

        assert updated == 2
        assert ('hero', 'hero-1', None, None) in store.baselines
        assert not any(key[1] == 'hero-bad' for key in store.baselines)
