"""
Content store and event source interfaces, plus their PostgreSQL implementations.

The engine's services depend only on the ContentStore and EventSource protocols.
PostgresContentStore / PostgresEventSource back them with the asyncpg helpers in
core/database.py and the statements in sql/automation_queries.py; tests use the
in-memory implementations from tests/conftest.py.

Write ownership:
- Lifecycle manager: experiments, variants, targets, generation records
- Promotion service: winner_variant_id and live content overrides
- Scheduler: automation runs and the safety-limits bootstrap
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from content_autotest.core.database import (
    execute_command,
    execute_many,
    execute_query,
    execute_query_one,
    execute_scalar,
    get_db_pool,
)
from content_autotest.core.exceptions import NotFoundError
from content_autotest.models.enums import ExperimentStatus, GenerationStatus
from content_autotest.models.schemas import (
    AutomationRule,
    AutomationRun,
    EventAggregate,
    Experiment,
    ExperimentCreate,
    GenerationRecord,
    MetricWeightProfile,
    PerformanceBaseline,
    RuleMetricThreshold,
    SafetyLimits,
    Variant,
    VariantCreate,
)
from content_autotest.sql import automation_queries as queries


logger = logging.getLogger(__name__)


# =============================================================================
# Interfaces
# =============================================================================

class ContentStore(Protocol):
    """Persistence operations consumed by the automation engine."""

    # Live content
    async def get_content_payload(self, content_type: str, content_item_id: str) -> Optional[Dict[str, Any]]: ...
    async def apply_content_override(self, content_type: str, content_item_id: str, payload: Dict[str, Any]) -> None: ...
    async def list_content_refs(self) -> List[Tuple[str, str]]: ...
    async def list_content_item_ids(self, content_type: str) -> List[str]: ...

    # Profiles and baselines
    async def list_metric_weight_profiles(self, content_type: str) -> List[MetricWeightProfile]: ...
    async def get_metric_weight_profile(self, profile_id: str) -> Optional[MetricWeightProfile]: ...
    async def upsert_baseline(self, baseline: PerformanceBaseline) -> PerformanceBaseline: ...
    async def get_latest_baseline(
        self, content_type: str, content_item_id: str, persona: Optional[str], funnel_stage: Optional[str]
    ) -> Optional[PerformanceBaseline]: ...
    async def list_baseline_scores(
        self, content_type: str, persona: Optional[str], funnel_stage: Optional[str], profile_id: Optional[str]
    ) -> List[int]: ...

    # Rules and safety limits
    async def list_active_rules(self, content_type: Optional[str] = None) -> List[AutomationRule]: ...
    async def get_rule(self, rule_id: str) -> Optional[AutomationRule]: ...
    async def get_safety_limits(self) -> Optional[SafetyLimits]: ...
    async def save_safety_limits(self, limits: SafetyLimits) -> SafetyLimits: ...

    # Experiments and variants
    async def create_experiment(self, data: ExperimentCreate) -> Experiment: ...
    async def get_experiment(self, experiment_id: str) -> Optional[Experiment]: ...
    async def list_experiments(
        self, status: Optional[ExperimentStatus] = None, is_automated: Optional[bool] = None
    ) -> List[Experiment]: ...
    async def count_experiments(
        self, status: Optional[ExperimentStatus] = None, is_automated: Optional[bool] = None
    ) -> int: ...
    async def update_experiment(self, experiment_id: str, **fields: Any) -> Experiment: ...
    async def delete_completed_experiments(self, ended_before: datetime) -> List[str]: ...
    async def list_promoted_experiments(self, limit: int) -> List[Experiment]: ...
    async def create_variant(self, data: VariantCreate) -> Variant: ...
    async def get_variant(self, variant_id: str) -> Optional[Variant]: ...
    async def list_variants(self, experiment_id: str) -> List[Variant]: ...
    async def create_targets(self, experiment_id: str, targets: Sequence[Tuple[str, str]]) -> int: ...

    # Generation budget
    async def record_generation(self, record: GenerationRecord) -> None: ...
    async def count_generations_since(self, since: datetime) -> int: ...
    async def count_generations_for_experiment(self, experiment_id: str) -> Dict[str, int]: ...

    # Automation runs
    async def create_automation_run(self, status: str, trigger: str, started_at: datetime) -> AutomationRun: ...
    async def update_automation_run(self, run_id: str, **fields: Any) -> AutomationRun: ...
    async def list_automation_runs(self, limit: int) -> List[AutomationRun]: ...


class EventSource(Protocol):
    """Read-only aggregate analytics scoped by variant ids and a time window."""

    async def variant_ids_with_events(
        self, content_type: str, content_item_id: str, window_start: datetime, window_end: datetime
    ) -> List[str]: ...

    async def aggregate(
        self,
        variant_ids: Sequence[str],
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
        persona: Optional[str] = None,
        funnel_stage: Optional[str] = None,
    ) -> EventAggregate: ...


# =============================================================================
# Record Mapping Helpers
# =============================================================================

def _new_id() -> str:
    return str(uuid.uuid4())


def _record_to_experiment(record: Any) -> Experiment:
    data = dict(record)
    data['id'] = str(data['id'])
    if data.get('winner_variant_id') is not None:
        data['winner_variant_id'] = str(data['winner_variant_id'])
    return Experiment(**data)


def _record_to_variant(record: Any) -> Variant:
    return Variant(
        id=str(record['id']),
        experiment_id=str(record['test_id']),
        name=record['name'],
        payload=record['configuration'] or {},
        is_control=bool(record['is_control']),
        created_at=record['created_at'],
    )


def _record_to_profile(record: Any) -> MetricWeightProfile:
    return MetricWeightProfile(
        id=str(record['id']),
        content_type=record['content_type'],
        name=record['name'] or '',
        is_default=bool(record['is_default']),
        metrics=record['metrics'] or [],
    )


def _record_to_baseline(record: Any) -> PerformanceBaseline:
    data = dict(record)
    data['id'] = str(data['id'])
    data['metric_breakdown'] = data.get('metric_breakdown') or {}
    return PerformanceBaseline(**data)


def _record_to_rule(record: Any) -> AutomationRule:
    thresholds = [RuleMetricThreshold(**item) for item in (record['metric_thresholds'] or [])]
    return AutomationRule(
        id=str(record['id']),
        name=record['name'],
        content_type=record['content_type'],
        target_personas=record['target_personas'] or None,
        target_funnel_stages=record['target_funnel_stages'] or None,
        metric_thresholds=thresholds,
        confidence_threshold=float(record['confidence_threshold']),
        minimum_sample_size=int(record['minimum_sample_size']),
        is_active=bool(record['is_active']),
    )


def _record_to_run(record: Any) -> AutomationRun:
    data = dict(record)
    data['id'] = str(data['id'])
    data['results'] = data.get('results') or {}
    return AutomationRun(**data)


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, 'value') else value


# =============================================================================
# PostgreSQL Implementations
# =============================================================================

class PostgresContentStore:
    """ContentStore backed by the asyncpg pool."""

    # ----- live content ------------------------------------------------------

    async def get_content_payload(self, content_type: str, content_item_id: str) -> Optional[Dict[str, Any]]:
        row = await execute_query_one(queries.get_content_payload_query(), content_item_id)
        if row is None:
            return None
        return {key: value for key, value in dict(row).items() if value is not None}

    async def apply_content_override(self, content_type: str, content_item_id: str, payload: Dict[str, Any]) -> None:
        columns = [key for key in payload if key in queries.CONTENT_COLUMNS]
        skipped = set(payload) - set(columns)
        if skipped:
            logger.warning(f"Ignoring non-content fields for {content_type}/{content_item_id}: {sorted(skipped)}")

        status = await execute_command(
            queries.get_content_override_query(columns),
            content_item_id,
            *[payload[c] for c in columns],
        )
        if status.endswith(' 0'):
            logger.warning(f"Content override matched no rows for {content_type}/{content_item_id}")

    async def list_content_refs(self) -> List[Tuple[str, str]]:
        rows = await execute_query(queries.get_content_refs_query())
        return [(row['content_type'], str(row['content_item_id'])) for row in rows]

    async def list_content_item_ids(self, content_type: str) -> List[str]:
        rows = await execute_query(queries.get_content_item_ids_query(), content_type)
        return [str(row['content_item_id']) for row in rows]

    # ----- profiles and baselines -------------------------------------------

    async def list_metric_weight_profiles(self, content_type: str) -> List[MetricWeightProfile]:
        rows = await execute_query(queries.get_profiles_for_content_type_query(), content_type)
        return [_record_to_profile(row) for row in rows]

    async def get_metric_weight_profile(self, profile_id: str) -> Optional[MetricWeightProfile]:
        row = await execute_query_one(queries.get_profile_by_id_query(), profile_id)
        return _record_to_profile(row) if row else None

    async def upsert_baseline(self, baseline: PerformanceBaseline) -> PerformanceBaseline:
        """Replace the baseline for its key in one transaction (never partially updated)."""
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    queries.get_delete_baseline_query(),
                    baseline.content_type,
                    baseline.content_item_id,
                    baseline.persona,
                    baseline.funnel_stage,
                    baseline.window_days,
                )
                row = await conn.fetchrow(
                    queries.get_insert_baseline_query(),
                    baseline.id or _new_id(),
                    baseline.content_type,
                    baseline.content_item_id,
                    baseline.persona,
                    baseline.funnel_stage,
                    baseline.window_start,
                    baseline.window_end,
                    baseline.window_days,
                    baseline.total_views,
                    baseline.unique_views,
                    baseline.total_events,
                    baseline.metric_breakdown,
                    baseline.composite_score,
                    baseline.sample_size,
                    baseline.variance,
                    baseline.profile_id,
                    baseline.computed_at,
                )
        return _record_to_baseline(row)

    async def get_latest_baseline(
        self, content_type: str, content_item_id: str, persona: Optional[str], funnel_stage: Optional[str]
    ) -> Optional[PerformanceBaseline]:
        row = await execute_query_one(
            queries.get_latest_baseline_query(), content_type, content_item_id, persona, funnel_stage
        )
        return _record_to_baseline(row) if row else None

    async def list_baseline_scores(
        self, content_type: str, persona: Optional[str], funnel_stage: Optional[str], profile_id: Optional[str]
    ) -> List[int]:
        rows = await execute_query(
            queries.get_baseline_scores_query(), content_type, persona, funnel_stage, profile_id
        )
        return [int(row['composite_score']) for row in rows]

    # ----- rules and safety limits -----------------------------------------

    async def list_active_rules(self, content_type: Optional[str] = None) -> List[AutomationRule]:
        if content_type:
            rows = await execute_query(queries.get_active_rules_query(content_type), content_type)
        else:
            rows = await execute_query(queries.get_active_rules_query())
        return [_record_to_rule(row) for row in rows]

    async def get_rule(self, rule_id: str) -> Optional[AutomationRule]:
        row = await execute_query_one(queries.get_rule_by_id_query(), rule_id)
        return _record_to_rule(row) if row else None

    async def get_safety_limits(self) -> Optional[SafetyLimits]:
        row = await execute_query_one(queries.get_safety_limits_query())
        return SafetyLimits(**dict(row)) if row else None

    async def save_safety_limits(self, limits: SafetyLimits) -> SafetyLimits:
        await execute_command(
            queries.get_insert_safety_limits_query(),
            _new_id(),
            limits.max_concurrent_tests,
            limits.max_daily_generations,
            limits.max_variants_per_test,
        )
        return limits

    # ----- experiments and variants ----------------------------------------

    async def create_experiment(self, data: ExperimentCreate) -> Experiment:
        row = await execute_query_one(
            queries.get_insert_experiment_query(),
            _new_id(),
            data.name,
            data.description,
            data.content_type,
            data.content_item_id,
            _enum_value(data.status),
            data.traffic_allocation,
            data.is_automated,
            data.rule_id,
            data.persona,
            data.funnel_stage,
        )
        return _record_to_experiment(row)

    async def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        row = await execute_query_one(queries.get_experiment_by_id_query(), experiment_id)
        return _record_to_experiment(row) if row else None

    async def list_experiments(
        self, status: Optional[ExperimentStatus] = None, is_automated: Optional[bool] = None
    ) -> List[Experiment]:
        rows = await execute_query(queries.get_experiments_query(), _enum_value(status), is_automated)
        return [_record_to_experiment(row) for row in rows]

    async def count_experiments(
        self, status: Optional[ExperimentStatus] = None, is_automated: Optional[bool] = None
    ) -> int:
        count = await execute_scalar(queries.get_count_experiments_query(), _enum_value(status), is_automated)
        return int(count or 0)

    async def update_experiment(self, experiment_id: str, **fields: Any) -> Experiment:
        columns = list(fields)
        row = await execute_query_one(
            queries.get_update_experiment_query(columns),
            experiment_id,
            *[_enum_value(fields[c]) for c in columns],
        )
        if row is None:
            raise NotFoundError("Experiment", experiment_id)
        return _record_to_experiment(row)

    async def delete_completed_experiments(self, ended_before: datetime) -> List[str]:
        rows = await execute_query(queries.get_delete_completed_experiments_query(), ended_before)
        return [str(row['id']) for row in rows]

    async def list_promoted_experiments(self, limit: int) -> List[Experiment]:
        rows = await execute_query(queries.get_promotion_history_query(), limit)
        return [_record_to_experiment(row) for row in rows]

    async def create_variant(self, data: VariantCreate) -> Variant:
        row = await execute_query_one(
            queries.get_insert_variant_query(),
            _new_id(),
            data.experiment_id,
            data.name,
            data.payload,
            data.is_control,
        )
        return _record_to_variant(row)

    async def get_variant(self, variant_id: str) -> Optional[Variant]:
        row = await execute_query_one(queries.get_variant_by_id_query(), variant_id)
        return _record_to_variant(row) if row else None

    async def list_variants(self, experiment_id: str) -> List[Variant]:
        rows = await execute_query(queries.get_variants_for_experiment_query(), experiment_id)
        return [_record_to_variant(row) for row in rows]

    async def create_targets(self, experiment_id: str, targets: Sequence[Tuple[str, str]]) -> int:
        if not targets:
            return 0
        await execute_many(
            queries.get_insert_target_query(),
            [(_new_id(), experiment_id, persona, stage) for persona, stage in targets],
        )
        return len(targets)

    # ----- generation budget -----------------------------------------------

    async def record_generation(self, record: GenerationRecord) -> None:
        await execute_command(
            queries.get_insert_generation_query(),
            _new_id(),
            record.experiment_id,
            record.variant_id,
            _enum_value(record.status),
            record.error_message,
            record.generator_model,
            record.tokens_used,
            record.created_at,
        )

    async def count_generations_since(self, since: datetime) -> int:
        count = await execute_scalar(queries.get_count_generations_since_query(), since)
        return int(count or 0)

    async def count_generations_for_experiment(self, experiment_id: str) -> Dict[str, int]:
        rows = await execute_query(queries.get_generation_counts_for_experiment_query(), experiment_id)
        counts = {status.value: 0 for status in GenerationStatus}
        for row in rows:
            counts[row['status']] = int(row['count'])
        return counts

    # ----- automation runs -------------------------------------------------

    async def create_automation_run(self, status: str, trigger: str, started_at: datetime) -> AutomationRun:
        row = await execute_query_one(
            queries.get_insert_run_query(), _new_id(), _enum_value(status), _enum_value(trigger), started_at
        )
        return _record_to_run(row)

    async def update_automation_run(self, run_id: str, **fields: Any) -> AutomationRun:
        columns = list(fields)
        row = await execute_query_one(
            queries.get_update_run_query(columns),
            run_id,
            *[_enum_value(fields[c]) for c in columns],
        )
        if row is None:
            raise NotFoundError("Automation run", run_id)
        return _record_to_run(row)

    async def list_automation_runs(self, limit: int) -> List[AutomationRun]:
        rows = await execute_query(queries.get_recent_runs_query(), limit)
        return [_record_to_run(row) for row in rows]


class PostgresEventSource:
    """EventSource reading ab_test_events through the asyncpg pool."""

    async def variant_ids_with_events(
        self, content_type: str, content_item_id: str, window_start: datetime, window_end: datetime
    ) -> List[str]:
        rows = await execute_query(
            queries.get_variant_ids_with_events_query(),
            content_type,
            content_item_id,
            window_start,
            window_end,
        )
        return [str(row['id']) for row in rows]

    async def aggregate(
        self,
        variant_ids: Sequence[str],
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
        persona: Optional[str] = None,
        funnel_stage: Optional[str] = None,
    ) -> EventAggregate:
        if not variant_ids:
            return EventAggregate()

        row = await execute_query_one(
            queries.get_event_aggregate_query(),
            list(variant_ids),
            window_start,
            window_end,
            persona,
            funnel_stage,
        )
        if row is None:
            return EventAggregate()

        return EventAggregate(
            total_views=int(row['total_views'] or 0),
            unique_views=int(row['unique_views'] or 0),
            total_events=int(row['total_events'] or 0),
            cta_clicks=int(row['cta_clicks'] or 0),
            dwell_time_avg=float(row['dwell_time_avg'] or 0.0),
            scroll_depth_avg=float(row['scroll_depth_avg'] or 0.0),
        )
