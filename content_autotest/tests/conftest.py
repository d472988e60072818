"""
Pytest configuration and shared fixtures for the content automation tests.

Provides:
- settings: Settings built without reading .env, seeded Monte Carlo
- InMemoryContentStore / FakeEventSource: in-memory implementations of the
  ContentStore and EventSource protocols
- ScriptedGenerator: a VariantGenerator returning queued payloads or errors
- mock_db_pool / mock_slack_client: mocks for asyncpg and slack-sdk
- Factories for baselines, rules and candidates

The fakes expose synchronous seeding helpers (add_content, add_profile,
put_baseline, add_experiment, ...) so fixtures stay synchronous.
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Tuple
from unittest.mock import AsyncMock, Mock, patch

import pytest

from content_autotest.core.config import Settings
from content_autotest.core.exceptions import GenerationError, NotFoundError
from content_autotest.jobs.automation_scheduler import AutomationServices, build_automation_services
from content_autotest.models.enums import ExperimentStatus, GenerationStatus, MetricDirection
from content_autotest.models.schemas import (
    AutomationRule,
    AutomationRun,
    Candidate,
    EventAggregate,
    Experiment,
    ExperimentCreate,
    GenerationRecord,
    MetricWeight,
    MetricWeightProfile,
    PerformanceBaseline,
    RuleMetricThreshold,
    SafetyLimits,
    Variant,
    VariantCreate,
)
from content_autotest.services.generation import GeneratedContent, GenerationRequest


HERO_PAYLOAD: Dict[str, Any] = {
    'title': 'Every child deserves a great mentor',
    'description': 'Join thousands of families supporting local schools.',
    'button_text': 'Get involved',
    'button_link': '/get-involved',
}


# =============================================================================
# In-memory Content Store
# =============================================================================

class InMemoryContentStore:
    """ContentStore kept in dictionaries; mirrors PostgresContentStore semantics."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.content: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.override_log: List[Tuple[str, str, Dict[str, Any]]] = []
        self.refs: Dict[Tuple[str, str], None] = {}
        self.profiles: Dict[str, MetricWeightProfile] = {}
        self.baselines: Dict[Tuple[str, str, Optional[str], Optional[str]], PerformanceBaseline] = {}
        self.rules: Dict[str, AutomationRule] = {}
        self.safety_limits: Optional[SafetyLimits] = None
        self.experiments: Dict[str, Experiment] = {}
        self.variants: Dict[str, Variant] = {}
        self.targets: List[Tuple[str, str, str]] = []
        self.generations: List[GenerationRecord] = []
        self.runs: Dict[str, AutomationRun] = {}

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    # ----- seeding helpers -------------------------------------------------------

    def add_content(self, content_type: str, content_item_id: str, payload: Dict[str, Any]) -> None:
        """Register a live content item (treated as referenced by an experiment)."""
        self.content[(content_type, content_item_id)] = dict(payload)
        self.refs[(content_type, content_item_id)] = None

    def add_profile(self, profile: MetricWeightProfile) -> None:
        self.profiles[profile.id] = profile

    def put_baseline(self, baseline: PerformanceBaseline) -> None:
        key = (baseline.content_type, baseline.content_item_id, baseline.persona, baseline.funnel_stage)
        self.baselines[key] = baseline

    def add_rule(self, rule: AutomationRule) -> None:
        self.rules[rule.id] = rule

    def add_experiment(self, **fields: Any) -> Experiment:
        experiment = Experiment(id=fields.pop('id', None) or self._next_id('exp'), **fields)
        self.experiments[experiment.id] = experiment
        self.refs[(experiment.content_type, experiment.content_item_id)] = None
        return experiment

    def add_variant(self, experiment_id: str, name: str, payload: Dict[str, Any], is_control: bool = False,
                    variant_id: Optional[str] = None) -> Variant:
        variant = Variant(
            id=variant_id or self._next_id('var'),
            experiment_id=experiment_id,
            name=name,
            payload=dict(payload),
            is_control=is_control,
        )
        self.variants[variant.id] = variant
        return variant

    # ----- live content ------------------------------------------------------------

    async def get_content_payload(self, content_type: str, content_item_id: str) -> Optional[Dict[str, Any]]:
        payload = self.content.get((content_type, content_item_id))
        return dict(payload) if payload is not None else None

    async def apply_content_override(self, content_type: str, content_item_id: str, payload: Dict[str, Any]) -> None:
        if (content_type, content_item_id) not in self.content:
            raise NotFoundError("Content item", content_item_id)
        self.content[(content_type, content_item_id)] = dict(payload)
        self.override_log.append((content_type, content_item_id, dict(payload)))

    async def list_content_refs(self) -> List[Tuple[str, str]]:
        return sorted(self.refs)

    async def list_content_item_ids(self, content_type: str) -> List[str]:
        return sorted(item for ct, item in self.refs if ct == content_type)

    # ----- profiles and baselines --------------------------------------------------

    async def list_metric_weight_profiles(self, content_type: str) -> List[MetricWeightProfile]:
        return [profile for profile in self.profiles.values() if profile.content_type == content_type]

    async def get_metric_weight_profile(self, profile_id: str) -> Optional[MetricWeightProfile]:
        return self.profiles.get(profile_id)

    async def upsert_baseline(self, baseline: PerformanceBaseline) -> PerformanceBaseline:
        stored = baseline.model_copy(update={'id': self._next_id('baseline')})
        self.put_baseline(stored)
        return stored

    async def get_latest_baseline(
        self, content_type: str, content_item_id: str, persona: Optional[str], funnel_stage: Optional[str]
    ) -> Optional[PerformanceBaseline]:
        return self.baselines.get((content_type, content_item_id, persona, funnel_stage))

    async def list_baseline_scores(
        self, content_type: str, persona: Optional[str], funnel_stage: Optional[str], profile_id: Optional[str]
    ) -> List[int]:
        return [
            baseline.composite_score
            for (ct, _, p, s), baseline in self.baselines.items()
            if ct == content_type and p == persona and s == funnel_stage
            and (profile_id is None or baseline.profile_id == profile_id)
        ]

    # ----- rules and limits --------------------------------------------------------

    async def list_active_rules(self, content_type: Optional[str] = None) -> List[AutomationRule]:
        return [
            rule for rule in self.rules.values()
            if rule.is_active and (content_type is None or rule.content_type == content_type)
        ]

    async def get_rule(self, rule_id: str) -> Optional[AutomationRule]:
        return self.rules.get(rule_id)

    async def get_safety_limits(self) -> Optional[SafetyLimits]:
        return self.safety_limits

    async def save_safety_limits(self, limits: SafetyLimits) -> SafetyLimits:
        self.safety_limits = limits
        return limits

    # ----- experiments and variants ------------------------------------------------

    async def create_experiment(self, data: ExperimentCreate) -> Experiment:
        now = datetime.now(timezone.utc)
        return self.add_experiment(**data.model_dump(), created_at=now, updated_at=now)

    async def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        return self.experiments.get(experiment_id)

    def _filter_experiments(
        self, status: Optional[ExperimentStatus], is_automated: Optional[bool]
    ) -> List[Experiment]:
        return [
            experiment for experiment in self.experiments.values()
            if (status is None or experiment.status == status)
            and (is_automated is None or experiment.is_automated == is_automated)
        ]

    async def list_experiments(
        self, status: Optional[ExperimentStatus] = None, is_automated: Optional[bool] = None
    ) -> List[Experiment]:
        return self._filter_experiments(status, is_automated)

    async def count_experiments(
        self, status: Optional[ExperimentStatus] = None, is_automated: Optional[bool] = None
    ) -> int:
        return len(self._filter_experiments(status, is_automated))

    async def update_experiment(self, experiment_id: str, **fields: Any) -> Experiment:
        if experiment_id not in self.experiments:
            raise NotFoundError("Experiment", experiment_id)
        fields['updated_at'] = datetime.now(timezone.utc)
        updated = self.experiments[experiment_id].model_copy(update=fields)
        self.experiments[experiment_id] = updated
        return updated

    async def delete_completed_experiments(self, ended_before: datetime) -> List[str]:
        deleted = [
            experiment.id for experiment in self.experiments.values()
            if experiment.is_automated
            and experiment.status == ExperimentStatus.COMPLETED
            and experiment.end_date is not None
            and experiment.end_date < ended_before
        ]
        for experiment_id in deleted:
            del self.experiments[experiment_id]
            for variant_id in [v.id for v in self.variants.values() if v.experiment_id == experiment_id]:
                del self.variants[variant_id]
        return deleted

    async def list_promoted_experiments(self, limit: int) -> List[Experiment]:
        promoted = [
            experiment for experiment in self.experiments.values()
            if experiment.status == ExperimentStatus.COMPLETED and experiment.winner_variant_id is not None
        ]
        return promoted[:limit]

    async def create_variant(self, data: VariantCreate) -> Variant:
        return self.add_variant(data.experiment_id, data.name, data.payload, data.is_control)

    async def get_variant(self, variant_id: str) -> Optional[Variant]:
        return self.variants.get(variant_id)

    async def list_variants(self, experiment_id: str) -> List[Variant]:
        return [variant for variant in self.variants.values() if variant.experiment_id == experiment_id]

    async def create_targets(self, experiment_id: str, targets: Sequence[Tuple[str, str]]) -> int:
        for persona, stage in targets:
            self.targets.append((experiment_id, persona, stage))
        return len(targets)

    # ----- generation budget -------------------------------------------------------

    async def record_generation(self, record: GenerationRecord) -> None:
        self.generations.append(record)

    async def count_generations_since(self, since: datetime) -> int:
        return sum(1 for record in self.generations if record.created_at >= since)

    async def count_generations_for_experiment(self, experiment_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.generations:
            if record.experiment_id == experiment_id:
                key = GenerationStatus(record.status).value
                counts[key] = counts.get(key, 0) + 1
        return counts

    # ----- automation runs ---------------------------------------------------------

    async def create_automation_run(self, status: str, trigger: str, started_at: datetime) -> AutomationRun:
        run = AutomationRun(id=self._next_id('run'), status=status, trigger=trigger, started_at=started_at)
        self.runs[run.id] = run
        return run

    async def update_automation_run(self, run_id: str, **fields: Any) -> AutomationRun:
        if run_id not in self.runs:
            raise NotFoundError("Automation run", run_id)
        updated = self.runs[run_id].model_copy(update=fields)
        self.runs[run_id] = updated
        return updated

    async def list_automation_runs(self, limit: int) -> List[AutomationRun]:
        ordered = sorted(self.runs.values(), key=lambda run: run.started_at, reverse=True)
        return ordered[:limit]


# =============================================================================
# Fake Event Source
# =============================================================================

class FakeEventSource:
    """
    EventSource answering from canned aggregates.

    Aggregates are keyed by (sorted variant ids, persona, funnel stage); unknown
    keys return an empty EventAggregate. Every aggregate call is recorded.
    """

    def __init__(self) -> None:
        self.item_variants: Dict[Tuple[str, str], List[str]] = {}
        self.aggregates: Dict[Tuple[Tuple[str, ...], Optional[str], Optional[str]], EventAggregate] = {}
        self.calls: List[Dict[str, Any]] = []

    def set_item_variants(self, content_type: str, content_item_id: str, variant_ids: Sequence[str]) -> None:
        self.item_variants[(content_type, content_item_id)] = list(variant_ids)

    def set_aggregate(
        self,
        variant_ids: Sequence[str],
        aggregate: EventAggregate,
        persona: Optional[str] = None,
        funnel_stage: Optional[str] = None,
    ) -> None:
        self.aggregates[(tuple(sorted(variant_ids)), persona, funnel_stage)] = aggregate

    async def variant_ids_with_events(
        self, content_type: str, content_item_id: str, window_start: datetime, window_end: datetime
    ) -> List[str]:
        return list(self.item_variants.get((content_type, content_item_id), []))

    async def aggregate(
        self,
        variant_ids: Sequence[str],
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
        persona: Optional[str] = None,
        funnel_stage: Optional[str] = None,
    ) -> EventAggregate:
        self.calls.append({
            'variant_ids': list(variant_ids),
            'window_start': window_start,
            'window_end': window_end,
            'persona': persona,
            'funnel_stage': funnel_stage,
        })
        return self.aggregates.get((tuple(sorted(variant_ids)), persona, funnel_stage), EventAggregate())


# =============================================================================
# Scripted Generator
# =============================================================================

class ScriptedGenerator:
    """
    VariantGenerator returning queued outputs in order.

    A queued Exception is raised; anything else is returned as the payload.
    With an empty queue the control payload is echoed with a new title.
    """

    def __init__(self, outputs: Optional[Sequence[Any]] = None) -> None:
        self.outputs: List[Any] = list(outputs or [])
        self.requests: List[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> GeneratedContent:
        self.requests.append(request)
        if self.outputs:
            output = self.outputs.pop(0)
        else:
            output = {**request.control_payload, 'title': f"Variant {request.attempt} for {request.persona}"}

        if isinstance(output, Exception):
            raise output
        return GeneratedContent(payload=output, generator_model='scripted-model', tokens_used=120)


class FailingGenerator:
    async def generate(self, request: GenerationRequest) -> GeneratedContent:
        raise GenerationError("model unavailable")


# =============================================================================
# Settings and Service Fixtures
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="postgresql://localhost/content_autotest_test",
        _env_file=None,
        monte_carlo_seed=42,
        automation_run_on_start=False,
        slack_webhook_url=None,
    )


@pytest.fixture
def hero_profile() -> MetricWeightProfile:
    return MetricWeightProfile(
        id='profile-hero',
        content_type='hero',
        name='Hero engagement',
        is_default=True,
        metrics=[
            MetricWeight(metric_key='cta_click', weight=0.4, direction=MetricDirection.MAXIMIZE),
            MetricWeight(metric_key='dwell_time', weight=0.3, direction=MetricDirection.MAXIMIZE),
            MetricWeight(metric_key='scroll_depth', weight=0.3, direction=MetricDirection.MAXIMIZE),
        ],
    )


@pytest.fixture
def store(hero_profile: MetricWeightProfile) -> InMemoryContentStore:
    store = InMemoryContentStore()
    store.add_profile(hero_profile)
    store.add_content('hero', 'hero-1', HERO_PAYLOAD)
    return store


@pytest.fixture
def events() -> FakeEventSource:
    return FakeEventSource()


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def services(
    store: InMemoryContentStore,
    events: FakeEventSource,
    generator: ScriptedGenerator,
    settings: Settings,
) -> AutomationServices:
    return build_automation_services(store, events, generator, settings)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_baseline() -> Callable[..., PerformanceBaseline]:
    def factory(
        composite_score: int = 2000,
        sample_size: int = 100,
        persona: Optional[str] = 'parent',
        funnel_stage: Optional[str] = 'awareness',
        content_item_id: str = 'hero-1',
        profile_id: Optional[str] = 'profile-hero',
        **overrides: Any,
    ) -> PerformanceBaseline:
        now = datetime.now(timezone.utc)
        fields = dict(
            content_type='hero',
            content_item_id=content_item_id,
            persona=persona,
            funnel_stage=funnel_stage,
            window_start=now - timedelta(days=30),
            window_end=now,
            window_days=30,
            total_views=sample_size * 2,
            unique_views=sample_size,
            total_events=sample_size // 10,
            metric_breakdown={'cta_click': 5.0, 'conversion': 10.0, 'dwell_time': 30.0, 'scroll_depth': 40.0},
            composite_score=composite_score,
            sample_size=sample_size,
            profile_id=profile_id,
            computed_at=now,
        )
        fields.update(overrides)
        return PerformanceBaseline(**fields)

    return factory


@pytest.fixture
def make_rule() -> Callable[..., AutomationRule]:
    def factory(
        rule_id: str = 'rule-1',
        thresholds: Optional[List[RuleMetricThreshold]] = None,
        **overrides: Any,
    ) -> AutomationRule:
        fields = dict(
            id=rule_id,
            name='Low hero engagement',
            content_type='hero',
            target_personas=['parent'],
            target_funnel_stages=['awareness'],
            metric_thresholds=thresholds or [],
            confidence_threshold=0.95,
            minimum_sample_size=100,
            is_active=True,
        )
        fields.update(overrides)
        return AutomationRule(**fields)

    return factory


@pytest.fixture
def make_candidate(make_baseline: Callable[..., PerformanceBaseline]) -> Callable[..., Candidate]:
    def factory(
        content_item_id: str = 'hero-1',
        persona: str = 'parent',
        funnel_stage: str = 'awareness',
        composite_score: int = 1500,
    ) -> Candidate:
        return Candidate(
            content_type='hero',
            content_item_id=content_item_id,
            persona=persona,
            funnel_stage=funnel_stage,
            rule_id='rule-1',
            rule_name='Low hero engagement',
            triggered_metrics=['composite_score'],
            reason='Composite score in bottom 25th percentile',
            baseline=make_baseline(
                composite_score=composite_score,
                persona=persona,
                funnel_stage=funnel_stage,
                content_item_id=content_item_id,
            ),
        )

    return factory


# =============================================================================
# Database and Slack Mocks
# =============================================================================

@pytest.fixture
def mock_db_pool() -> AsyncMock:
    """
    Mock asyncpg pool whose acquire() yields one shared mock connection.

    The connection's transaction() is a plain async context manager.
    """
    pool = AsyncMock()

    conn = AsyncMock()
    conn.execute = AsyncMock(return_value=None)
    conn.executemany = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)

    transaction_context = AsyncMock()
    transaction_context.__aenter__ = AsyncMock(return_value=None)
    transaction_context.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = Mock(return_value=transaction_context)

    acquire_context = AsyncMock()
    acquire_context.__aenter__ = AsyncMock(return_value=conn)
    acquire_context.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = Mock(return_value=acquire_context)

    pool.close = AsyncMock(return_value=None)
    return pool


@pytest.fixture
def mock_slack_client() -> Generator[Mock, None, None]:
    """Patch slack_sdk's WebhookClient in the digest job with a client returning 200."""
    client = Mock()
    response = Mock()
    response.status_code = 200
    response.body = 'ok'
    client.send = Mock(return_value=response)

    with patch('content_autotest.jobs.slack_digest.WebhookClient', return_value=client):
        yield client
