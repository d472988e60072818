"""
Pydantic models for the content experiment automation engine.

This module provides the records read from and written to the content store
(profiles, baselines, rules, experiments, variants, safety limits, runs) and the
transient results passed between engine steps (candidates, evaluations,
promotion results, cycle summaries).

All models use Pydantic v2 syntax.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from content_autotest.models.enums import (
    CreationOutcome,
    ExperimentStatus,
    GenerationStatus,
    MetricDirection,
    PromotionAction,
    RunStatus,
    RunTrigger,
    SchedulerState,
    StopReason,
    ThresholdType,
)


# =============================================================================
# Scoring
# =============================================================================

class MetricWeight(BaseModel):
    """One weighted entry of a MetricWeightProfile."""

    metric_key: str = Field(..., description="Metric key, e.g. cta_click or dwell_time")
    weight: float = Field(..., ge=0.0, description="Relative weight in the composite")
    direction: MetricDirection = Field(
        default=MetricDirection.MAXIMIZE,
        description="Whether higher or lower values are better",
    )


class MetricWeightProfile(BaseModel):
    """
    Weighted metric profile for a content type.

    Exactly one profile per content type is marked default. Profiles are
    configuration and read-only at runtime.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "profile-hero",
                "content_type": "hero",
                "name": "Hero engagement",
                "is_default": True,
                "metrics": [
                    {"metric_key": "cta_click", "weight": 0.4, "direction": "maximize"},
                    {"metric_key": "dwell_time", "weight": 0.3, "direction": "maximize"},
                    {"metric_key": "scroll_depth", "weight": 0.3, "direction": "maximize"},
                ],
            }
        }
    )

    id: str = Field(..., description="Profile identifier")
    content_type: str = Field(..., description="Content type this profile scores")
    name: str = Field(default="", description="Human-readable profile name")
    is_default: bool = Field(default=False, description="Default profile for the content type")
    metrics: List[MetricWeight] = Field(default_factory=list, description="Ordered weighted metrics")


class EventAggregate(BaseModel):
    """Aggregate event counts returned by the event source for a set of variants."""

    total_views: int = Field(default=0, ge=0, description="page_view events")
    unique_views: int = Field(default=0, ge=0, description="Distinct sessions with a page view")
    total_events: int = Field(default=0, ge=0, description="Engagement (non page_view) events")
    cta_clicks: int = Field(default=0, ge=0, description="cta_click events")
    dwell_time_avg: float = Field(default=0.0, ge=0.0, description="Mean dwell time in seconds")
    scroll_depth_avg: float = Field(default=0.0, ge=0.0, description="Mean scroll depth percent")


class VariantMetrics(BaseModel):
    """Raw performance metrics for a variant (or a whole content item)."""

    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    is_control: bool = False
    total_views: int = 0
    unique_views: int = 0
    total_events: int = 0
    cta_clicks: int = 0
    conversion_rate: float = Field(default=0.0, description="total_events / unique_views * 100")
    cta_click_rate: float = Field(default=0.0, description="cta_clicks / total_views * 100")
    dwell_time_avg: float = 0.0
    scroll_depth_avg: float = 0.0


class ScoredVariant(BaseModel):
    """Composite score of one set of metrics under one profile."""

    variant_id: Optional[str] = None
    profile_id: Optional[str] = None
    composite_score: int = Field(..., ge=0, le=10000, description="Composite score on 0-10000")
    metric_breakdown: Dict[str, float] = Field(default_factory=dict, description="Raw metric values")
    normalized_scores: Dict[str, float] = Field(default_factory=dict, description="Normalized 0-1 values")
    sample_size: int = 0


class BaselineComparison(BaseModel):
    """A variant's composite score against a baseline, both under the same profile."""

    profile_id: Optional[str] = None
    baseline_score: int
    variant_score: int
    score_delta: int
    improvement_percent: float


class PerformanceBaseline(BaseModel):
    """
    Rolling-window performance of a content item, optionally per persona and funnel stage.

    Recomputed and overwritten every cycle. profile_id records the weight profile
    that produced composite_score; comparisons must use that same profile.
    """

    id: Optional[str] = None
    content_type: str
    content_item_id: str
    persona: Optional[str] = Field(default=None, description="None for the overall baseline")
    funnel_stage: Optional[str] = Field(default=None, description="None for the overall baseline")
    window_start: datetime
    window_end: datetime
    window_days: int = 30
    total_views: int = 0
    unique_views: int = 0
    total_events: int = 0
    metric_breakdown: Dict[str, float] = Field(default_factory=dict)
    composite_score: int = Field(default=0, ge=0, le=10000)
    sample_size: int = Field(default=0, ge=0, description="Equal to unique_views")
    variance: Optional[float] = Field(default=None, description="Bernoulli proxy p(1-p)/n")
    profile_id: Optional[str] = None
    computed_at: Optional[datetime] = None


# =============================================================================
# Rules and Candidates
# =============================================================================

class RuleMetricThreshold(BaseModel):
    """A metric-specific underperformance threshold inside an AutomationRule."""

    metric_key: str
    threshold_type: ThresholdType
    threshold_value: float
    minimum_sample: int = Field(default=30, ge=0)


class AutomationRule(BaseModel):
    """
    Configured rule that detects underperforming content of one content type.

    Empty target lists mean all personas / funnel stages. With no metric
    thresholds the rule falls back to the composite-score percentile check.
    """

    id: str
    name: str
    content_type: str
    target_personas: Optional[List[str]] = None
    target_funnel_stages: Optional[List[str]] = None
    metric_thresholds: List[RuleMetricThreshold] = Field(default_factory=list)
    confidence_threshold: float = Field(default=0.95, gt=0.0, lt=1.0)
    minimum_sample_size: int = Field(default=100, ge=0)
    is_active: bool = True


class Candidate(BaseModel):
    """Underperforming (content, persona, funnel stage) found by a rule. Not persisted."""

    content_type: str
    content_item_id: str
    persona: str
    funnel_stage: str
    rule_id: str
    rule_name: str
    triggered_metrics: List[str] = Field(default_factory=list)
    reason: str = ""
    baseline: PerformanceBaseline


class RuleEvaluationResult(BaseModel):
    """Candidates produced by one rule-engine pass, after safety truncation."""

    candidates: List[Candidate] = Field(default_factory=list)
    rules_evaluated: int = 0
    baselines_checked: int = 0
    candidates_before_limits: int = 0


# =============================================================================
# Experiments and Variants
# =============================================================================

class SafetyLimits(BaseModel):
    """Global caps on automated experimentation (singleton record)."""

    max_concurrent_tests: int = Field(default=10, ge=0)
    max_daily_generations: int = Field(default=20, ge=0)
    max_variants_per_test: int = Field(default=3, ge=2, description="Including the control")


class ExperimentCreate(BaseModel):
    """Fields required to insert a new experiment."""

    name: str
    description: Optional[str] = None
    content_type: str
    content_item_id: str
    status: ExperimentStatus = ExperimentStatus.DRAFT
    traffic_allocation: int = Field(default=100, ge=0, le=100)
    is_automated: bool = True
    rule_id: Optional[str] = None
    persona: Optional[str] = None
    funnel_stage: Optional[str] = None


class Experiment(ExperimentCreate):
    """A persisted experiment."""

    id: str
    winner_variant_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class VariantCreate(BaseModel):
    """Fields required to insert a new variant."""

    experiment_id: str
    name: str
    payload: Dict[str, Any] = Field(..., description="Content override, same shape as live content")
    is_control: bool = False


class Variant(VariantCreate):
    """A persisted variant."""

    id: str
    created_at: Optional[datetime] = None


class GenerationRecord(BaseModel):
    """One persisted variant-generation attempt; counted against the daily budget."""

    experiment_id: str
    variant_id: Optional[str] = None
    status: GenerationStatus
    error_message: Optional[str] = None
    generator_model: Optional[str] = None
    tokens_used: Optional[int] = None
    created_at: datetime


class GenerationAttempt(BaseModel):
    """Outcome of one generation attempt inside create_automated_test."""

    attempt: int
    success: bool
    variant_id: Optional[str] = None
    error: Optional[str] = None


class ExperimentCreationResult(BaseModel):
    """The experiment created for a candidate, its variants, and per-attempt outcomes."""

    experiment: Experiment
    control_variant: Variant
    variants: List[Variant] = Field(default_factory=list, description="All variants, control first")
    generation_attempts: List[GenerationAttempt] = Field(default_factory=list)

    @property
    def generated_variant_count(self) -> int:
        return sum(1 for attempt in self.generation_attempts if attempt.success)


class ActivationResult(BaseModel):
    experiment_id: str
    activated: bool
    targets_created: int = 0
    error: Optional[str] = None


class BatchCreationOutcome(BaseModel):
    """Per-candidate result of create_batch_tests."""

    content_item_id: str
    persona: str
    funnel_stage: str
    outcome: CreationOutcome
    experiment_id: Optional[str] = None
    variants_generated: int = 0
    error: Optional[str] = None


class ExperimentSummary(BaseModel):
    experiment: Experiment
    variants: List[Variant]
    control_variant_id: Optional[str] = None
    generated_variant_count: int = 0
    generation_failures: int = 0


# =============================================================================
# Statistics and Evaluation
# =============================================================================

class BayesianResult(BaseModel):
    """Posterior comparison of a challenger against the control."""

    probability_beat_control: float = Field(..., ge=0.0, le=1.0)
    expected_lift_percent: float
    is_significant: bool
    confidence_threshold: float
    credible_interval_lower: float = 0.0
    credible_interval_upper: float = 0.0
    # False when either arm was below the minimum sample and no draws were made
    sample_sufficient: bool = True


class EarlyStopDecision(BaseModel):
    should_stop: bool
    reason: StopReason


class WinnerEvaluation(BaseModel):
    """
    Decision for one running experiment.

    has_winner is only ever true when both arms reached the rule's minimum
    sample and the challenger's posterior probability met the threshold.
    """

    experiment_id: str
    has_winner: bool = False
    reason: str = ""
    winner_variant_id: Optional[str] = None
    control_variant_id: Optional[str] = None
    best_challenger_id: Optional[str] = None
    control_metrics: Optional[VariantMetrics] = None
    challenger_metrics: Optional[VariantMetrics] = None
    bayesian: Optional[BayesianResult] = None
    early_stop: Optional[EarlyStopDecision] = None
    frequentist_confidence: Optional[float] = None
    minimum_sample_size: int = 0
    profile_id: Optional[str] = None
    control_score: Optional[int] = None
    challenger_score: Optional[int] = None
    error: Optional[str] = None


class PromotionResult(BaseModel):
    experiment_id: str
    action: PromotionAction
    winner_variant_id: Optional[str] = None
    probability: Optional[float] = None
    lift_percent: Optional[float] = None
    message: str = ""


# =============================================================================
# Scheduler
# =============================================================================

class AutomationRun(BaseModel):
    """Append-only audit record of one scheduler cycle."""

    id: str
    status: RunStatus
    trigger: RunTrigger = RunTrigger.SCHEDULED
    candidates_found: int = 0
    tests_created: int = 0
    results: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class CycleSummary(BaseModel):
    """Counts and errors of one scheduler cycle, returned to callers and sent to Slack."""

    run_id: Optional[str] = None
    status: RunStatus
    trigger: RunTrigger = RunTrigger.SCHEDULED
    baselines_updated: int = 0
    candidates_found: int = 0
    tests_created: int = 0
    tests_evaluated: int = 0
    winners_promoted: int = 0
    tests_stopped: int = 0
    errors: List[str] = Field(default_factory=list)
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0


class SchedulerStatus(BaseModel):
    state: SchedulerState
    is_running: bool
    loop_active: bool
    interval_hours: float
    last_run: Optional[AutomationRun] = None
    next_run_at: Optional[datetime] = None
