"""
Data models: enums, Pydantic schemas and per-content-type payload schemas.

    from content_autotest.models import Experiment, ExperimentStatus, VariantMetrics
"""

from content_autotest.models.enums import (
    Persona,
    FunnelStage,
    MetricKey,
    MetricDirection,
    ThresholdType,
    ExperimentStatus,
    RunStatus,
    RunTrigger,
    SchedulerState,
    GenerationStatus,
    StopReason,
    PromotionAction,
    CreationOutcome,
)
from content_autotest.models.schemas import (
    MetricWeight,
    MetricWeightProfile,
    EventAggregate,
    VariantMetrics,
    ScoredVariant,
    BaselineComparison,
    PerformanceBaseline,
    RuleMetricThreshold,
    AutomationRule,
    Candidate,
    RuleEvaluationResult,
    SafetyLimits,
    ExperimentCreate,
    Experiment,
    VariantCreate,
    Variant,
    GenerationRecord,
    GenerationAttempt,
    ExperimentCreationResult,
    ActivationResult,
    BatchCreationOutcome,
    ExperimentSummary,
    BayesianResult,
    EarlyStopDecision,
    WinnerEvaluation,
    PromotionResult,
    AutomationRun,
    CycleSummary,
    SchedulerStatus,
)
from content_autotest.models.content import (
    ContentItemPayload,
    HeroPayload,
    ServicePayload,
    TestimonialPayload,
    get_content_schema,
    register_content_schema,
)

__all__ = [
    # Enums
    'Persona',
    'FunnelStage',
    'MetricKey',
    'MetricDirection',
    'ThresholdType',
    'ExperimentStatus',
    'RunStatus',
    'RunTrigger',
    'SchedulerState',
    'GenerationStatus',
    'StopReason',
    'PromotionAction',
    'CreationOutcome',
    # Schemas
    'MetricWeight',
    'MetricWeightProfile',
    'EventAggregate',
    'VariantMetrics',
    'ScoredVariant',
    'BaselineComparison',
    'PerformanceBaseline',
    'RuleMetricThreshold',
    'AutomationRule',
    'Candidate',
    'RuleEvaluationResult',
    'SafetyLimits',
    'ExperimentCreate',
    'Experiment',
    'VariantCreate',
    'Variant',
    'GenerationRecord',
    'GenerationAttempt',
    'ExperimentCreationResult',
    'ActivationResult',
    'BatchCreationOutcome',
    'ExperimentSummary',
    'BayesianResult',
    'EarlyStopDecision',
    'WinnerEvaluation',
    'PromotionResult',
    'AutomationRun',
    'CycleSummary',
    'SchedulerStatus',
    # Content payloads
    'ContentItemPayload',
    'HeroPayload',
    'ServicePayload',
    'TestimonialPayload',
    'get_content_schema',
    'register_content_schema',
]
