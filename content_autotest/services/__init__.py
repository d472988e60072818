"""
Business logic services for the content automation engine.

Services:
- scoring: Metric normalization and weighted composite scores (pure)
- baselines: Rolling-window baselines per content item / persona / funnel stage
- rule_engine: Automation rules -> safety-limited test candidates
- generation: Variant generator contract and generated-content validation
- lifecycle: Experiment creation, activation and status transitions
- bayesian: Beta-Binomial comparison and frequentist helpers (pure)
- evaluation: Winner detection for running experiments
- promotion: Applies winners to live content and rolls them back
- store: Content store / event source protocols and their Postgres adapters

Every service talks to persistence only through the ContentStore and
EventSource protocols.
"""

# =============================================================================
# Scoring
# =============================================================================

from content_autotest.services.scoring import (
    MAX_COMPOSITE_SCORE,
    normalize_metric_value,
    get_metric_value,
    metrics_from_baseline,
    composite_from_normalized,
    score,
    score_and_rank,
    ensure_same_profile,
    compare_to_baseline,
    identify_underperforming_metrics,
    score_to_percentile,
    value_to_percentile,
    empirical_percentile,
)

# =============================================================================
# Baselines and Rules
# =============================================================================

from content_autotest.services.baselines import (
    BaselineAggregator,
    metrics_from_aggregate,
    calculate_variance,
    select_default_profile,
)
from content_autotest.services.rule_engine import (
    RuleEngine,
    PerformanceCheck,
    evaluate_threshold,
    evaluate_content_performance,
    enforce_safety_limits,
)

# =============================================================================
# Generation and Lifecycle
# =============================================================================

from content_autotest.services.generation import (
    GenerationRequest,
    GeneratedContent,
    PerformanceContext,
    VariantGenerator,
    UnconfiguredGenerator,
    load_variant_generator,
    validate_generated_content,
)
from content_autotest.services.lifecycle import (
    ExperimentLifecycleManager,
    ALLOWED_TRANSITIONS,
    CONTROL_VARIANT_NAME,
)

# =============================================================================
# Statistics, Evaluation and Promotion
# =============================================================================

from content_autotest.services.bayesian import (
    BayesianComparator,
    StatisticalConfig,
    two_proportion_confidence,
    required_sample_size,
    calculate_power,
)
from content_autotest.services.evaluation import (
    StatisticalEvaluator,
    select_control_variant,
)
from content_autotest.services.promotion import PromotionService

# =============================================================================
# Persistence
# =============================================================================

from content_autotest.services.store import (
    ContentStore,
    EventSource,
    PostgresContentStore,
    PostgresEventSource,
)


__all__ = [
    # ----- Scoring -----
    'MAX_COMPOSITE_SCORE',
    'normalize_metric_value',
    'get_metric_value',
    'metrics_from_baseline',
    'composite_from_normalized',
    'score',
    'score_and_rank',
    'ensure_same_profile',
    'compare_to_baseline',
    'identify_underperforming_metrics',
    'score_to_percentile',
    'value_to_percentile',
    'empirical_percentile',
    # ----- Baselines -----
    'BaselineAggregator',
    'metrics_from_aggregate',
    'calculate_variance',
    'select_default_profile',
    # ----- Rule Engine -----
    'RuleEngine',
    'PerformanceCheck',
    'evaluate_threshold',
    'evaluate_content_performance',
    'enforce_safety_limits',
    # ----- Generation -----
    'GenerationRequest',
    'GeneratedContent',
    'PerformanceContext',
    'VariantGenerator',
    'UnconfiguredGenerator',
    'load_variant_generator',
    'validate_generated_content',
    # ----- Lifecycle -----
    'ExperimentLifecycleManager',
    'ALLOWED_TRANSITIONS',
    'CONTROL_VARIANT_NAME',
    # ----- Statistics -----
    'BayesianComparator',
    'StatisticalConfig',
    'two_proportion_confidence',
    'required_sample_size',
    'calculate_power',
    # ----- Evaluation and Promotion -----
    'StatisticalEvaluator',
    'select_control_variant',
    'PromotionService',
    # ----- Persistence -----
    'ContentStore',
    'EventSource',
    'PostgresContentStore',
    'PostgresEventSource',
]
