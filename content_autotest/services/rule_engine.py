"""
Rule Engine (candidate detector): finds underperforming content from baselines.

Each active rule is evaluated independently; content already flagged by one rule
is still evaluated by the next. For every content item of the rule's content type
and every (persona, funnel stage) in scope, the latest baseline is checked:

- With metric thresholds: a threshold is skipped when the baseline's sample is
  below its minimum_sample (default 30); otherwise
    percentile   -> derived percentile <= threshold
    absolute     -> value < threshold
    change_rate  -> never triggers (needs a comparison baseline)
  The baseline is a candidate when any threshold triggers.
- Without thresholds: sample_size >= 30 and the composite score's percentile
  <= 25 (linear score/10000*100, or empirical when configured).

The combined candidate list is sorted ascending by composite score (worst first)
and truncated to the safety limit max_concurrent_tests.

Baselines scored under a different profile than the content type's current
default are skipped with a warning; their scores are not comparable.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from content_autotest.core.config import Settings, get_settings
from content_autotest.models.enums import MetricKey, ThresholdType
from content_autotest.models.schemas import (
    AutomationRule,
    Candidate,
    PerformanceBaseline,
    RuleEvaluationResult,
    RuleMetricThreshold,
    SafetyLimits,
)
from content_autotest.services.baselines import (
    DEFAULT_FUNNEL_STAGES,
    DEFAULT_PERSONAS,
    select_default_profile,
)
from content_autotest.services.scoring import (
    empirical_percentile,
    score_to_percentile,
    value_to_percentile,
)
from content_autotest.services.store import ContentStore


logger = logging.getLogger(__name__)

PercentileFn = Callable[[int], float]


# =============================================================================
# Threshold Evaluation
# =============================================================================

@dataclass
class PerformanceCheck:
    is_underperforming: bool
    triggered_metrics: List[str] = field(default_factory=list)
    reason: str = ""


def baseline_metric_value(baseline: PerformanceBaseline, metric_key: str) -> float:
    """Raw value of a metric on a baseline; composite_score reads the composite."""
    if metric_key == MetricKey.COMPOSITE_SCORE.value:
        return float(baseline.composite_score)
    if metric_key == MetricKey.UNIQUE_VIEWS.value:
        return float(baseline.unique_views)
    if metric_key == MetricKey.TOTAL_EVENTS.value:
        return float(baseline.total_events)
    return float(baseline.metric_breakdown.get(metric_key, 0.0))


def evaluate_threshold(
    threshold: RuleMetricThreshold,
    baseline: PerformanceBaseline,
    composite_percentile: PercentileFn = score_to_percentile,
) -> bool:
    """Whether one metric threshold triggers for a baseline (sample gate excluded)."""
    value = baseline_metric_value(baseline, threshold.metric_key)

    if threshold.threshold_type == ThresholdType.PERCENTILE:
        if threshold.metric_key == MetricKey.COMPOSITE_SCORE.value:
            percentile = composite_percentile(int(value))
        else:
            percentile = value_to_percentile(value)
        return percentile <= threshold.threshold_value

    if threshold.threshold_type == ThresholdType.ABSOLUTE:
        return value < threshold.threshold_value

    # change_rate needs a prior baseline to compare against
    return False


def evaluate_content_performance(
    baseline: PerformanceBaseline,
    rule: AutomationRule,
    composite_percentile: PercentileFn = score_to_percentile,
    minimum_sample: int = 30,
    percentile_threshold: float = 25.0,
) -> PerformanceCheck:
    """
    Decide whether a baseline is underperforming under a rule.

    Args:
        baseline: Latest baseline for the (content, persona, funnel stage).
        rule: Automation rule being evaluated.
        composite_percentile: Maps a composite score to a percentile.
        minimum_sample: Sample gate for the composite fallback.
        percentile_threshold: Composite fallback flags at or below this percentile.
    """
    if rule.metric_thresholds:
        triggered = [
            threshold.metric_key
            for threshold in rule.metric_thresholds
            if baseline.sample_size >= threshold.minimum_sample
            and evaluate_threshold(threshold, baseline, composite_percentile)
        ]
        if triggered:
            return PerformanceCheck(True, triggered, f"Thresholds triggered: {', '.join(triggered)}")
        return PerformanceCheck(False)

    if baseline.sample_size < minimum_sample:
        return PerformanceCheck(False, reason=f"Insufficient sample size ({baseline.sample_size})")

    percentile = composite_percentile(baseline.composite_score)
    if percentile <= percentile_threshold:
        return PerformanceCheck(
            True,
            [MetricKey.COMPOSITE_SCORE.value],
            f"Composite score {baseline.composite_score} in bottom {percentile_threshold:g}th percentile "
            f"({percentile:.1f})",
        )
    return PerformanceCheck(False)


def enforce_safety_limits(candidates: Sequence[Candidate], limits: SafetyLimits) -> List[Candidate]:
    """Worst composite scores first, at most max_concurrent_tests candidates."""
    ordered = sorted(candidates, key=lambda candidate: candidate.baseline.composite_score)
    if len(ordered) > limits.max_concurrent_tests:
        logger.warning(
            f"Safety limit: keeping {limits.max_concurrent_tests} of {len(ordered)} candidates"
        )
    return ordered[: limits.max_concurrent_tests]


# =============================================================================
# Engine
# =============================================================================

class RuleEngine:
    """Evaluates automation rules against stored baselines."""

    def __init__(self, store: ContentStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    async def _safety_limits(self) -> SafetyLimits:
        limits = await self.store.get_safety_limits()
        if limits is None:
            limits = SafetyLimits(
                max_concurrent_tests=self.settings.default_max_concurrent_tests,
                max_daily_generations=self.settings.default_max_daily_generations,
                max_variants_per_test=self.settings.default_max_variants_per_test,
            )
        return limits

    async def _composite_percentile_fn(
        self, content_type: str, persona: str, funnel_stage: str, profile_id: str, cache: Dict[Tuple, List[int]]
    ) -> PercentileFn:
        """Percentile mapping for one segment, empirical when enough history exists."""
        if self.settings.percentile_method != 'empirical':
            return score_to_percentile

        key = (content_type, persona, funnel_stage, profile_id)
        if key not in cache:
            cache[key] = await self.store.list_baseline_scores(content_type, persona, funnel_stage, profile_id)
        history = cache[key]

        if len(history) < self.settings.empirical_percentile_min_history:
            return score_to_percentile

        def percentile(composite_score: int) -> float:
            return empirical_percentile(composite_score, history)

        return percentile

    async def evaluate_rule(self, rule: AutomationRule) -> Tuple[List[Candidate], int]:
        """
        Candidates for one rule, before safety truncation.

        Returns:
            Tuple of (candidates, number of baselines checked).
        """
        profiles = await self.store.list_metric_weight_profiles(rule.content_type)
        profile = select_default_profile(profiles)
        if profile is None:
            logger.warning(f"Rule {rule.name}: no metric weight profile for {rule.content_type}, skipping")
            return [], 0

        personas = rule.target_personas or DEFAULT_PERSONAS
        funnel_stages = rule.target_funnel_stages or DEFAULT_FUNNEL_STAGES
        content_item_ids = await self.store.list_content_item_ids(rule.content_type)

        candidates: List[Candidate] = []
        checked = 0
        percentile_cache: Dict[Tuple, List[int]] = {}

        for content_item_id in content_item_ids:
            for persona in personas:
                for funnel_stage in funnel_stages:
                    baseline = await self.store.get_latest_baseline(
                        rule.content_type, content_item_id, persona, funnel_stage
                    )
                    if baseline is None:
                        continue

                    if baseline.profile_id != profile.id:
                        logger.warning(
                            f"Skipping baseline for {rule.content_type}/{content_item_id} "
                            f"({persona}/{funnel_stage}): scored with profile {baseline.profile_id}, "
                            f"current profile is {profile.id}"
                        )
                        continue

                    checked += 1
                    percentile_fn = await self._composite_percentile_fn(
                        rule.content_type, persona, funnel_stage, profile.id, percentile_cache
                    )
                    check = evaluate_content_performance(
                        baseline,
                        rule,
                        composite_percentile=percentile_fn,
                        minimum_sample=self.settings.candidate_minimum_sample,
                        percentile_threshold=self.settings.composite_percentile_threshold,
                    )
                    if not check.is_underperforming:
                        continue

                    candidates.append(Candidate(
                        content_type=rule.content_type,
                        content_item_id=content_item_id,
                        persona=persona,
                        funnel_stage=funnel_stage,
                        rule_id=rule.id,
                        rule_name=rule.name,
                        triggered_metrics=check.triggered_metrics,
                        reason=check.reason,
                        baseline=baseline,
                    ))

        return candidates, checked

    async def evaluate_rules(self, active_rules: Optional[Sequence[AutomationRule]] = None) -> RuleEvaluationResult:
        """
        Evaluate every active rule and return safety-limited candidates.

        Args:
            active_rules: Rules to evaluate; defaults to the store's active rules.

        Returns:
            RuleEvaluationResult: candidates ordered worst-first, truncated to
                max_concurrent_tests, plus evaluation counts.
        """
        if active_rules is None:
            active_rules = await self.store.list_active_rules()

        all_candidates: List[Candidate] = []
        checked = 0
        for rule in active_rules:
            if not rule.is_active:
                continue
            rule_candidates, rule_checked = await self.evaluate_rule(rule)
            logger.info(f"Rule {rule.name}: {len(rule_candidates)} candidate(s) from {rule_checked} baseline(s)")
            all_candidates.extend(rule_candidates)
            checked += rule_checked

        limits = await self._safety_limits()
        candidates = enforce_safety_limits(all_candidates, limits)

        return RuleEvaluationResult(
            candidates=candidates,
            rules_evaluated=len(active_rules),
            baselines_checked=checked,
            candidates_before_limits=len(all_candidates),
        )
