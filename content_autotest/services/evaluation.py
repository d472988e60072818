"""
Statistical Evaluator: decides whether a running experiment has a winner.

For each experiment:
1. Per-variant analytics since the experiment started (unique_views are trials,
   engagement events are successes, capped at trials).
2. Control = the variant flagged is_control; best challenger = the non-control
   variant with the highest raw conversion rate (not composite score).
3. Both arms need at least the rule's minimum sample; otherwise the result is
   "no decision" with an "Insufficient sample size" reason.
4. The Bayesian comparator gives P(challenger > control), lift and significance;
   has_winner = significant AND probability >= confidence threshold.

The confidence threshold and minimum sample come from the experiment's rule
(or the first active rule for the content type, or settings defaults).
Composite scores reported alongside the decision are computed with the profile
that produced the content's baseline, never the current default.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from content_autotest.core.config import Settings, get_settings
from content_autotest.core.exceptions import ControlVariantError, NotFoundError
from content_autotest.models.enums import ExperimentStatus
from content_autotest.models.schemas import (
    AutomationRule,
    Experiment,
    Variant,
    VariantMetrics,
    WinnerEvaluation,
)
from content_autotest.services.baselines import metrics_from_aggregate
from content_autotest.services.bayesian import (
    BayesianComparator,
    StatisticalConfig,
    two_proportion_confidence,
)
from content_autotest.services.scoring import ensure_same_profile, score
from content_autotest.services.store import ContentStore, EventSource


logger = logging.getLogger(__name__)

CONTROL_NAME_MARKERS = ("control", "original")


def select_control_variant(variants: Sequence[Variant]) -> Variant:
    """
    The experiment's control variant.

    The is_control flag is authoritative. Without any flagged variant, a single
    variant whose name contains "control" or "original" is accepted with a warning.

    Raises:
        ControlVariantError: More than one flagged control, or no unambiguous match.
    """
    flagged = [variant for variant in variants if variant.is_control]
    if len(flagged) == 1:
        return flagged[0]
    if len(flagged) > 1:
        raise ControlVariantError(f"{len(flagged)} variants are flagged as control")

    matches = [
        variant for variant in variants
        if any(marker in variant.name.lower() for marker in CONTROL_NAME_MARKERS)
    ]
    if len(matches) == 1:
        logger.warning(f"No flagged control variant; using {matches[0].id} ({matches[0].name}) by name")
        return matches[0]

    raise ControlVariantError(f"Cannot identify the control variant ({len(matches)} name match(es))")


class StatisticalEvaluator:
    """Evaluates running experiments with the Bayesian comparator."""

    def __init__(
        self,
        store: ContentStore,
        events: EventSource,
        comparator: BayesianComparator,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.events = events
        self.comparator = comparator
        self.settings = settings or get_settings()

    async def _rule_for(self, experiment: Experiment) -> Optional[AutomationRule]:
        if experiment.rule_id:
            rule = await self.store.get_rule(experiment.rule_id)
            if rule is not None:
                return rule
        rules = await self.store.list_active_rules(experiment.content_type)
        return rules[0] if rules else None

    def _config(self, rule: Optional[AutomationRule]) -> StatisticalConfig:
        if rule is None:
            return StatisticalConfig(
                confidence_threshold=self.settings.default_confidence_threshold,
                minimum_sample_size=self.settings.default_minimum_sample_size,
                minimum_detectable_effect=self.settings.minimum_detectable_effect,
            )
        return StatisticalConfig(
            confidence_threshold=rule.confidence_threshold,
            minimum_sample_size=rule.minimum_sample_size,
            minimum_detectable_effect=self.settings.minimum_detectable_effect,
        )

    async def variant_metrics(self, experiment: Experiment, variant: Variant) -> VariantMetrics:
        aggregate = await self.events.aggregate([variant.id], window_start=experiment.start_date)
        metrics = metrics_from_aggregate(aggregate, variant_id=variant.id)
        metrics.variant_name = variant.name
        metrics.is_control = variant.is_control
        return metrics

    async def _baseline_scores(
        self, experiment: Experiment, control: VariantMetrics, challenger: VariantMetrics
    ) -> Tuple[Optional[str], Optional[int], Optional[int]]:
        """Score both arms with the profile that produced the content's baseline."""
        baseline = await self.store.get_latest_baseline(
            experiment.content_type, experiment.content_item_id, experiment.persona, experiment.funnel_stage
        )
        if baseline is None and (experiment.persona or experiment.funnel_stage):
            baseline = await self.store.get_latest_baseline(
                experiment.content_type, experiment.content_item_id, None, None
            )
        if baseline is None or baseline.profile_id is None:
            return None, None, None

        profile = await self.store.get_metric_weight_profile(baseline.profile_id)
        if profile is None:
            logger.warning(f"Baseline profile {baseline.profile_id} no longer exists; skipping composite scores")
            return None, None, None

        ensure_same_profile(baseline, profile)
        return profile.id, score(control, profile).composite_score, score(challenger, profile).composite_score

    async def evaluate_test(self, experiment_id: str) -> WinnerEvaluation:
        """
        Evaluate one experiment.

        Raises:
            NotFoundError: If the experiment does not exist.
            ControlVariantError: If no control variant can be identified.
        """
        experiment = await self.store.get_experiment(experiment_id)
        if experiment is None:
            raise NotFoundError("Experiment", experiment_id)

        variants = await self.store.list_variants(experiment_id)
        if len(variants) < 2:
            return WinnerEvaluation(experiment_id=experiment_id, reason="Insufficient variants")

        control = select_control_variant(variants)
        challengers = [variant for variant in variants if variant.id != control.id]
        if not challengers:
            return WinnerEvaluation(
                experiment_id=experiment_id, control_variant_id=control.id, reason="No challengers"
            )

        control_metrics = await self.variant_metrics(experiment, control)
        challenger_metrics = [await self.variant_metrics(experiment, variant) for variant in challengers]
        best = max(challenger_metrics, key=lambda metrics: metrics.conversion_rate)

        rule = await self._rule_for(experiment)
        config = self._config(rule)

        evaluation = WinnerEvaluation(
            experiment_id=experiment_id,
            control_variant_id=control.id,
            best_challenger_id=best.variant_id,
            control_metrics=control_metrics,
            challenger_metrics=best,
            minimum_sample_size=config.minimum_sample_size,
        )

        smallest_arm = min(control_metrics.unique_views, best.unique_views)
        if smallest_arm < config.minimum_sample_size:
            evaluation.reason = (
                f"Insufficient sample size (need {config.minimum_sample_size}, have {smallest_arm})"
            )
            return evaluation

        successes_a = min(control_metrics.total_events, control_metrics.unique_views)
        successes_b = min(best.total_events, best.unique_views)

        result = self.comparator.compare(
            successes_a, control_metrics.unique_views, successes_b, best.unique_views, config
        )
        evaluation.bayesian = result
        evaluation.early_stop = self.comparator.should_stop_early(result)
        evaluation.frequentist_confidence = two_proportion_confidence(
            successes_a, control_metrics.unique_views, successes_b, best.unique_views
        )
        evaluation.profile_id, evaluation.control_score, evaluation.challenger_score = (
            await self._baseline_scores(experiment, control_metrics, best)
        )

        evaluation.has_winner = (
            result.is_significant and result.probability_beat_control >= config.confidence_threshold
        )
        if evaluation.has_winner:
            evaluation.winner_variant_id = best.variant_id
            evaluation.reason = (
                f"Challenger wins with {result.probability_beat_control:.1%} probability "
                f"and {result.expected_lift_percent:.1f}% lift"
            )
        else:
            evaluation.reason = (
                f"No significant winner yet ({result.probability_beat_control:.1%} probability, "
                f"{result.expected_lift_percent:.1f}% lift)"
            )

        return evaluation

    async def evaluate_all_tests(self) -> List[WinnerEvaluation]:
        """Evaluate every active automated experiment; failures become skipped evaluations."""
        experiments = await self.store.list_experiments(status=ExperimentStatus.ACTIVE, is_automated=True)
        evaluations: List[WinnerEvaluation] = []

        for experiment in experiments:
            try:
                evaluations.append(await self.evaluate_test(experiment.id))
            except Exception as e:
                logger.error(f"Error evaluating experiment {experiment.id}: {e}")
                evaluations.append(WinnerEvaluation(
                    experiment_id=experiment.id,
                    reason=f"Evaluation failed: {e}",
                    error=str(e),
                ))

        logger.info(
            f"Evaluated {len(evaluations)} experiment(s); "
            f"{sum(1 for e in evaluations if e.has_winner)} with a winner"
        )
        return evaluations
