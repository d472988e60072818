"""
Promotion Service: applies winning variants to live content and rolls them back.

This service is the only writer of live content overrides and of an experiment's
winner. auto_promote_winners turns evaluations into actions:

    has_winner            -> promote the winner, complete the experiment
    futility early stop   -> complete the experiment without a winner
    otherwise             -> leave it running
    evaluation error      -> skip

promote_winner is idempotent: promoting the same winner again re-applies the
same payload and leaves the completed experiment unchanged.

rollback_promotion restores the control payload and clears the winner. It does
not change status and raises when no flagged control exists.
"""

import logging
from typing import List, Optional, Sequence

from content_autotest.core.exceptions import ControlVariantError, InvalidTransitionError, NotFoundError
from content_autotest.models.enums import ExperimentStatus, PromotionAction, StopReason
from content_autotest.models.schemas import Experiment, PromotionResult, WinnerEvaluation
from content_autotest.services.lifecycle import ExperimentLifecycleManager
from content_autotest.services.store import ContentStore


logger = logging.getLogger(__name__)


class PromotionService:

    def __init__(self, store: ContentStore, lifecycle: ExperimentLifecycleManager):
        self.store = store
        self.lifecycle = lifecycle

    async def _get_experiment(self, experiment_id: str) -> Experiment:
        experiment = await self.store.get_experiment(experiment_id)
        if experiment is None:
            raise NotFoundError("Experiment", experiment_id)
        return experiment

    async def promote_winner(
        self,
        experiment_id: str,
        winner_variant_id: str,
        probability: Optional[float] = None,
        lift_percent: Optional[float] = None,
    ) -> Experiment:
        """
        Apply the winner's payload to live content and complete the experiment.

        Raises:
            NotFoundError: Unknown experiment or variant.
            ValueError: The variant belongs to another experiment.
            InvalidTransitionError: The experiment already completed with a different winner.
        """
        experiment = await self._get_experiment(experiment_id)
        winner = await self.store.get_variant(winner_variant_id)
        if winner is None:
            raise NotFoundError("Variant", winner_variant_id)
        if winner.experiment_id != experiment_id:
            raise ValueError(f"Variant {winner_variant_id} does not belong to experiment {experiment_id}")

        already_completed = experiment.status == ExperimentStatus.COMPLETED
        if already_completed and experiment.winner_variant_id not in (None, winner_variant_id):
            raise InvalidTransitionError(experiment_id, "completed", f"completed with winner {winner_variant_id}")

        await self.store.apply_content_override(experiment.content_type, experiment.content_item_id, winner.payload)

        if already_completed:
            if experiment.winner_variant_id is None:
                experiment = await self.store.update_experiment(experiment_id, winner_variant_id=winner_variant_id)
        else:
            experiment = await self.lifecycle.stop_test(experiment_id, winner_variant_id)

        probability_text = f"{probability:.1%}" if probability is not None else "n/a"
        lift_text = f"{lift_percent:.1f}%" if lift_percent is not None else "n/a"
        logger.info(
            f"Promoted variant {winner_variant_id} ({winner.name}) for experiment {experiment_id} "
            f"on {experiment.content_type}/{experiment.content_item_id} "
            f"(probability {probability_text}, lift {lift_text})"
        )
        return experiment

    async def promote_if_winner(self, evaluation: WinnerEvaluation) -> PromotionResult:
        """Act on a single evaluation."""
        probability = evaluation.bayesian.probability_beat_control if evaluation.bayesian else None
        lift = evaluation.bayesian.expected_lift_percent if evaluation.bayesian else None

        if evaluation.error:
            return PromotionResult(
                experiment_id=evaluation.experiment_id,
                action=PromotionAction.SKIPPED,
                message=evaluation.error,
            )

        if evaluation.has_winner and evaluation.winner_variant_id:
            await self.promote_winner(evaluation.experiment_id, evaluation.winner_variant_id, probability, lift)
            return PromotionResult(
                experiment_id=evaluation.experiment_id,
                action=PromotionAction.PROMOTED,
                winner_variant_id=evaluation.winner_variant_id,
                probability=probability,
                lift_percent=lift,
                message=evaluation.reason,
            )

        if (
            evaluation.early_stop is not None
            and evaluation.early_stop.should_stop
            and evaluation.early_stop.reason == StopReason.FUTILITY_STOPPED
        ):
            await self.lifecycle.stop_test(evaluation.experiment_id)
            logger.info(f"Stopped experiment {evaluation.experiment_id} for futility (probability {probability})")
            return PromotionResult(
                experiment_id=evaluation.experiment_id,
                action=PromotionAction.STOPPED,
                probability=probability,
                lift_percent=lift,
                message="Stopped for futility",
            )

        return PromotionResult(
            experiment_id=evaluation.experiment_id,
            action=PromotionAction.CONTINUE,
            probability=probability,
            lift_percent=lift,
            message=evaluation.reason,
        )

    async def auto_promote_winners(self, evaluations: Sequence[WinnerEvaluation]) -> List[PromotionResult]:
        """Act on every evaluation; a failure on one experiment is logged and skipped."""
        results: List[PromotionResult] = []

        for evaluation in evaluations:
            try:
                results.append(await self.promote_if_winner(evaluation))
            except Exception as e:
                logger.error(f"Error promoting experiment {evaluation.experiment_id}: {e}")
                results.append(PromotionResult(
                    experiment_id=evaluation.experiment_id,
                    action=PromotionAction.SKIPPED,
                    message=str(e),
                ))

        return results

    async def rollback_promotion(self, experiment_id: str) -> Experiment:
        """
        Restore the control payload on live content and clear the winner.

        Works on completed experiments; status is left unchanged.

        Raises:
            NotFoundError: Unknown experiment.
            ControlVariantError: The experiment does not have exactly one flagged control.
        """
        experiment = await self._get_experiment(experiment_id)
        variants = await self.store.list_variants(experiment_id)
        controls = [variant for variant in variants if variant.is_control]
        if len(controls) != 1:
            raise ControlVariantError(
                f"Experiment {experiment_id} has {len(controls)} flagged control variant(s); cannot roll back"
            )

        control = controls[0]
        await self.store.apply_content_override(experiment.content_type, experiment.content_item_id, control.payload)
        experiment = await self.store.update_experiment(experiment_id, winner_variant_id=None)

        logger.info(
            f"Rolled back experiment {experiment_id}: restored control {control.id} "
            f"on {experiment.content_type}/{experiment.content_item_id}"
        )
        return experiment

    async def get_promotion_history(self, limit: int = 50) -> List[Experiment]:
        return await self.store.list_promoted_experiments(limit)
