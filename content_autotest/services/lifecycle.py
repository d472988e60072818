"""
Experiment Lifecycle Manager: creates experiments from candidates and moves them
through their status machine.

    draft -> active <-> paused -> completed (terminal)
    draft -> completed      (discarding an experiment with no challengers)

create_automated_test snapshots the live content as the control variant and asks
the generator for new payloads one attempt at a time. A failed attempt (generator
error or rejected payload) is recorded and the remaining attempts continue, so an
experiment can end up with fewer generated variants than requested, or none.
Every attempt is persisted as a generation record; those records are the daily
generation budget.

Rollback never changes status and is handled by the promotion service.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, List, Optional, Sequence

from content_autotest.core.config import Settings, get_settings
from content_autotest.core.exceptions import InvalidTransitionError, NotFoundError
from content_autotest.models.enums import CreationOutcome, ExperimentStatus, GenerationStatus
from content_autotest.models.schemas import (
    ActivationResult,
    BatchCreationOutcome,
    Candidate,
    Experiment,
    ExperimentCreate,
    ExperimentCreationResult,
    ExperimentSummary,
    GenerationAttempt,
    GenerationRecord,
    Variant,
    VariantCreate,
)
from content_autotest.services.generation import (
    GenerationRequest,
    PerformanceContext,
    VariantGenerator,
    validate_control_payload,
    validate_generated_content,
)
from content_autotest.services.store import ContentStore


logger = logging.getLogger(__name__)

CONTROL_VARIANT_NAME = "Control (Original)"

ALLOWED_TRANSITIONS: Dict[ExperimentStatus, FrozenSet[ExperimentStatus]] = {
    ExperimentStatus.DRAFT: frozenset({ExperimentStatus.ACTIVE, ExperimentStatus.COMPLETED}),
    ExperimentStatus.ACTIVE: frozenset({ExperimentStatus.PAUSED, ExperimentStatus.COMPLETED}),
    ExperimentStatus.PAUSED: frozenset({ExperimentStatus.ACTIVE, ExperimentStatus.COMPLETED}),
    ExperimentStatus.COMPLETED: frozenset(),
}


def automated_test_name(candidate: Candidate) -> str:
    return f"Auto: {candidate.rule_name} - {candidate.persona}/{candidate.funnel_stage}"


class ExperimentLifecycleManager:
    """Owns experiment and variant creation and all status transitions."""

    def __init__(
        self,
        store: ContentStore,
        generator: VariantGenerator,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.generator = generator
        self.settings = settings or get_settings()

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_automated_test(self, candidate: Candidate, variant_count: int = 2) -> ExperimentCreationResult:
        """
        Create a draft experiment for a candidate with a control and generated variants.

        Args:
            candidate: Underperforming content found by the rule engine.
            variant_count: Number of generated challengers to request.

        Returns:
            ExperimentCreationResult: experiment, variants (control first) and
                per-attempt outcomes.

        Raises:
            NotFoundError: If the live content item does not exist.
            UntestableContentError: If the live content fails its content-type
                schema; nothing is created and no generation is attempted.
        """
        control_payload = await self.store.get_content_payload(candidate.content_type, candidate.content_item_id)
        if control_payload is None:
            raise NotFoundError("Content item", candidate.content_item_id)
        validate_control_payload(control_payload, candidate.content_type, candidate.content_item_id)

        experiment = await self.store.create_experiment(ExperimentCreate(
            name=automated_test_name(candidate),
            description=candidate.reason or None,
            content_type=candidate.content_type,
            content_item_id=candidate.content_item_id,
            status=ExperimentStatus.DRAFT,
            traffic_allocation=100,
            is_automated=True,
            rule_id=candidate.rule_id,
            persona=candidate.persona,
            funnel_stage=candidate.funnel_stage,
        ))

        control = await self.store.create_variant(VariantCreate(
            experiment_id=experiment.id,
            name=CONTROL_VARIANT_NAME,
            payload=control_payload,
            is_control=True,
        ))

        performance = PerformanceContext(
            triggered_metrics=candidate.triggered_metrics,
            composite_score=candidate.baseline.composite_score,
            reason=candidate.reason,
        )

        variants: List[Variant] = [control]
        attempts: List[GenerationAttempt] = []

        for attempt in range(1, variant_count + 1):
            request = GenerationRequest(
                experiment_id=experiment.id,
                content_type=candidate.content_type,
                content_item_id=candidate.content_item_id,
                persona=candidate.persona,
                funnel_stage=candidate.funnel_stage,
                control_payload=control_payload,
                performance=performance,
                attempt=attempt,
            )
            generator_model = None
            tokens_used = None
            try:
                generated = await self.generator.generate(request)
                generator_model = generated.generator_model
                tokens_used = generated.tokens_used
                payload = validate_generated_content(generated.payload, control_payload, candidate.content_type)
                variant = await self.store.create_variant(VariantCreate(
                    experiment_id=experiment.id,
                    name=f"Generated {attempt} ({candidate.persona}/{candidate.funnel_stage})",
                    payload=payload,
                    is_control=False,
                ))
            except Exception as e:
                logger.warning(f"Variant generation attempt {attempt} failed for experiment {experiment.id}: {e}")
                attempts.append(GenerationAttempt(attempt=attempt, success=False, error=str(e)))
                await self._record_generation(
                    experiment.id, None, GenerationStatus.FAILED, str(e), generator_model, tokens_used
                )
                continue

            variants.append(variant)
            attempts.append(GenerationAttempt(attempt=attempt, success=True, variant_id=variant.id))
            await self._record_generation(
                experiment.id, variant.id, GenerationStatus.SUCCESS, None, generator_model, tokens_used
            )

        generated_count = sum(1 for a in attempts if a.success)
        logger.info(
            f"Created experiment {experiment.id} ({experiment.name}) with "
            f"{generated_count}/{variant_count} generated variant(s)"
        )

        return ExperimentCreationResult(
            experiment=experiment,
            control_variant=control,
            variants=variants,
            generation_attempts=attempts,
        )

    async def _record_generation(
        self,
        experiment_id: str,
        variant_id: Optional[str],
        status: GenerationStatus,
        error_message: Optional[str],
        generator_model: Optional[str],
        tokens_used: Optional[int],
    ) -> None:
        await self.store.record_generation(GenerationRecord(
            experiment_id=experiment_id,
            variant_id=variant_id,
            status=status,
            error_message=error_message,
            generator_model=generator_model,
            tokens_used=tokens_used,
            created_at=datetime.now(timezone.utc),
        ))

    async def create_batch_tests(
        self, candidates: Sequence[Candidate], variant_count: int = 2
    ) -> List[BatchCreationOutcome]:
        """
        Create and activate an experiment per candidate, sequentially.

        Experiments without any generated challenger are completed immediately
        instead of being activated. A failing candidate is logged and skipped.
        """
        outcomes: List[BatchCreationOutcome] = []

        for candidate in candidates:
            try:
                created = await self.create_automated_test(candidate, variant_count)
                experiment_id = created.experiment.id

                if created.generated_variant_count == 0:
                    await self.stop_test(experiment_id)
                    logger.warning(f"Discarded experiment {experiment_id}: no variants were generated")
                    outcome = CreationOutcome.DISCARDED
                    error = "No variants generated"
                else:
                    activation = await self.activate_test(
                        experiment_id, [candidate.persona], [candidate.funnel_stage]
                    )
                    outcome = CreationOutcome.ACTIVATED if activation.activated else CreationOutcome.FAILED
                    error = activation.error

                outcomes.append(BatchCreationOutcome(
                    content_item_id=candidate.content_item_id,
                    persona=candidate.persona,
                    funnel_stage=candidate.funnel_stage,
                    outcome=outcome,
                    experiment_id=experiment_id,
                    variants_generated=created.generated_variant_count,
                    error=error,
                ))
            except Exception as e:
                logger.error(
                    f"Error creating test for {candidate.content_type}/{candidate.content_item_id} "
                    f"({candidate.persona}/{candidate.funnel_stage}): {e}"
                )
                outcomes.append(BatchCreationOutcome(
                    content_item_id=candidate.content_item_id,
                    persona=candidate.persona,
                    funnel_stage=candidate.funnel_stage,
                    outcome=CreationOutcome.FAILED,
                    error=str(e),
                ))

        return outcomes

    # =========================================================================
    # Status Transitions
    # =========================================================================

    async def _get_experiment(self, experiment_id: str) -> Experiment:
        experiment = await self.store.get_experiment(experiment_id)
        if experiment is None:
            raise NotFoundError("Experiment", experiment_id)
        return experiment

    def _check_transition(self, experiment: Experiment, target: ExperimentStatus) -> None:
        current = ExperimentStatus(experiment.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(experiment.id, current.value, target.value)

    async def activate_test(
        self, experiment_id: str, personas: Sequence[str], funnel_stages: Sequence[str]
    ) -> ActivationResult:
        """
        Create persona x funnel stage targets and set the experiment active.

        Errors are reported on the result instead of raised.
        """
        try:
            experiment = await self._get_experiment(experiment_id)
            self._check_transition(experiment, ExperimentStatus.ACTIVE)

            targets = [(persona, stage) for persona in personas for stage in funnel_stages]
            created = await self.store.create_targets(experiment_id, targets)
            await self.store.update_experiment(
                experiment_id,
                status=ExperimentStatus.ACTIVE,
                start_date=datetime.now(timezone.utc),
            )
            logger.info(f"Activated experiment {experiment_id} with {created} target(s)")
            return ActivationResult(experiment_id=experiment_id, activated=True, targets_created=created)
        except Exception as e:
            logger.error(f"Error activating experiment {experiment_id}: {e}")
            return ActivationResult(experiment_id=experiment_id, activated=False, error=str(e))

    async def pause_test(self, experiment_id: str) -> Experiment:
        experiment = await self._get_experiment(experiment_id)
        self._check_transition(experiment, ExperimentStatus.PAUSED)
        logger.info(f"Pausing experiment {experiment_id}")
        return await self.store.update_experiment(experiment_id, status=ExperimentStatus.PAUSED)

    async def resume_test(self, experiment_id: str) -> Experiment:
        experiment = await self._get_experiment(experiment_id)
        if experiment.status != ExperimentStatus.PAUSED:
            raise InvalidTransitionError(experiment_id, ExperimentStatus(experiment.status).value, "active")
        logger.info(f"Resuming experiment {experiment_id}")
        return await self.store.update_experiment(experiment_id, status=ExperimentStatus.ACTIVE)

    async def stop_test(self, experiment_id: str, winner_variant_id: Optional[str] = None) -> Experiment:
        """
        Complete an experiment, optionally recording the winning variant.

        Only records the winner; live content is changed by
        PromotionService.promote_winner, which calls this method.

        Raises:
            NotFoundError: If the experiment does not exist.
            InvalidTransitionError: If the experiment is already completed.
            ValueError: If the winner is not one of the experiment's variants.
        """
        experiment = await self._get_experiment(experiment_id)
        self._check_transition(experiment, ExperimentStatus.COMPLETED)

        fields = {'status': ExperimentStatus.COMPLETED, 'end_date': datetime.now(timezone.utc)}
        if winner_variant_id is not None:
            variant_ids = {variant.id for variant in await self.store.list_variants(experiment_id)}
            if winner_variant_id not in variant_ids:
                raise ValueError(f"Variant {winner_variant_id} does not belong to experiment {experiment_id}")
            fields['winner_variant_id'] = winner_variant_id

        logger.info(f"Stopping experiment {experiment_id} (winner: {winner_variant_id or 'none'})")
        return await self.store.update_experiment(experiment_id, **fields)

    # =========================================================================
    # Queries and Maintenance
    # =========================================================================

    async def get_automated_tests(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        return await self.store.list_experiments(status=status, is_automated=True)

    async def get_test_summary(self, experiment_id: str) -> ExperimentSummary:
        experiment = await self._get_experiment(experiment_id)
        variants = await self.store.list_variants(experiment_id)
        counts = await self.store.count_generations_for_experiment(experiment_id)
        controls = [v for v in variants if v.is_control]

        return ExperimentSummary(
            experiment=experiment,
            variants=variants,
            control_variant_id=controls[0].id if len(controls) == 1 else None,
            generated_variant_count=counts.get(GenerationStatus.SUCCESS.value, 0),
            generation_failures=counts.get(GenerationStatus.FAILED.value, 0),
        )

    async def cleanup_old_tests(self, days_old: Optional[int] = None) -> int:
        """Delete completed automated experiments that ended more than days_old days ago."""
        days_old = days_old if days_old is not None else self.settings.completed_test_retention_days
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)
        deleted = await self.store.delete_completed_experiments(cutoff)
        logger.info(f"Cleaned up {len(deleted)} completed automated experiment(s) older than {days_old} days")
        return len(deleted)
