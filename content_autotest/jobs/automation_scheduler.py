"""
Automation scheduler: runs the end-to-end experiment automation cycle.

One cycle, strictly in order:
    1. Recompute baselines for every content item referenced by any experiment
       (all persona x funnel stage combinations plus overall)
    2. Rule engine -> safety-limited candidates
    3. Create and activate experiments for segments not already under test,
       bounded by remaining concurrent slots and the remaining daily
       generation budget:
           max_tests = min(remaining_slots, remaining_generations // variants_per_test)
    4. Evaluate every active automated experiment
    5. Promote winners / stop futile experiments

Every cycle is recorded as an AutomationRun (running -> completed | failed).
The cycle runs on a fixed interval inside an asyncio task and can also be
triggered manually; both paths share run_cycle. A CycleGuard (idle/running)
admits one cycle at a time: a second request raises CycleAlreadyRunningError
instead of queueing, and the guard is released in a finally block so a failed
cycle never blocks later ones. Stopping the scheduler waits for an in-flight
cycle; a cycle cancelled any other way is recorded as failed.

Safety-limit counters are read from the store at the start of step 3 every
cycle. The guard is in-process only; run a single scheduler per store.

Usage:
    services = build_automation_services(store, events, generator, settings)
    await services.scheduler.start()
    summary = await services.scheduler.trigger_manual_run()
    await services.scheduler.stop()
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from content_autotest.core.config import Settings, get_settings
from content_autotest.core.exceptions import CycleAlreadyRunningError
from content_autotest.models.enums import (
    CreationOutcome,
    ExperimentStatus,
    PromotionAction,
    RunStatus,
    RunTrigger,
    SchedulerState,
)
from content_autotest.models.schemas import (
    AutomationRun,
    BatchCreationOutcome,
    Candidate,
    CycleSummary,
    SafetyLimits,
    SchedulerStatus,
)
from content_autotest.services.baselines import BaselineAggregator
from content_autotest.services.bayesian import BayesianComparator
from content_autotest.services.evaluation import StatisticalEvaluator
from content_autotest.services.generation import VariantGenerator
from content_autotest.services.lifecycle import ExperimentLifecycleManager
from content_autotest.services.promotion import PromotionService
from content_autotest.services.rule_engine import RuleEngine
from content_autotest.services.store import ContentStore, EventSource


logger = logging.getLogger(__name__)

CycleNotifier = Callable[[CycleSummary], Awaitable[Any]]


# =============================================================================
# Re-entrancy Guard
# =============================================================================

class CycleGuard:
    """
    Idle/running state owned by the scheduler.

    try_acquire and release never await, so under a single event loop the
    check-and-set cannot interleave with another coroutine.
    """

    def __init__(self) -> None:
        self._state = SchedulerState.IDLE

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    def try_acquire(self) -> bool:
        if self._state == SchedulerState.RUNNING:
            return False
        self._state = SchedulerState.RUNNING
        return True

    def release(self) -> None:
        self._state = SchedulerState.IDLE


def start_of_utc_day(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def max_tests_creatable(
    limits: SafetyLimits,
    active_tests: int,
    generations_today: int,
    variants_per_test: int,
) -> int:
    """min(remaining concurrent slots, remaining daily generations // variants per test)."""
    remaining_slots = max(0, limits.max_concurrent_tests - active_tests)
    remaining_generations = max(0, limits.max_daily_generations - generations_today)
    return min(remaining_slots, remaining_generations // max(1, variants_per_test))


# =============================================================================
# Scheduler
# =============================================================================

class AutomationScheduler:
    """Owns the cycle loop, the re-entrancy guard and AutomationRun records."""

    def __init__(
        self,
        store: ContentStore,
        baselines: BaselineAggregator,
        rule_engine: RuleEngine,
        lifecycle: ExperimentLifecycleManager,
        evaluator: StatisticalEvaluator,
        promotion: PromotionService,
        settings: Optional[Settings] = None,
        notifier: Optional[CycleNotifier] = None,
    ):
        self.store = store
        self.baselines = baselines
        self.rule_engine = rule_engine
        self.lifecycle = lifecycle
        self.evaluator = evaluator
        self.promotion = promotion
        self.settings = settings or get_settings()
        self.notifier = notifier

        self._guard = CycleGuard()
        self._task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._interval_hours = self.settings.automation_interval_hours
        self._next_run_at: Optional[datetime] = None

    # =========================================================================
    # Loop Control
    # =========================================================================

    @property
    def is_running(self) -> bool:
        """Whether a cycle is in progress."""
        return self._guard.is_running

    @property
    def loop_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, interval_hours: Optional[float] = None) -> None:
        if self.loop_active:
            logger.warning("Automation scheduler is already started")
            return

        if interval_hours is not None:
            self._interval_hours = interval_hours
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Automation scheduler started (every {self._interval_hours:g}h)")

    async def stop(self) -> None:
        """Stop the timer loop; an in-flight scheduled cycle runs to completion first."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._cycle_task is not None and not self._cycle_task.done():
            logger.info("Waiting for the in-flight automation cycle to finish")
            await self._cycle_task
        self._cycle_task = None
        self._next_run_at = None
        logger.info("Automation scheduler stopped")

    async def _run_loop(self) -> None:
        interval = timedelta(hours=self._interval_hours)
        run_now = self.settings.automation_run_on_start

        while True:
            if run_now:
                # Cancelling the loop must not cancel a cycle mid-way
                self._cycle_task = asyncio.create_task(self._scheduled_cycle())
                await asyncio.shield(self._cycle_task)
            run_now = True

            self._next_run_at = datetime.now(timezone.utc) + interval
            await asyncio.sleep(interval.total_seconds())

    async def _scheduled_cycle(self) -> None:
        try:
            await self.run_cycle(RunTrigger.SCHEDULED)
        except CycleAlreadyRunningError:
            logger.info("Scheduled cycle skipped: a cycle is already running")

    async def trigger_manual_run(self) -> CycleSummary:
        """
        Run one cycle now.

        Raises:
            CycleAlreadyRunningError: If a cycle is already running.
        """
        logger.info("Manual automation cycle requested")
        return await self.run_cycle(RunTrigger.MANUAL)

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(self, trigger: RunTrigger = RunTrigger.SCHEDULED) -> CycleSummary:
        """
        Execute one full automation cycle.

        Failures inside the cycle are caught, recorded on the AutomationRun and
        returned as a failed summary.

        Raises:
            CycleAlreadyRunningError: If another cycle holds the guard.
        """
        if not self._guard.try_acquire():
            logger.warning(f"Rejected {trigger.value} cycle: another cycle is running")
            raise CycleAlreadyRunningError()

        started_at = datetime.now(timezone.utc)
        summary = CycleSummary(status=RunStatus.RUNNING, trigger=trigger, started_at=started_at)
        run: Optional[AutomationRun] = None

        try:
            run = await self.store.create_automation_run(RunStatus.RUNNING, trigger, started_at)
            summary.run_id = run.id
            logger.info(f"Automation cycle {run.id} started ({trigger.value})")

            limits = await self._ensure_safety_limits()

            summary.baselines_updated = await self._update_baselines()

            rule_result = await self.rule_engine.evaluate_rules()
            summary.candidates_found = len(rule_result.candidates)

            outcomes = await self._create_tests_from_candidates(rule_result.candidates, limits)
            summary.tests_created = sum(1 for o in outcomes if o.outcome == CreationOutcome.ACTIVATED)
            summary.errors.extend(
                f"{o.content_item_id} ({o.persona}/{o.funnel_stage}): {o.error}"
                for o in outcomes if o.outcome == CreationOutcome.FAILED
            )

            evaluations = await self.evaluator.evaluate_all_tests()
            summary.tests_evaluated = len(evaluations)

            promotions = await self.promotion.auto_promote_winners(evaluations)
            summary.winners_promoted = sum(1 for p in promotions if p.action == PromotionAction.PROMOTED)
            summary.tests_stopped = sum(1 for p in promotions if p.action == PromotionAction.STOPPED)
            summary.errors.extend(
                f"{p.experiment_id}: {p.message}" for p in promotions if p.action == PromotionAction.SKIPPED
            )

            summary.status = RunStatus.COMPLETED
            self._finish(summary)
            await self.store.update_automation_run(
                run.id,
                status=RunStatus.COMPLETED,
                candidates_found=summary.candidates_found,
                tests_created=summary.tests_created,
                results={
                    'baselines_updated': summary.baselines_updated,
                    'rules_evaluated': rule_result.rules_evaluated,
                    'candidates_before_limits': rule_result.candidates_before_limits,
                    'tests_evaluated': summary.tests_evaluated,
                    'winners_promoted': summary.winners_promoted,
                    'tests_stopped': summary.tests_stopped,
                    'creations': [o.model_dump(mode='json') for o in outcomes],
                    'promotions': [p.model_dump(mode='json') for p in promotions],
                    'errors': summary.errors,
                },
                completed_at=summary.completed_at,
            )
            logger.info(
                f"Automation cycle {run.id} completed in {summary.duration_seconds:.1f}s: "
                f"{summary.candidates_found} candidates, {summary.tests_created} tests created, "
                f"{summary.winners_promoted} winners promoted"
            )
        except asyncio.CancelledError:
            logger.warning("Automation cycle cancelled before completion")
            await self._record_failure(run, summary, "Cycle cancelled")
            raise
        except Exception as e:
            logger.exception(f"Automation cycle failed: {e}")
            await self._record_failure(run, summary, str(e))
        finally:
            self._guard.release()

        await self._notify(summary)
        return summary

    async def _record_failure(self, run: Optional[AutomationRun], summary: CycleSummary, message: str) -> None:
        summary.status = RunStatus.FAILED
        summary.errors.append(message)
        self._finish(summary)
        if run is None:
            return
        try:
            await self.store.update_automation_run(
                run.id,
                status=RunStatus.FAILED,
                error_message=message,
                completed_at=summary.completed_at,
            )
        except Exception as update_error:
            logger.error(f"Could not mark automation run {run.id} failed: {update_error}")

    @staticmethod
    def _finish(summary: CycleSummary) -> None:
        summary.completed_at = datetime.now(timezone.utc)
        summary.duration_seconds = (summary.completed_at - summary.started_at).total_seconds()

    async def _notify(self, summary: CycleSummary) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier(summary)
        except Exception as e:
            logger.error(f"Cycle notification failed: {e}")

    async def _ensure_safety_limits(self) -> SafetyLimits:
        limits = await self.store.get_safety_limits()
        if limits is None:
            limits = SafetyLimits(
                max_concurrent_tests=self.settings.default_max_concurrent_tests,
                max_daily_generations=self.settings.default_max_daily_generations,
                max_variants_per_test=self.settings.default_max_variants_per_test,
            )
            await self.store.save_safety_limits(limits)
            logger.info(f"Initialized default safety limits: {limits.model_dump()}")
        return limits

    async def _update_baselines(self) -> int:
        refs = await self.store.list_content_refs()
        items_by_type: Dict[str, List[str]] = defaultdict(list)
        for content_type, content_item_id in refs:
            items_by_type[content_type].append(content_item_id)

        updated = 0
        for content_type, content_item_ids in items_by_type.items():
            updated += await self.baselines.batch_update_baselines(content_type, content_item_ids)
        return updated

    async def _skip_segments_under_test(self, candidates: Sequence[Candidate]) -> List[Candidate]:
        """Drop candidates whose content item and segment already have an active or paused automated test."""
        running = []
        for status in (ExperimentStatus.ACTIVE, ExperimentStatus.PAUSED):
            running.extend(await self.store.list_experiments(status=status, is_automated=True))
        under_test = {
            (e.content_type, e.content_item_id, e.persona, e.funnel_stage) for e in running
        }

        fresh = [
            c for c in candidates
            if (c.content_type, c.content_item_id, c.persona, c.funnel_stage) not in under_test
        ]
        if len(fresh) < len(candidates):
            logger.info(f"Skipped {len(candidates) - len(fresh)} candidate(s) already under test")
        return fresh

    async def _create_tests_from_candidates(
        self, candidates: Sequence[Candidate], limits: SafetyLimits
    ) -> List[BatchCreationOutcome]:
        if not candidates:
            return []

        candidates = await self._skip_segments_under_test(candidates)
        if not candidates:
            return []

        active_tests = await self.store.count_experiments(status=ExperimentStatus.ACTIVE, is_automated=True)
        generations_today = await self.store.count_generations_since(start_of_utc_day())
        variants_per_test = max(1, min(self.settings.variants_per_test, limits.max_variants_per_test - 1))

        max_tests = max_tests_creatable(limits, active_tests, generations_today, variants_per_test)
        if max_tests == 0:
            logger.warning(
                f"Safety limits reached ({active_tests} active tests, {generations_today} generations today); "
                f"no tests created for {len(candidates)} candidate(s)"
            )
            return []
        if len(candidates) > max_tests:
            logger.warning(f"Safety limits allow {max_tests} of {len(candidates)} candidate(s) this cycle")

        return await self.lifecycle.create_batch_tests(list(candidates)[:max_tests], variants_per_test)

    # =========================================================================
    # Status
    # =========================================================================

    async def get_run_history(self, limit: int = 10) -> List[AutomationRun]:
        return await self.store.list_automation_runs(limit)

    async def get_status(self) -> SchedulerStatus:
        runs = await self.store.list_automation_runs(1)
        return SchedulerStatus(
            state=self._guard.state,
            is_running=self.is_running,
            loop_active=self.loop_active,
            interval_hours=self._interval_hours,
            last_run=runs[0] if runs else None,
            next_run_at=self._next_run_at,
        )


# =============================================================================
# Wiring
# =============================================================================

@dataclass
class AutomationServices:
    store: ContentStore
    events: EventSource
    baselines: BaselineAggregator
    rule_engine: RuleEngine
    lifecycle: ExperimentLifecycleManager
    evaluator: StatisticalEvaluator
    promotion: PromotionService
    scheduler: AutomationScheduler


def build_automation_services(
    store: ContentStore,
    events: EventSource,
    generator: VariantGenerator,
    settings: Optional[Settings] = None,
    notifier: Optional[CycleNotifier] = None,
) -> AutomationServices:
    """Construct every engine service around one store, event source and generator."""
    settings = settings or get_settings()

    comparator = BayesianComparator(
        iterations=settings.monte_carlo_iterations,
        seed=settings.monte_carlo_seed,
        futility_threshold=settings.futility_probability_threshold,
    )
    baselines = BaselineAggregator(store, events, settings)
    rule_engine = RuleEngine(store, settings)
    lifecycle = ExperimentLifecycleManager(store, generator, settings)
    evaluator = StatisticalEvaluator(store, events, comparator, settings)
    promotion = PromotionService(store, lifecycle)
    scheduler = AutomationScheduler(
        store, baselines, rule_engine, lifecycle, evaluator, promotion, settings, notifier
    )

    return AutomationServices(
        store=store,
        events=events,
        baselines=baselines,
        rule_engine=rule_engine,
        lifecycle=lifecycle,
        evaluator=evaluator,
        promotion=promotion,
        scheduler=scheduler,
    )
