"""
FastAPI router for content experiment automation administration.

Endpoints (mounted under /automation):
    POST /run                              Trigger a cycle now (409 while one is running)
    GET  /status                           Scheduler state, last run, next run
    GET  /runs                             Recent AutomationRun records
    GET  /promotions                       Completed experiments with a promoted winner
    POST /cleanup                          Delete old completed automated experiments
    GET  /experiments                      Automated experiments, optionally by status
    GET  /experiments/{id}                 Experiment with variants and generation counts
    POST /experiments/{id}/pause           active -> paused
    POST /experiments/{id}/resume          paused -> active
    POST /experiments/{id}/stop            -> completed, optionally with a winner
    POST /experiments/{id}/evaluate        Statistical evaluation without side effects
    POST /experiments/{id}/promote         Promote a chosen variant
    POST /experiments/{id}/rollback        Restore the control payload

Engine exceptions map to HTTP status codes in _raise_http.
"""

import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from content_autotest.core.dependencies import AutomationServicesDep
from content_autotest.core.exceptions import (
    AutomationError,
    ControlVariantError,
    CycleAlreadyRunningError,
    InvalidTransitionError,
    NotFoundError,
    ProfileMismatchError,
)
from content_autotest.models.enums import ExperimentStatus
from content_autotest.models.schemas import (
    AutomationRun,
    CycleSummary,
    Experiment,
    ExperimentSummary,
    SchedulerStatus,
    WinnerEvaluation,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Local Pydantic Models for API Requests/Responses
# =============================================================================

class RunListResponse(BaseModel):
    runs: List[AutomationRun] = Field(default_factory=list)


class ExperimentListResponse(BaseModel):
    experiments: List[Experiment] = Field(default_factory=list)


class CleanupResponse(BaseModel):
    deleted: int = Field(..., ge=0, description="Number of experiments deleted")
    days_old: Optional[int] = None


class StopRequest(BaseModel):
    winner_variant_id: Optional[str] = Field(default=None, description="Optional winning variant")


class PromoteRequest(BaseModel):
    variant_id: str = Field(..., description="Variant whose payload becomes live content")


# =============================================================================
# Error Mapping
# =============================================================================

def _raise_http(error: Exception) -> NoReturn:
    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (InvalidTransitionError, CycleAlreadyRunningError)):
        raise HTTPException(status_code=409, detail=str(error))
    if isinstance(error, (ControlVariantError, ProfileMismatchError, ValueError)):
        raise HTTPException(status_code=422, detail=str(error))
    if isinstance(error, AutomationError):
        raise HTTPException(status_code=400, detail=str(error))
    logger.exception("Unexpected automation API error")
    raise HTTPException(status_code=500, detail=f"Automation request failed: {str(error)}")


# =============================================================================
# Router Definition
# =============================================================================

router = APIRouter()


@router.post("/run", response_model=CycleSummary)
async def trigger_run(services: AutomationServicesDep) -> CycleSummary:
    """Run one automation cycle now and return its summary."""
    try:
        return await services.scheduler.trigger_manual_run()
    except CycleAlreadyRunningError as e:
        logger.warning("Manual trigger rejected: cycle already running")
        _raise_http(e)


@router.get("/status", response_model=SchedulerStatus)
async def get_status(services: AutomationServicesDep) -> SchedulerStatus:
    return await services.scheduler.get_status()


@router.get("/runs", response_model=RunListResponse)
async def list_runs(
    services: AutomationServicesDep,
    limit: int = Query(default=10, ge=1, le=100, description="Maximum number of runs to return"),
) -> RunListResponse:
    runs = await services.scheduler.get_run_history(limit)
    return RunListResponse(runs=runs)


@router.get("/promotions", response_model=ExperimentListResponse)
async def list_promotions(
    services: AutomationServicesDep,
    limit: int = Query(default=50, ge=1, le=500),
) -> ExperimentListResponse:
    experiments = await services.promotion.get_promotion_history(limit)
    return ExperimentListResponse(experiments=experiments)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(
    services: AutomationServicesDep,
    days_old: Optional[int] = Query(default=None, ge=0, description="Retention window in days"),
) -> CleanupResponse:
    deleted = await services.lifecycle.cleanup_old_tests(days_old)
    return CleanupResponse(deleted=deleted, days_old=days_old)


# =============================================================================
# Experiment Endpoints
# =============================================================================

@router.get("/experiments", response_model=ExperimentListResponse)
async def list_experiments(
    services: AutomationServicesDep,
    status: Optional[ExperimentStatus] = Query(default=None),
) -> ExperimentListResponse:
    experiments = await services.lifecycle.get_automated_tests(status)
    return ExperimentListResponse(experiments=experiments)


@router.get("/experiments/{experiment_id}", response_model=ExperimentSummary)
async def get_experiment(experiment_id: str, services: AutomationServicesDep) -> ExperimentSummary:
    try:
        return await services.lifecycle.get_test_summary(experiment_id)
    except AutomationError as e:
        _raise_http(e)


@router.post("/experiments/{experiment_id}/pause", response_model=Experiment)
async def pause_experiment(experiment_id: str, services: AutomationServicesDep) -> Experiment:
    try:
        return await services.lifecycle.pause_test(experiment_id)
    except AutomationError as e:
        _raise_http(e)


@router.post("/experiments/{experiment_id}/resume", response_model=Experiment)
async def resume_experiment(experiment_id: str, services: AutomationServicesDep) -> Experiment:
    try:
        return await services.lifecycle.resume_test(experiment_id)
    except AutomationError as e:
        _raise_http(e)


@router.post("/experiments/{experiment_id}/stop", response_model=Experiment)
async def stop_experiment(
    experiment_id: str,
    services: AutomationServicesDep,
    body: Optional[StopRequest] = None,
) -> Experiment:
    """Complete an experiment. Naming a winner promotes it so live content matches."""
    winner_variant_id = body.winner_variant_id if body else None
    try:
        if winner_variant_id is not None:
            return await services.promotion.promote_winner(experiment_id, winner_variant_id)
        return await services.lifecycle.stop_test(experiment_id)
    except (AutomationError, ValueError) as e:
        _raise_http(e)


@router.post("/experiments/{experiment_id}/evaluate", response_model=WinnerEvaluation)
async def evaluate_experiment(experiment_id: str, services: AutomationServicesDep) -> WinnerEvaluation:
    try:
        return await services.evaluator.evaluate_test(experiment_id)
    except (AutomationError, ValueError) as e:
        _raise_http(e)


@router.post("/experiments/{experiment_id}/promote", response_model=Experiment)
async def promote_experiment(
    experiment_id: str,
    body: PromoteRequest,
    services: AutomationServicesDep,
) -> Experiment:
    try:
        return await services.promotion.promote_winner(experiment_id, body.variant_id)
    except (AutomationError, ValueError) as e:
        _raise_http(e)


@router.post("/experiments/{experiment_id}/rollback", response_model=Experiment)
async def rollback_experiment(experiment_id: str, services: AutomationServicesDep) -> Experiment:
    try:
        return await services.promotion.rollback_promotion(experiment_id)
    except AutomationError as e:
        _raise_http(e)
