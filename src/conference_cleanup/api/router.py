"""
API router for conference cleanup administration.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from conference_cleanup.api.dependencies import get_cleanup_scheduler
from conference_cleanup.api.schemas import (
    ActiveConferencesResponse,
    CleanupRequest,
    CleanupStatsResponse,
    ConferenceStatsResponse,
    MaxDurationResponse,
    ScheduledCleanupResponse,
    SchedulerStatusResponse,
    SweepErrorResponse,
    SweepResultResponse,
    TerminateConferenceResponse,
)
from conference_cleanup.cleanup.config import CleanupConfig
from conference_cleanup.cleanup.scheduler import ConferenceCleanupScheduler
from conference_cleanup.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/conferences", tags=["conferences"])

SchedulerDep = Annotated[ConferenceCleanupScheduler, Depends(get_cleanup_scheduler)]


def _server_error(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


@router.post(
    "/cleanup",
    response_model=SweepResultResponse,
    summary="Run a conference cleanup now",
    description="Sweep every in-progress conference, or terminate only the one "
    "given as conference_sid (body or query).",
)
async def run_cleanup(
    scheduler: SchedulerDep,
    body: Annotated[CleanupRequest | None, Body()] = None,
    conference_sid: Annotated[str | None, Query()] = None,
) -> SweepResultResponse:
    target = (body.conference_sid if body else None) or conference_sid
    try:
        result = await scheduler.run_stale_cleanup(target)
    except Exception as e:
        logger.error("Conference cleanup error", extra={"conference_sid": target, "error": str(e)})
        raise _server_error("Failed to cleanup conferences") from e
    return SweepResultResponse.model_validate(result.to_dict())


@router.get("/active", response_model=ActiveConferencesResponse)
async def list_active_conferences(scheduler: SchedulerDep) -> ActiveConferencesResponse:
    """Provider failures surface as 502 via the app's TelephonyProviderError handler."""
    metrics = await scheduler.get_metrics()
    conferences = await scheduler.get_active_conferences()

    snapshot = metrics.to_dict()
    return ActiveConferencesResponse.model_validate(
        {
            "active_count": snapshot["active_count"],
            "conferences": [c.to_dict() for c in conferences],
            "longest_running": snapshot["longest_running"],
        }
    )


@router.get("/stats", response_model=ConferenceStatsResponse)
async def conference_stats(scheduler: SchedulerDep) -> ConferenceStatsResponse:
    metrics = await scheduler.get_metrics()
    scheduler_status = scheduler.get_status()
    return ConferenceStatsResponse.model_validate(
        {
            **metrics.to_dict(),
            "scheduler_running": scheduler_status["is_running"],
            "scheduled_cleanups_count": scheduler_status["scheduled_cleanups_count"],
        }
    )


@router.post("/{conference_sid}/terminate", response_model=TerminateConferenceResponse)
async def terminate_conference(
    conference_sid: str,
    scheduler: SchedulerDep,
) -> TerminateConferenceResponse:
    try:
        result = await scheduler.run_stale_cleanup(conference_sid)
    except Exception as e:
        logger.error(
            "Error terminating conference",
            extra={"conference_sid": conference_sid, "error": str(e)},
        )
        raise _server_error("Failed to terminate conference") from e

    return TerminateConferenceResponse(
        conference_sid=conference_sid,
        terminated=result.cleaned_conferences > 0,
        errors=[SweepErrorResponse(conference_sid=e.conference_sid, error=e.error) for e in result.errors],
    )


@router.get("/cleanup-stats", response_model=CleanupStatsResponse)
async def get_cleanup_stats(scheduler: SchedulerDep) -> CleanupStatsResponse:
    return CleanupStatsResponse.model_validate(scheduler.get_cleanup_stats().to_dict())


@router.delete("/cleanup-stats", response_model=CleanupStatsResponse)
async def reset_cleanup_stats(scheduler: SchedulerDep) -> CleanupStatsResponse:
    """Zero the counters; responds with the values they held."""
    previous = scheduler.reset_cleanup_stats()
    return CleanupStatsResponse.model_validate(previous.to_dict())


@router.get("/scheduled", response_model=list[ScheduledCleanupResponse])
async def list_scheduled_cleanups(scheduler: SchedulerDep) -> list[ScheduledCleanupResponse]:
    return [
        ScheduledCleanupResponse(
            conference_sid=info.conference_sid,
            scheduled_at=info.scheduled_at,
            fires_at=info.fires_at,
        )
        for info in scheduler.get_scheduled_cleanups()
    ]


@router.get("/config", response_model=CleanupConfig)
async def get_cleanup_config(scheduler: SchedulerDep) -> CleanupConfig:
    return await scheduler.get_config()


@router.put("/config", response_model=CleanupConfig)
async def update_cleanup_config(
    scheduler: SchedulerDep,
    config: Annotated[CleanupConfig, Body()],
) -> CleanupConfig:
    """Store the cleanup settings and reload the scheduler with them."""
    try:
        return await scheduler.update_config(config)
    except Exception as e:
        logger.error("Conference cleanup config update failed", extra={"error": str(e)})
        raise _server_error("Failed to update conference cleanup config") from e


@router.get("/config/max-duration", response_model=MaxDurationResponse)
async def get_max_duration(scheduler: SchedulerDep) -> MaxDurationResponse:
    hours = await scheduler.get_max_conference_duration_hours()
    return MaxDurationResponse(max_conference_duration_hours=hours)


@router.get("/status", response_model=SchedulerStatusResponse)
async def scheduler_status(scheduler: SchedulerDep) -> SchedulerStatusResponse:
    return SchedulerStatusResponse.model_validate(scheduler.get_status())


@router.post("/reload", response_model=SchedulerStatusResponse)
async def reload_scheduler(scheduler: SchedulerDep) -> SchedulerStatusResponse:
    """Restart the scheduler so edited cleanup settings take effect."""
    try:
        await scheduler.reload()
    except Exception as e:
        logger.error("Conference cleanup scheduler reload failed", extra={"error": str(e)})
        raise _server_error("Failed to reload conference cleanup scheduler") from e
    return SchedulerStatusResponse.model_validate(scheduler.get_status())
