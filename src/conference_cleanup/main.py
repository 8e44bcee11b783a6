"""
FastAPI application entry point.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from conference_cleanup.api.router import router as conferences_router
from conference_cleanup.calls.repository import CallLogRepository
from conference_cleanup.cleanup.config import CleanupConfigProvider
from conference_cleanup.cleanup.events import CleanupEvent, CleanupEventType, EventBus
from conference_cleanup.cleanup.scheduler import ConferenceCleanupScheduler
from conference_cleanup.config import get_settings
from conference_cleanup.settings.store import SqlSettingsStore
from conference_cleanup.shared.database import DatabaseManager, get_database_manager
from conference_cleanup.shared.logging import get_logger, setup_logging
from conference_cleanup.telephony.factory import get_conference_provider
from conference_cleanup.telephony.interface import TelephonyProviderError
from conference_cleanup.webhooks.router import router as conference_webhooks_router

logger = get_logger(__name__)


def _log_cleanup_event(event: CleanupEvent) -> None:
    extra = {"event_type": event.event_type.value, **event.payload}
    if event.event_type == CleanupEventType.CLEANUP_FAILED:
        logger.error("Conference cleanup failed", extra=extra)
    elif event.event_type == CleanupEventType.CONFERENCE_TERMINATED:
        logger.info("Conference terminated", extra=extra)
    else:
        logger.info("Conference cleanup completed", extra=extra)


def build_cleanup_scheduler(db: DatabaseManager) -> ConferenceCleanupScheduler:
    """Wire the scheduler with the production collaborators."""
    events = EventBus()
    for event_type in (
        CleanupEventType.CLEANUP_COMPLETED,
        CleanupEventType.CLEANUP_FAILED,
        CleanupEventType.CONFERENCE_TERMINATED,
    ):
        events.subscribe(event_type, _log_cleanup_event)

    return ConferenceCleanupScheduler(
        provider=get_conference_provider(),
        call_logs=CallLogRepository(db),
        config_provider=CleanupConfigProvider(SqlSettingsStore(db)),
        events=events,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()

    logger.info("Application starting", extra={"env": settings.app_env})

    db = get_database_manager()
    scheduler = build_cleanup_scheduler(db)
    app.state.call_log_store = CallLogRepository(db)
    app.state.conference_cleanup_scheduler = scheduler

    if settings.cleanup_scheduler_enabled:
        try:
            await scheduler.start()
        except Exception:
            logger.exception("Conference cleanup scheduler failed to start")
    else:
        logger.info("Conference cleanup scheduler disabled by settings")

    yield

    logger.info("Shutting down application")

    await scheduler.aclose()
    logger.info("Conference cleanup scheduler stopped")

    await db.close()
    logger.info("Application shutdown complete")


def _error_response(status_code: int, code: str, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"code": code, "message": message, **extra}},
    )


async def _telephony_error_handler(_: Request, exc: TelephonyProviderError) -> JSONResponse:
    # Upstream provider failures map to 502
    return _error_response(
        status.HTTP_502_BAD_GATEWAY,
        exc.error_code or "TELEPHONY_ERROR",
        str(exc),
    )


async def _validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        "Invalid request",
        errors=errors,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Conference Cleanup API",
        description="Background cleanup of stale telephony conferences",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.add_exception_handler(TelephonyProviderError, _telephony_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.include_router(conferences_router)
    app.include_router(conference_webhooks_router)

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, Any]:
        scheduler = getattr(request.app.state, "conference_cleanup_scheduler", None)
        return {
            "status": "healthy",
            "cleanup_scheduler_running": bool(scheduler and scheduler.is_running),
        }

    return app


app = create_app()
