"""
FastAPI dependencies resolving the services wired in the application lifespan.
"""

from fastapi import HTTPException, Request, status

from conference_cleanup.calls.repository import CallLogStore
from conference_cleanup.cleanup.scheduler import ConferenceCleanupScheduler


def get_cleanup_scheduler(request: Request) -> ConferenceCleanupScheduler:
    scheduler = getattr(request.app.state, "conference_cleanup_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Conference cleanup scheduler not initialized",
        )
    return scheduler


def get_call_log_store(request: Request) -> CallLogStore:
    store = getattr(request.app.state, "call_log_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Call log store not initialized",
        )
    return store
