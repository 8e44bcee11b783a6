"""
FastAPI router for conference status callbacks.

Key constraints:
- The provider must always receive a fast 200, even when processing fails
- conference-start arms the max-duration timer, conference-end cancels it
- Call logs are correlated through FriendlyName == metadata.conferenceName
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status

from conference_cleanup.api.dependencies import get_call_log_store, get_cleanup_scheduler
from conference_cleanup.calls.models import CONFERENCE_NAME_KEY, CONFERENCE_SID_KEY, CallLogRecord
from conference_cleanup.calls.repository import CallLogStore
from conference_cleanup.cleanup.config import DEFAULT_MAX_CONFERENCE_DURATION_HOURS
from conference_cleanup.cleanup.models import utcnow
from conference_cleanup.cleanup.scheduler import ConferenceCleanupScheduler
from conference_cleanup.shared.logging import correlation_scope, get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks/conference", tags=["webhooks"])

CONFERENCE_START_EVENT = "conference-start"
CONFERENCE_END_EVENT = "conference-end"


async def _read_payload(request: Request) -> dict[str, Any]:
    try:
        form = dict(await request.form())
    except Exception:
        form = {}
    payload = dict(form)
    payload.update(dict(request.query_params))
    return payload


async def _stamp_all(
    store: CallLogStore,
    call_logs: Sequence[CallLogRecord],
    metadata: dict[str, Any],
) -> None:
    for record in call_logs:
        try:
            await store.update_record(record.company_id, record.id, metadata)
        except Exception as e:
            logger.error(
                "Error updating conference metadata on call log",
                extra={"call_log_id": record.id, "error": str(e)},
            )


async def handle_conference_start(
    scheduler: ConferenceCleanupScheduler,
    store: CallLogStore,
    conference_sid: str | None,
    friendly_name: str,
    call_logs: Sequence[CallLogRecord],
) -> None:
    try:
        max_hours = await scheduler.get_max_conference_duration_hours()
    except Exception:
        logger.exception("Error getting max conference duration, using default")
        max_hours = DEFAULT_MAX_CONFERENCE_DURATION_HOURS

    started_at = utcnow().isoformat()
    await _stamp_all(
        store,
        # Tenant-less rows are left alone
        [r for r in call_logs if r.company_id is not None],
        {
            CONFERENCE_NAME_KEY: friendly_name,
            CONFERENCE_SID_KEY: conference_sid,
            "conferenceStartTime": started_at,
            "cleanupScheduled": True,
        },
    )

    if conference_sid:
        scheduler.schedule_conference_cleanup(conference_sid, max_hours * 3600.0)


async def handle_conference_end(
    scheduler: ConferenceCleanupScheduler,
    store: CallLogStore,
    conference_sid: str | None,
    call_logs: Sequence[CallLogRecord],
) -> None:
    if conference_sid:
        scheduler.cancel_conference_cleanup(conference_sid)

    now = utcnow()
    for record in call_logs:
        metadata: dict[str, Any] = {
            "conferenceEndTime": now.isoformat(),
            "cleanupScheduled": False,
        }
        started = _parse_iso(record.metadata.get("conferenceStartTime"))
        if started is not None:
            metadata["totalDurationSeconds"] = max(0, round((now - started).total_seconds()))
        await _stamp_all(store, [record], metadata)


def _parse_iso(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else None


@router.post("/status", status_code=status.HTTP_200_OK)
async def conference_status_callback(
    request: Request,
    scheduler: Annotated[ConferenceCleanupScheduler, Depends(get_cleanup_scheduler)],
    store: Annotated[CallLogStore, Depends(get_call_log_store)],
) -> dict[str, bool]:
    payload = await _read_payload(request)
    with correlation_scope("webhook"):
        await _handle_status_event(scheduler, store, payload)
    return {"ok": True}


async def _handle_status_event(
    scheduler: ConferenceCleanupScheduler,
    store: CallLogStore,
    payload: dict[str, Any],
) -> None:
    event = str(payload.get("StatusCallbackEvent") or "")
    conference_sid = payload.get("ConferenceSid") or None
    friendly_name = str(payload.get("FriendlyName") or "")

    logger.info(
        "Conference status callback",
        extra={
            "status_callback_event": event,
            "conference_sid": conference_sid,
            "friendly_name": friendly_name,
        },
    )

    call_logs: Sequence[CallLogRecord] = []
    if friendly_name:
        try:
            call_logs = await store.find_by_conference_name(friendly_name)
        except Exception as e:
            logger.error(
                "Error finding call logs for conference",
                extra={"friendly_name": friendly_name, "error": str(e)},
            )

    try:
        if event == CONFERENCE_START_EVENT:
            await handle_conference_start(scheduler, store, conference_sid, friendly_name, call_logs)
        elif event == CONFERENCE_END_EVENT:
            await handle_conference_end(scheduler, store, conference_sid, call_logs)
    except Exception:
        logger.exception("Failed to process conference status callback (ACKing 200)")
