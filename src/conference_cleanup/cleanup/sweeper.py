"""
Stale conference sweeper.

Lists every in-progress conference, correlates each with its call logs by
conference name and terminates the ones that are orphaned (no call log at
all) or stale (every call log ended more than the stale timeout ago).
Conferences are processed one at a time; a failure on one is recorded and the
sweep moves on.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from datetime import datetime

from conference_cleanup.calls.models import CallLogRecord
from conference_cleanup.calls.repository import CallLogStore
from conference_cleanup.cleanup.config import CleanupConfigProvider
from conference_cleanup.cleanup.events import CleanupEventType, EventBus, TerminationReason
from conference_cleanup.cleanup.models import (
    CleanupStats,
    ConferenceHealth,
    SweepAction,
    SweepDetail,
    SweepError,
    SweepResult,
    utcnow,
)
from conference_cleanup.shared.logging import correlation_scope, get_logger
from conference_cleanup.telephony.interface import Conference, ConferenceProvider

logger = get_logger(__name__)

CLEANUP_TIMESTAMP_KEY = "conferenceEndTime"
CLEANUP_MARKER_KEY = "cleanupTerminated"


def classify_conference(
    call_logs: Sequence[CallLogRecord],
    now: datetime,
    stale_timeout_seconds: float,
) -> ConferenceHealth:
    """Classify a conference from its matching call logs.

    A call log that has not ended, or ended within the timeout, keeps the
    conference healthy.
    """
    if not call_logs:
        return ConferenceHealth.ORPHANED
    for record in call_logs:
        if record.ended_at is None:
            return ConferenceHealth.HEALTHY
        if (now - record.ended_at).total_seconds() <= stale_timeout_seconds:
            return ConferenceHealth.HEALTHY
    return ConferenceHealth.STALE


class StaleConferenceSweeper:
    """Runs stale/orphaned conference sweeps."""

    def __init__(
        self,
        provider: ConferenceProvider,
        call_logs: CallLogStore,
        config_provider: CleanupConfigProvider,
        events: EventBus,
        stats: CleanupStats,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._provider = provider
        self._call_logs = call_logs
        self._config_provider = config_provider
        self._events = events
        self._stats = stats
        self._clock = clock

    async def find_call_logs(self, conference: Conference) -> Sequence[CallLogRecord]:
        """Call logs matching the conference name; empty when the lookup fails.

        An unreadable call log table classifies the conference as orphaned.
        """
        try:
            return await self._call_logs.find_by_conference_name(conference.name)
        except Exception as e:
            logger.warning(
                "Call log lookup failed; treating conference as orphaned",
                extra={"conference_sid": conference.sid, "error": str(e)},
            )
            return []

    async def classify(self, conference: Conference, stale_timeout_seconds: float) -> ConferenceHealth:
        """Read-only classification, no termination."""
        call_logs = await self.find_call_logs(conference)
        return classify_conference(call_logs, self._clock(), stale_timeout_seconds)

    async def run(self, conference_sid: str | None = None) -> SweepResult:
        """Run one sweep, or terminate a single conference when `conference_sid` is given."""
        result = SweepResult()

        if not self._provider.is_configured:
            logger.warning("Telephony credentials not configured, skipping cleanup")
            return result

        with correlation_scope("sweep"):
            if conference_sid:
                await self._terminate_single(conference_sid, result)
            else:
                await self._sweep_all(result)
        return result

    async def _terminate_single(self, conference_sid: str, result: SweepResult) -> None:
        started = time.monotonic()
        try:
            terminated = await self._provider.terminate_conference(conference_sid)
            if not terminated:
                raise RuntimeError("Telephony provider not configured")
        except Exception as e:
            logger.error(
                "Manual conference termination failed",
                extra={"conference_sid": conference_sid, "error": str(e)},
            )
            result.errors.append(SweepError(conference_sid, str(e)))
            result.details.append(
                SweepDetail(conference_sid, conference_sid, 0, SweepAction.ERROR)
            )
            self._stats.errors += 1
            self._events.emit(
                CleanupEventType.CLEANUP_FAILED,
                conference_sid=conference_sid,
                error=str(e),
            )
            return

        result.cleaned_conferences = 1
        result.details.append(
            SweepDetail(conference_sid, conference_sid, 0, SweepAction.TERMINATED)
        )
        self._stats.total_cleaned += 1
        self._stats.last_cleanup = self._clock()
        self._events.emit(
            CleanupEventType.CLEANUP_COMPLETED,
            cleaned=1,
            errors=[],
            execution_time=_elapsed_ms(started),
        )
        self._events.emit(
            CleanupEventType.CONFERENCE_TERMINATED,
            conference_sid=conference_sid,
            reason=TerminationReason.MANUAL.value,
        )

    async def _sweep_all(self, result: SweepResult) -> None:
        started = time.monotonic()
        try:
            config = await self._config_provider.get_config()
            conferences = await self._provider.list_active_conferences()
            result.total_conferences = len(conferences)
            result.active_conferences = len(conferences)

            for conference in conferences:
                await self._process(conference, config.stale_timeout_seconds, result)

            self._stats.last_cleanup = self._clock()
        except Exception as e:
            logger.exception("Stale conference cleanup failed")
            self._stats.errors += 1
            self._events.emit(CleanupEventType.CLEANUP_FAILED, error=str(e))
            return

        logger.info(
            "Stale conference cleanup completed",
            extra={
                "total_conferences": result.total_conferences,
                "cleaned_conferences": result.cleaned_conferences,
                "error_count": len(result.errors),
            },
        )
        self._events.emit(
            CleanupEventType.CLEANUP_COMPLETED,
            cleaned=result.cleaned_conferences,
            errors=[{"conference_sid": e.conference_sid, "error": e.error} for e in result.errors],
            execution_time=_elapsed_ms(started),
        )

    async def _process(
        self,
        conference: Conference,
        stale_timeout_seconds: float,
        result: SweepResult,
    ) -> None:
        now = self._clock()
        duration = conference.elapsed_seconds(now)

        call_logs = await self.find_call_logs(conference)
        health = classify_conference(call_logs, now, stale_timeout_seconds)
        if not health.needs_cleanup:
            result.details.append(
                SweepDetail(conference.sid, conference.name, duration, SweepAction.SKIPPED)
            )
            return

        try:
            terminated = await self._provider.terminate_conference(conference.sid)
            if not terminated:
                raise RuntimeError("Telephony provider not configured")
        except Exception as e:
            logger.error(
                "Failed to terminate stale conference",
                extra={"conference_sid": conference.sid, "health": health.value, "error": str(e)},
            )
            self._record_error(conference, duration, e, result)
            return

        result.cleaned_conferences += 1
        result.active_conferences -= 1
        result.details.append(
            SweepDetail(conference.sid, conference.name, duration, SweepAction.TERMINATED)
        )
        self._stats.total_cleaned += 1
        logger.info(
            "Terminated stale conference",
            extra={"conference_sid": conference.sid, "health": health.value, "duration": duration},
        )
        self._events.emit(
            CleanupEventType.CONFERENCE_TERMINATED,
            conference_sid=conference.sid,
            reason=TerminationReason.STALE.value,
        )

        if call_logs:
            await self._stamp_call_log(call_logs[0], conference.sid)

    def _record_error(
        self,
        conference: Conference,
        duration: int,
        error: Exception,
        result: SweepResult,
    ) -> None:
        result.errors.append(SweepError(conference.sid, str(error)))
        result.details.append(
            SweepDetail(conference.sid, conference.name, duration, SweepAction.ERROR)
        )
        self._stats.errors += 1

    async def _stamp_call_log(self, record: CallLogRecord, conference_sid: str) -> None:
        try:
            await self._call_logs.update_record(
                record.company_id,
                record.id,
                {
                    CLEANUP_TIMESTAMP_KEY: self._clock().isoformat(),
                    CLEANUP_MARKER_KEY: True,
                },
            )
        except Exception:
            # Conference is already terminated; only the stamp is lost.
            logger.exception(
                "Failed to stamp call log after cleanup",
                extra={"conference_sid": conference_sid, "call_log_id": record.id},
            )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
