"""
Per-conference max-duration timers.

One timer per conference sid. Re-scheduling replaces the prior timer; when a
timer fires its handle is removed before the termination request is awaited,
so a cancel() issued meanwhile is a no-op. Failures are not retried here: the
next stale sweep picks the conference up.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from conference_cleanup.cleanup.events import CleanupEventType, EventBus, TerminationReason
from conference_cleanup.cleanup.models import ScheduledCleanupInfo, utcnow
from conference_cleanup.shared.logging import get_logger
from conference_cleanup.telephony.interface import ConferenceProvider

logger = get_logger(__name__)


@dataclass
class _ScheduledCleanupHandle:
    conference_sid: str
    scheduled_at: datetime
    fires_at: datetime
    timer: asyncio.TimerHandle


class ConferenceTimeoutScheduler:
    """Arms and cancels one-shot termination timers keyed by conference sid."""

    def __init__(
        self,
        provider: ConferenceProvider,
        events: EventBus,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._provider = provider
        self._events = events
        self._clock = clock
        self._handles: dict[str, _ScheduledCleanupHandle] = {}
        self._inflight: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, conference_sid: object) -> bool:
        return conference_sid in self._handles

    def schedule(self, conference_sid: str, timeout_seconds: float) -> ScheduledCleanupInfo:
        """Arm (or re-arm) the termination timer for a conference.

        Must be called from within the running event loop.
        """
        self.cancel(conference_sid)

        loop = asyncio.get_running_loop()
        now = self._clock()
        delay = max(0.0, float(timeout_seconds))
        timer = loop.call_later(delay, self._fire, conference_sid)
        handle = _ScheduledCleanupHandle(
            conference_sid=conference_sid,
            scheduled_at=now,
            fires_at=now + timedelta(seconds=delay),
            timer=timer,
        )
        self._handles[conference_sid] = handle

        logger.info(
            "Scheduled conference cleanup",
            extra={"conference_sid": conference_sid, "timeout_seconds": delay},
        )
        return self._info(handle)

    def cancel(self, conference_sid: str) -> bool:
        """Cancel a pending timer. Returns False when nothing was scheduled."""
        handle = self._handles.pop(conference_sid, None)
        if handle is None:
            return False
        handle.timer.cancel()
        logger.debug("Cancelled conference cleanup", extra={"conference_sid": conference_sid})
        return True

    def cancel_all(self) -> int:
        count = len(self._handles)
        for handle in self._handles.values():
            handle.timer.cancel()
        self._handles.clear()
        return count

    def get(self, conference_sid: str) -> ScheduledCleanupInfo | None:
        handle = self._handles.get(conference_sid)
        return self._info(handle) if handle else None

    def list_scheduled(self) -> list[ScheduledCleanupInfo]:
        return sorted(
            (self._info(h) for h in self._handles.values()),
            key=lambda info: info.fires_at,
        )

    async def wait_for_inflight(self) -> None:
        """Wait for terminations already started by fired timers."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    @staticmethod
    def _info(handle: _ScheduledCleanupHandle) -> ScheduledCleanupInfo:
        return ScheduledCleanupInfo(
            conference_sid=handle.conference_sid,
            scheduled_at=handle.scheduled_at,
            fires_at=handle.fires_at,
        )

    def _fire(self, conference_sid: str) -> None:
        if self._handles.pop(conference_sid, None) is None:
            return
        task = asyncio.ensure_future(self._terminate(conference_sid))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _terminate(self, conference_sid: str) -> None:
        try:
            terminated = await self._provider.terminate_conference(conference_sid)
        except Exception as e:
            logger.error(
                "Scheduled cleanup failed",
                extra={"conference_sid": conference_sid, "error": str(e)},
            )
            self._events.emit(
                CleanupEventType.CLEANUP_FAILED,
                conference_sid=conference_sid,
                error=str(e),
            )
            return

        if not terminated:
            self._events.emit(
                CleanupEventType.CLEANUP_FAILED,
                conference_sid=conference_sid,
                error="Telephony provider not configured",
            )
            return

        self._events.emit(
            CleanupEventType.CONFERENCE_TERMINATED,
            conference_sid=conference_sid,
            reason=TerminationReason.MAX_DURATION.value,
        )
