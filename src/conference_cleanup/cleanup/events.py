"""
Lifecycle and operational events emitted by the conference cleanup scheduler.

Subscribers register callbacks per event type (or for every event). Handler
failures are logged and never reach the emitter.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from conference_cleanup.shared.logging import get_logger

logger = get_logger(__name__)


class CleanupEventType(str, Enum):
    """Event names published by the scheduler."""

    STARTED = "started"
    STOPPED = "stopped"
    CONFERENCE_TERMINATED = "conference-terminated"
    CLEANUP_COMPLETED = "cleanup-completed"
    CLEANUP_FAILED = "cleanup-failed"
    METRICS_AGGREGATED = "metrics-aggregated"


class TerminationReason(str, Enum):
    MAX_DURATION = "max_duration"
    STALE = "stale"
    MANUAL = "manual"


class CleanupEvent(BaseModel):
    """A single emitted event."""

    model_config = ConfigDict(frozen=True)

    event_type: CleanupEventType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[CleanupEvent], Awaitable[None] | None]


class EventBus:
    """Observer registry for cleanup events."""

    def __init__(self) -> None:
        self._handlers: dict[CleanupEventType | None, list[EventHandler]] = {}
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(
        self,
        event_type: CleanupEventType | None,
        handler: EventHandler,
    ) -> Callable[[], None]:
        """Register `handler`; `event_type=None` receives every event.

        Returns:
            A callable that removes the subscription.
        """
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event_type: CleanupEventType, **payload: Any) -> CleanupEvent:
        event = CleanupEvent(event_type=event_type, payload=payload)
        handlers = [*self._handlers.get(event_type, []), *self._handlers.get(None, [])]
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(self._await_handler(result, event))
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
            except Exception:
                logger.exception(
                    "Cleanup event handler failed",
                    extra={"event_type": event_type.value},
                )
        return event

    @staticmethod
    async def _await_handler(result: Awaitable[None], event: CleanupEvent) -> None:
        try:
            await result
        except Exception:
            logger.exception(
                "Async cleanup event handler failed",
                extra={"event_type": event.event_type.value},
            )
