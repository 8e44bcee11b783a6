"""
Conference metrics aggregation with a short-lived cache.

Metrics are advisory: any failure while recomputing yields a zeroed snapshot
instead of an exception.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime

from conference_cleanup.calls.models import TodayConferenceStats
from conference_cleanup.calls.repository import CallLogStore
from conference_cleanup.cleanup.config import CleanupConfigProvider
from conference_cleanup.cleanup.models import (
    CleanupStats,
    LongestRunning,
    MetricsSnapshot,
    utcnow,
)
from conference_cleanup.cleanup.sweeper import StaleConferenceSweeper
from conference_cleanup.shared.logging import get_logger
from conference_cleanup.telephony.interface import Conference, ConferenceProvider

logger = get_logger(__name__)

DEFAULT_METRICS_CACHE_TTL_SECONDS = 60.0


def utc_midnight(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def longest_running(conferences: list[Conference], now: datetime) -> LongestRunning | None:
    longest: LongestRunning | None = None
    for conference in conferences:
        duration = conference.elapsed_seconds(now)
        if longest is None or duration > longest.duration:
            longest = LongestRunning(
                conference_sid=conference.sid,
                duration=duration,
                participant_count=conference.participant_count,
            )
    return longest


class MetricsAggregator:
    """Computes and caches conference metric snapshots."""

    def __init__(
        self,
        provider: ConferenceProvider,
        call_logs: CallLogStore,
        sweeper: StaleConferenceSweeper,
        config_provider: CleanupConfigProvider,
        stats: CleanupStats,
        cache_ttl_seconds: float = DEFAULT_METRICS_CACHE_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._call_logs = call_logs
        self._sweeper = sweeper
        self._config_provider = config_provider
        self._stats = stats
        self._cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock
        self._monotonic = monotonic
        self._cache: tuple[float, MetricsSnapshot] | None = None

    def invalidate(self) -> None:
        self._cache = None

    async def get_metrics(self) -> MetricsSnapshot:
        if self._cache is not None:
            computed_at, snapshot = self._cache
            if self._monotonic() - computed_at < self._cache_ttl_seconds:
                return snapshot

        try:
            snapshot = await self._compute()
        except Exception:
            logger.exception("Error aggregating conference metrics")
            return MetricsSnapshot(cleanup_stats=self._stats.copy())

        self._cache = (self._monotonic(), snapshot)
        return snapshot

    async def _list_conferences(self) -> list[Conference]:
        if not self._provider.is_configured:
            return []
        return await self._provider.list_active_conferences()

    async def _compute(self) -> MetricsSnapshot:
        now = self._clock()
        conferences, today = await asyncio.gather(
            self._list_conferences(),
            self._call_logs.today_conference_stats(utc_midnight(now)),
        )
        today = today or TodayConferenceStats()

        config = await self._config_provider.get_config()
        stale_count = 0
        for conference in conferences:
            health = await self._sweeper.classify(conference, config.stale_timeout_seconds)
            if health.needs_cleanup:
                stale_count += 1

        return MetricsSnapshot(
            active_count=len(conferences),
            total_today=today.total_today,
            average_duration=today.average_duration,
            longest_running=longest_running(conferences, now),
            stale_count=stale_count,
            cleanup_stats=self._stats.copy(),
        )
