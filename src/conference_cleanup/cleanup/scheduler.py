"""
Conference cleanup scheduler facade.

Owns the lifecycle (stopped -> running -> stopped) of the two periodic jobs
(stale sweep and metrics aggregation) and of the per-conference max-duration
timers, and exposes the admin operations used by the HTTP layer.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from conference_cleanup.calls.models import CallLogRecord
from conference_cleanup.calls.repository import CallLogStore
from conference_cleanup.cleanup.config import (
    DEFAULT_MAX_CONFERENCE_DURATION_HOURS,
    CleanupConfig,
    CleanupConfigProvider,
)
from conference_cleanup.cleanup.events import CleanupEventType, EventBus
from conference_cleanup.cleanup.metrics import (
    DEFAULT_METRICS_CACHE_TTL_SECONDS,
    MetricsAggregator,
    utc_midnight,
)
from conference_cleanup.cleanup.models import (
    CleanupStats,
    MetricsSnapshot,
    ScheduledCleanupInfo,
    SweepResult,
    utcnow,
)
from conference_cleanup.cleanup.sweeper import StaleConferenceSweeper
from conference_cleanup.cleanup.timeouts import ConferenceTimeoutScheduler
from conference_cleanup.shared.logging import get_logger
from conference_cleanup.telephony.interface import Conference, ConferenceProvider

logger = get_logger(__name__)

STALE_CLEANUP_JOB_ID = "conference_stale_cleanup"
METRICS_JOB_ID = "conference_metrics"


def cadence_trigger(minutes: int, now: datetime | None = None) -> BaseTrigger:
    """UTC-anchored trigger firing every `minutes` minutes.

    Cron steps are used only where they divide the hour or the day evenly;
    any other cadence is an interval counted from UTC midnight.
    """
    if minutes < 60 and 60 % minutes == 0:
        return CronTrigger(minute=f"*/{minutes}", timezone="UTC")
    if minutes % 60 == 0 and 24 % (minutes // 60) == 0:
        hours = minutes // 60
        if hours == 1:
            return CronTrigger(minute=0, timezone="UTC")
        if hours == 24:
            return CronTrigger(hour=0, minute=0, timezone="UTC")
        return CronTrigger(hour=f"*/{hours}", minute=0, timezone="UTC")
    return IntervalTrigger(
        minutes=minutes,
        start_date=utc_midnight(now or utcnow()),
        timezone="UTC",
    )


def _default_scheduler_factory() -> AsyncIOScheduler:
    return AsyncIOScheduler(
        timezone="UTC",
        job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
    )


class ConferenceCleanupScheduler:
    """Background cleanup of stale and over-long telephony conferences.

    All collaborators are injected so tests can substitute fakes.
    """

    def __init__(
        self,
        provider: ConferenceProvider,
        call_logs: CallLogStore,
        config_provider: CleanupConfigProvider,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utcnow,
        metrics_cache_ttl_seconds: float = DEFAULT_METRICS_CACHE_TTL_SECONDS,
        scheduler_factory: Callable[[], AsyncIOScheduler] = _default_scheduler_factory,
    ) -> None:
        self._provider = provider
        self._config_provider = config_provider
        self._clock = clock
        self.events = events or EventBus()
        self._stats = CleanupStats()
        self._scheduler_factory = scheduler_factory
        self._scheduler: AsyncIOScheduler | None = None
        self._running = False

        self._timeouts = ConferenceTimeoutScheduler(provider, self.events, clock=clock)
        self._sweeper = StaleConferenceSweeper(
            provider,
            call_logs,
            config_provider,
            self.events,
            self._stats,
            clock=clock,
        )
        self._metrics = MetricsAggregator(
            provider,
            call_logs,
            self._sweeper,
            config_provider,
            self._stats,
            cache_ttl_seconds=metrics_cache_ttl_seconds,
            clock=clock,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    # ---------------------------------------------------------------- lifecycle

    async def start(self) -> None:
        """Arm the periodic jobs unless already running or disabled."""
        if self._running:
            logger.info("Conference cleanup scheduler already running")
            return

        config = await self._config_provider.get_config()
        if not config.enabled:
            logger.info("Conference cleanup is disabled in config")
            return

        scheduler = self._scheduler_factory()
        try:
            scheduler.add_job(
                self._run_stale_cleanup_job,
                cadence_trigger(config.cleanup_interval_minutes, self._clock()),
                id=STALE_CLEANUP_JOB_ID,
                name="Conference stale cleanup",
                replace_existing=True,
            )
            scheduler.add_job(
                self._run_metrics_job,
                cadence_trigger(config.metrics_interval_minutes, self._clock()),
                id=METRICS_JOB_ID,
                name="Conference metrics aggregation",
                replace_existing=True,
            )
            scheduler.start()
        except Exception:
            logger.exception("Failed to start conference cleanup scheduler")
            raise

        self._scheduler = scheduler
        self._running = True
        logger.info(
            "Conference cleanup scheduler started",
            extra={
                "cleanup_interval_minutes": config.cleanup_interval_minutes,
                "metrics_interval_minutes": config.metrics_interval_minutes,
                "stale_timeout_minutes": config.stale_timeout_minutes,
            },
        )
        self.events.emit(CleanupEventType.STARTED)

    def stop(self) -> None:
        """Cancel periodic jobs and every pending conference timer. Idempotent.

        Timers armed while the periodic jobs were never started are cancelled too.
        """
        cancelled = self._timeouts.cancel_all()
        if not self._running:
            logger.info(
                "Conference cleanup scheduler not running",
                extra={"cancelled_timers": cancelled},
            )
            return

        self._running = False
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._metrics.invalidate()

        logger.info(
            "Conference cleanup scheduler stopped",
            extra={"cancelled_timers": cancelled},
        )
        self.events.emit(CleanupEventType.STOPPED)

    async def reload(self) -> None:
        logger.info("Reloading conference cleanup scheduler")
        self.stop()
        await self.start()

    async def get_config(self) -> CleanupConfig:
        return await self._config_provider.get_config()

    async def update_config(self, config: CleanupConfig) -> CleanupConfig:
        """Store a new cleanup config and reload so the cadences take effect."""
        await self._config_provider.save_config(config)
        await self.reload()
        return await self._config_provider.get_config()

    async def aclose(self) -> None:
        """Stop, let fired timers finish and release the telephony client."""
        self.stop()
        # Timers can be armed by the webhook while the periodic jobs are disabled
        self._timeouts.cancel_all()
        await self._timeouts.wait_for_inflight()
        await self._provider.close()

    # ------------------------------------------------------------ periodic jobs

    async def _run_stale_cleanup_job(self) -> None:
        try:
            await self._sweeper.run()
        except Exception as e:
            logger.exception("Scheduled stale cleanup error")
            self.events.emit(CleanupEventType.CLEANUP_FAILED, error=str(e))

    async def _run_metrics_job(self) -> None:
        try:
            snapshot = await self._metrics.get_metrics()
        except Exception:
            logger.exception("Metrics aggregation error")
            return
        self.events.emit(CleanupEventType.METRICS_AGGREGATED, snapshot=snapshot.to_dict())

    # ---------------------------------------------------------- admin operations

    async def run_stale_cleanup(self, conference_sid: str | None = None) -> SweepResult:
        """Run a sweep now, or terminate one conference when `conference_sid` is given."""
        try:
            return await self._sweeper.run(conference_sid)
        finally:
            self._metrics.invalidate()

    async def get_active_conferences(self) -> list[Conference]:
        if not self._provider.is_configured:
            return []
        return await self._provider.list_active_conferences()

    async def get_metrics(self) -> MetricsSnapshot:
        return await self._metrics.get_metrics()

    def get_cleanup_stats(self) -> CleanupStats:
        return self._stats.copy()

    def reset_cleanup_stats(self) -> CleanupStats:
        """Zero the cumulative counters and return the values they held."""
        previous = self._stats.copy()
        self._stats.last_cleanup = None
        self._stats.total_cleaned = 0
        self._stats.errors = 0
        self._metrics.invalidate()
        logger.info("Conference cleanup stats reset", extra=previous.to_dict())
        return previous

    def schedule_conference_cleanup(
        self, conference_sid: str, timeout_seconds: float
    ) -> ScheduledCleanupInfo:
        return self._timeouts.schedule(conference_sid, timeout_seconds)

    def cancel_conference_cleanup(self, conference_sid: str) -> bool:
        return self._timeouts.cancel(conference_sid)

    def get_scheduled_cleanups(self) -> list[ScheduledCleanupInfo]:
        return self._timeouts.list_scheduled()

    async def get_max_conference_duration_hours(self) -> float:
        try:
            config = await self._config_provider.get_config()
        except Exception:
            logger.exception("Failed to resolve max conference duration; using default")
            return DEFAULT_MAX_CONFERENCE_DURATION_HOURS
        return config.max_conference_duration_hours

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self._running,
            "scheduled_cleanups_count": len(self._timeouts),
        }

    async def cleanup_conference_data(self, call_logs: Iterable[CallLogRecord]) -> list[str]:
        """Terminate the conferences referenced by call logs about to be deleted.

        Called by the host application from its call log deletion path.

        Returns:
            The distinct conference sids a termination was attempted for.
        """
        conference_sids: list[str] = []
        for record in call_logs:
            sid = record.conference_sid
            if sid and sid not in conference_sids:
                conference_sids.append(sid)

        for sid in conference_sids:
            try:
                await self.run_stale_cleanup(sid)
            except Exception:
                logger.exception(
                    "Conference cleanup before call log deletion failed",
                    extra={"conference_sid": sid},
                )
        return conference_sids
