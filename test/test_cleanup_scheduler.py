"""
Tests for the ConferenceCleanupScheduler facade.

Lifecycle (start/stop/reload), periodic job bodies and the admin operations.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from conference_cleanup.cleanup.config import CONFIG_SETTING_KEY
from conference_cleanup.cleanup.scheduler import (
    METRICS_JOB_ID,
    STALE_CLEANUP_JOB_ID,
    ConferenceCleanupScheduler,
    cadence_trigger,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class SchedulerFactory:
    """Builds real AsyncIOSchedulers and keeps them for inspection."""

    def __init__(self) -> None:
        self.created: list[AsyncIOScheduler] = []

    def __call__(self) -> AsyncIOScheduler:
        scheduler = AsyncIOScheduler(timezone="UTC")
        self.created.append(scheduler)
        return scheduler


@pytest.fixture
def scheduler_factory() -> SchedulerFactory:
    return SchedulerFactory()


@pytest_asyncio.fixture
async def cleanup_scheduler(
    provider,
    call_logs,
    config_provider,
    events,
    clock,
    scheduler_factory,
) -> AsyncGenerator[ConferenceCleanupScheduler, None]:
    scheduler = ConferenceCleanupScheduler(
        provider=provider,
        call_logs=call_logs,
        config_provider=config_provider,
        events=events,
        clock=clock,
        scheduler_factory=scheduler_factory,
    )
    yield scheduler
    await scheduler.aclose()


def _trigger_str(aps: AsyncIOScheduler, job_id: str) -> str:
    return str(aps.get_job(job_id).trigger)


class TestCadenceTrigger:
    def test_sub_hour_cadence(self) -> None:
        trigger = cadence_trigger(15)
        assert isinstance(trigger, CronTrigger)
        assert "minute='*/15'" in str(trigger)

    def test_hourly_cadence(self) -> None:
        assert "minute='0'" in str(cadence_trigger(60))

    def test_multi_hour_cadence(self) -> None:
        text = str(cadence_trigger(180))
        assert "hour='*/3'" in text
        assert "minute='0'" in text

    def test_daily_cadence(self) -> None:
        text = str(cadence_trigger(1440))
        assert "hour='0'" in text

    def test_uneven_cadence_uses_interval(self) -> None:
        trigger = cadence_trigger(90, NOW)
        assert isinstance(trigger, IntervalTrigger)
        assert trigger.interval.total_seconds() == 5400

    @pytest.mark.parametrize("minutes", [45, 300])
    def test_non_dividing_cadence_fires_evenly(self, minutes: int) -> None:
        now = NOW + timedelta(minutes=10)
        trigger = cadence_trigger(minutes, now)
        assert isinstance(trigger, IntervalTrigger)

        fires = [trigger.get_next_fire_time(None, now)]
        for _ in range(4):
            fires.append(trigger.get_next_fire_time(fires[-1], fires[-1]))

        gaps = {(b - a).total_seconds() for a, b in zip(fires, fires[1:])}
        assert gaps == {minutes * 60.0}

    def test_interval_cadence_is_anchored_to_utc_midnight(self) -> None:
        trigger = cadence_trigger(45, NOW + timedelta(minutes=10))

        first = trigger.get_next_fire_time(None, NOW + timedelta(minutes=10))

        # 17 * 45 minutes after midnight
        assert (first.hour, first.minute) == (12, 45)

    def test_cadences_dividing_the_hour_or_day_stay_cron(self) -> None:
        for minutes in (1, 5, 20, 30, 120, 360, 720):
            assert isinstance(cadence_trigger(minutes, NOW), CronTrigger)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_arms_both_jobs(self, cleanup_scheduler, scheduler_factory, recorder) -> None:
        await cleanup_scheduler.start()

        assert cleanup_scheduler.is_running is True
        aps = scheduler_factory.created[0]
        assert aps.running is True
        assert {job.id for job in aps.get_jobs()} == {STALE_CLEANUP_JOB_ID, METRICS_JOB_ID}
        assert "minute='*/15'" in _trigger_str(aps, STALE_CLEANUP_JOB_ID)
        assert "minute='0'" in _trigger_str(aps, METRICS_JOB_ID)
        assert recorder.types() == ["started"]

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, cleanup_scheduler, scheduler_factory, recorder) -> None:
        await cleanup_scheduler.start()
        await cleanup_scheduler.start()

        assert len(scheduler_factory.created) == 1
        assert recorder.types() == ["started"]

    @pytest.mark.asyncio
    async def test_start_disabled_is_noop(
        self, cleanup_scheduler, scheduler_factory, settings_store, recorder
    ) -> None:
        settings_store.values[CONFIG_SETTING_KEY] = {"enabled": False}

        await cleanup_scheduler.start()

        assert cleanup_scheduler.is_running is False
        assert scheduler_factory.created == []
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_stop_cancels_jobs_and_timers(
        self, cleanup_scheduler, scheduler_factory, provider, recorder
    ) -> None:
        await cleanup_scheduler.start()
        cleanup_scheduler.schedule_conference_cleanup("CF1", 0)
        cleanup_scheduler.schedule_conference_cleanup("CF2", 3600)

        cleanup_scheduler.stop()
        await asyncio.sleep(0.01)

        assert cleanup_scheduler.is_running is False
        assert scheduler_factory.created[0].running is False
        assert provider.terminate_attempts == []
        assert cleanup_scheduler.get_scheduled_cleanups() == []
        assert recorder.types() == ["started", "stopped"]

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, cleanup_scheduler, recorder) -> None:
        cleanup_scheduler.stop()
        await cleanup_scheduler.start()
        cleanup_scheduler.stop()
        cleanup_scheduler.stop()

        assert recorder.types() == ["started", "stopped"]

    @pytest.mark.asyncio
    async def test_stop_clears_metrics_cache(self, cleanup_scheduler, provider) -> None:
        await cleanup_scheduler.start()
        await cleanup_scheduler.get_metrics()

        cleanup_scheduler.stop()
        await cleanup_scheduler.get_metrics()

        assert provider.list_calls == 2

    @pytest.mark.asyncio
    async def test_reload_picks_up_new_cadence(
        self, cleanup_scheduler, scheduler_factory, settings_store, recorder
    ) -> None:
        await cleanup_scheduler.start()
        settings_store.values[CONFIG_SETTING_KEY] = {"cleanupIntervalMinutes": 5}

        await cleanup_scheduler.reload()
        # AsyncIOScheduler finishes its shutdown on the next loop iteration
        await asyncio.sleep(0.01)

        assert len(scheduler_factory.created) == 2
        assert scheduler_factory.created[0].running is False
        assert cleanup_scheduler.is_running is True
        assert "minute='*/5'" in _trigger_str(scheduler_factory.created[1], STALE_CLEANUP_JOB_ID)
        assert recorder.types() == ["started", "stopped", "started"]

    @pytest.mark.asyncio
    async def test_reload_into_disabled_stays_stopped(
        self, cleanup_scheduler, settings_store
    ) -> None:
        await cleanup_scheduler.start()
        settings_store.values[CONFIG_SETTING_KEY] = {"enabled": False}

        await cleanup_scheduler.reload()

        assert cleanup_scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_stop_cancels_timers_when_never_started(
        self, cleanup_scheduler, settings_store, provider, recorder
    ) -> None:
        settings_store.values[CONFIG_SETTING_KEY] = {"enabled": False}
        await cleanup_scheduler.start()
        cleanup_scheduler.schedule_conference_cleanup("CF1", 0)

        cleanup_scheduler.stop()
        await asyncio.sleep(0.01)

        assert provider.terminate_attempts == []
        assert cleanup_scheduler.get_scheduled_cleanups() == []
        assert recorder.types() == []

    @pytest.mark.asyncio
    async def test_aclose_cancels_timers_when_not_running(self, cleanup_scheduler, provider) -> None:
        cleanup_scheduler.schedule_conference_cleanup("CF1", 0)

        await cleanup_scheduler.aclose()
        await asyncio.sleep(0.01)

        assert provider.terminate_attempts == []


class TestPeriodicJobs:
    @pytest.mark.asyncio
    async def test_stale_cleanup_job_runs_sweep(self, cleanup_scheduler, provider, recorder) -> None:
        provider.add_conference("CF1")

        await cleanup_scheduler._run_stale_cleanup_job()

        assert provider.terminated == ["CF1"]
        assert "cleanup-completed" in recorder.types()

    @pytest.mark.asyncio
    async def test_metrics_job_emits_snapshot(self, cleanup_scheduler, provider, recorder) -> None:
        provider.add_conference("CF1")

        await cleanup_scheduler._run_metrics_job()

        aggregated = recorder.of("metrics-aggregated")
        assert len(aggregated) == 1
        assert aggregated[0].payload["snapshot"]["active_count"] == 1


class TestAdminOperations:
    @pytest.mark.asyncio
    async def test_manual_cleanup_invalidates_metrics(self, cleanup_scheduler, provider) -> None:
        provider.add_conference("CF1")
        before = await cleanup_scheduler.get_metrics()

        result = await cleanup_scheduler.run_stale_cleanup()
        after = await cleanup_scheduler.get_metrics()

        assert before.active_count == 1
        assert result.cleaned_conferences == 1
        assert after.active_count == 0
        assert after.cleanup_stats.total_cleaned == 1

    @pytest.mark.asyncio
    async def test_get_active_conferences(self, cleanup_scheduler, provider) -> None:
        provider.add_conference("CF1")

        conferences = await cleanup_scheduler.get_active_conferences()

        assert [c.sid for c in conferences] == ["CF1"]

    @pytest.mark.asyncio
    async def test_cleanup_stats_copy_and_reset(self, cleanup_scheduler, provider) -> None:
        provider.add_conference("CF1")
        await cleanup_scheduler.run_stale_cleanup()

        stats = cleanup_scheduler.get_cleanup_stats()
        stats.total_cleaned = 99
        assert cleanup_scheduler.get_cleanup_stats().total_cleaned == 1

        previous = cleanup_scheduler.reset_cleanup_stats()

        assert previous.total_cleaned == 1
        current = cleanup_scheduler.get_cleanup_stats()
        assert current.total_cleaned == 0
        assert current.last_cleanup is None

    @pytest.mark.asyncio
    async def test_schedule_and_cancel(self, cleanup_scheduler) -> None:
        info = cleanup_scheduler.schedule_conference_cleanup("CF1", 3600)

        assert info.conference_sid == "CF1"
        assert cleanup_scheduler.get_status() == {"is_running": False, "scheduled_cleanups_count": 1}
        assert cleanup_scheduler.cancel_conference_cleanup("CF1") is True
        assert cleanup_scheduler.get_status()["scheduled_cleanups_count"] == 0

    @pytest.mark.asyncio
    async def test_max_duration_hours(self, cleanup_scheduler, settings_store) -> None:
        assert await cleanup_scheduler.get_max_conference_duration_hours() == 4

        settings_store.values[CONFIG_SETTING_KEY] = {"maxConferenceDurationHours": 2}

        assert await cleanup_scheduler.get_max_conference_duration_hours() == 2

    @pytest.mark.asyncio
    async def test_cleanup_conference_data(self, cleanup_scheduler, provider, call_logs) -> None:
        provider.add_conference("CF1")
        provider.add_conference("CF2")
        provider.configure_failure("CF1", "gone")
        records = [
            call_logs.add("conf-1", metadata={"conferenceSid": "CF1"}),
            call_logs.add("conf-1", metadata={"conferenceSid": "CF1"}),
            call_logs.add("conf-2", metadata={"conferenceSid": "CF2"}),
            call_logs.add("conf-3"),
        ]

        attempted = await cleanup_scheduler.cleanup_conference_data(records)

        assert attempted == ["CF1", "CF2"]
        assert provider.terminate_attempts == ["CF1", "CF2"]
        assert provider.terminated == ["CF2"]
