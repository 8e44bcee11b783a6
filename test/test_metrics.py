"""Tests for the cached conference metrics aggregator."""

from datetime import datetime, timedelta, timezone

import pytest

from conference_cleanup.calls.models import TodayConferenceStats
from conference_cleanup.cleanup.metrics import MetricsAggregator, longest_running, utc_midnight
from conference_cleanup.cleanup.models import CleanupStats, MetricsSnapshot
from conference_cleanup.cleanup.sweeper import StaleConferenceSweeper


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def stats() -> CleanupStats:
    return CleanupStats()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def aggregator(provider, call_logs, config_provider, events, stats, clock, monotonic) -> MetricsAggregator:
    sweeper = StaleConferenceSweeper(provider, call_logs, config_provider, events, stats, clock=clock)
    return MetricsAggregator(
        provider,
        call_logs,
        sweeper,
        config_provider,
        stats,
        clock=clock,
        monotonic=monotonic,
    )


class TestMetricsAggregator:
    @pytest.mark.asyncio
    async def test_empty_snapshot(self, aggregator) -> None:
        snapshot = await aggregator.get_metrics()

        data = snapshot.to_dict()
        assert data["active_count"] == 0
        assert data["total_today"] == 0
        assert data["average_duration"] == 0
        assert data["longest_running"] is None
        assert data["stale_count"] == 0

    @pytest.mark.asyncio
    async def test_computes_snapshot(self, aggregator, provider, call_logs, stats, clock) -> None:
        provider.add_conference("CF1", "conf-1", date_created=clock.now - timedelta(minutes=30), participant_count=3)
        provider.add_conference("CF2", "conf-2", date_created=clock.now - timedelta(hours=2), participant_count=2)
        provider.add_conference("CF3", "conf-3", date_created=clock.now - timedelta(minutes=1))
        call_logs.add("conf-1", ended_at=None)
        call_logs.add("conf-2", ended_at=clock.now - timedelta(hours=1))
        call_logs.today = TodayConferenceStats(total_today=4, average_duration=95)
        stats.total_cleaned = 5

        snapshot = await aggregator.get_metrics()

        assert snapshot.active_count == 3
        assert snapshot.total_today == 4
        assert snapshot.average_duration == 95
        assert snapshot.longest_running.conference_sid == "CF2"
        assert snapshot.longest_running.duration == 7200
        assert snapshot.longest_running.participant_count == 2
        # CF2 stale, CF3 orphaned
        assert snapshot.stale_count == 2
        assert snapshot.cleanup_stats.total_cleaned == 5
        assert call_logs.today_calls == [datetime(2026, 10, 19, tzinfo=timezone.utc)]
        assert provider.terminate_attempts == []

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, aggregator, provider, monotonic) -> None:
        provider.add_conference("CF1")

        first = await aggregator.get_metrics()
        provider.add_conference("CF2")
        monotonic.value += 59
        second = await aggregator.get_metrics()

        assert second is first
        assert second.to_dict() == first.to_dict()
        assert provider.list_calls == 1

    @pytest.mark.asyncio
    async def test_recomputed_after_ttl(self, aggregator, provider, monotonic) -> None:
        await aggregator.get_metrics()
        provider.add_conference("CF1")
        monotonic.value += 60

        snapshot = await aggregator.get_metrics()

        assert snapshot.active_count == 1
        assert provider.list_calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self, aggregator, provider) -> None:
        await aggregator.get_metrics()
        provider.add_conference("CF1")

        aggregator.invalidate()
        snapshot = await aggregator.get_metrics()

        assert snapshot.active_count == 1
        assert provider.list_calls == 2

    @pytest.mark.asyncio
    async def test_failure_returns_default_snapshot(self, aggregator, provider, stats) -> None:
        provider.configure_list_failure("Twilio unavailable")
        stats.errors = 3

        snapshot = await aggregator.get_metrics()

        assert snapshot == MetricsSnapshot(cleanup_stats=CleanupStats(errors=3))

        # Failures are not cached
        provider.configure_list_failure(None)
        provider.add_conference("CF1")
        assert (await aggregator.get_metrics()).active_count == 1

    @pytest.mark.asyncio
    async def test_lookup_failure_counts_as_stale(self, aggregator, provider, call_logs) -> None:
        provider.add_conference("CF1", "conf-1")
        call_logs.failing_names.add("conf-1")

        snapshot = await aggregator.get_metrics()

        assert snapshot.active_count == 1
        assert snapshot.stale_count == 1
        assert provider.terminate_attempts == []


class TestHelpers:
    def test_utc_midnight(self) -> None:
        now = datetime(2026, 10, 19, 15, 42, 7, 123, tzinfo=timezone.utc)
        assert utc_midnight(now) == datetime(2026, 10, 19, tzinfo=timezone.utc)

    def test_longest_running_empty(self, clock) -> None:
        assert longest_running([], clock.now) is None
