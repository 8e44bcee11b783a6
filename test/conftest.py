"""
Pytest configuration and fixtures for the conference cleanup tests.
"""
from __future__ import annotations

from collections.abc import AsyncGenerator, Sequence
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio

from conference_cleanup.calls.models import CallLogRecord, TodayConferenceStats
from conference_cleanup.cleanup.config import CleanupConfigProvider
from conference_cleanup.cleanup.events import CleanupEvent, EventBus
from conference_cleanup.shared.database import DatabaseManager
from conference_cleanup.telephony.mock_adapter import MockConferenceAdapter

# Registers app_settings on Base.metadata
import conference_cleanup.settings.store  # noqa: F401

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)

_ENV_VARS = (
    "CONFERENCE_CLEANUP_ENABLED",
    "CONFERENCE_STALE_TIMEOUT",
    "CONFERENCE_MAX_DURATION",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TELEPHONY_TWILIO_ACCOUNT_SID",
    "TELEPHONY_TWILIO_AUTH_TOKEN",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class InMemoryCallLogStore:
    """Call log collaborator backed by a dict keyed by conference name."""

    def __init__(self) -> None:
        self.records: dict[str, list[CallLogRecord]] = {}
        self.updates: list[tuple[int | None, int, dict[str, Any]]] = []
        self.failing_names: set[str] = set()
        self.fail_updates = False
        self.today = TodayConferenceStats()
        self.today_calls: list[datetime] = []
        self._next_id = 1

    def add(
        self,
        conference_name: str,
        ended_at: datetime | None = None,
        company_id: int | None = 1,
        metadata: dict[str, Any] | None = None,
    ) -> CallLogRecord:
        record = CallLogRecord(
            id=self._next_id,
            company_id=company_id,
            ended_at=ended_at,
            metadata={"conferenceName": conference_name, **(metadata or {})},
        )
        self._next_id += 1
        self.records.setdefault(conference_name, []).append(record)
        return record

    async def find_by_conference_name(self, conference_name: str) -> Sequence[CallLogRecord]:
        if conference_name in self.failing_names:
            raise RuntimeError(f"lookup failed for {conference_name}")
        return list(self.records.get(conference_name, []))

    async def update_record(
        self,
        company_id: int | None,
        record_id: int,
        metadata: dict[str, Any],
    ) -> CallLogRecord | None:
        if self.fail_updates:
            raise RuntimeError("update failed")
        self.updates.append((company_id, record_id, metadata))
        return None

    async def today_conference_stats(self, since: datetime) -> TodayConferenceStats:
        self.today_calls.append(since)
        return self.today


class InMemorySettingsStore:
    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self.values = dict(values or {})
        self.fail = False

    async def get_setting(self, key: str) -> Any | None:
        if self.fail:
            raise RuntimeError("settings store unavailable")
        return self.values.get(key)

    async def set_setting(self, key: str, value: Any) -> None:
        if self.fail:
            raise RuntimeError("settings store unavailable")
        self.values[key] = value


class EventRecorder:
    def __init__(self, bus: EventBus) -> None:
        self.events: list[CleanupEvent] = []
        bus.subscribe(None, self.events.append)

    def types(self) -> list[str]:
        return [e.event_type.value for e in self.events]

    def of(self, event_type: str) -> list[CleanupEvent]:
        return [e for e in self.events if e.event_type.value == event_type]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> MockConferenceAdapter:
    return MockConferenceAdapter()


@pytest.fixture
def call_logs() -> InMemoryCallLogStore:
    return InMemoryCallLogStore()


@pytest.fixture
def settings_store() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def config_provider(settings_store: InMemorySettingsStore) -> CleanupConfigProvider:
    return CleanupConfigProvider(settings_store)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events: EventBus) -> EventRecorder:
    return EventRecorder(events)


@pytest_asyncio.fixture
async def db_manager(tmp_path) -> AsyncGenerator[DatabaseManager, None]:
    """File-backed SQLite database with every table created."""
    db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.create_all()
    yield db
    await db.close()
