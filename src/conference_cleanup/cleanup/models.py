from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SweepAction(str, Enum):
    TERMINATED = "terminated"
    SKIPPED = "skipped"
    ERROR = "error"


class ConferenceHealth(str, Enum):
    """Classification of an active conference against its call logs."""

    HEALTHY = "healthy"
    ORPHANED = "orphaned"
    STALE = "stale"

    @property
    def needs_cleanup(self) -> bool:
        return self is not ConferenceHealth.HEALTHY


@dataclass
class CleanupStats:
    """Process-lifetime cleanup counters."""

    last_cleanup: Optional[datetime] = None
    total_cleaned: int = 0
    errors: int = 0

    def copy(self) -> CleanupStats:
        return CleanupStats(self.last_cleanup, self.total_cleaned, self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_cleanup": self.last_cleanup.isoformat() if self.last_cleanup else None,
            "total_cleaned": self.total_cleaned,
            "errors": self.errors,
        }


@dataclass(frozen=True)
class SweepError:
    conference_sid: str
    error: str


@dataclass(frozen=True)
class SweepDetail:
    conference_sid: str
    conference_name: str
    duration: int
    action: SweepAction


@dataclass
class SweepResult:
    """Outcome of one sweep (full or single-conference)."""

    total_conferences: int = 0
    cleaned_conferences: int = 0
    active_conferences: int = 0
    errors: List[SweepError] = field(default_factory=list)
    details: List[SweepDetail] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for detail in data["details"]:
            detail["action"] = detail["action"].value
        return data


@dataclass(frozen=True)
class LongestRunning:
    conference_sid: str
    duration: int
    participant_count: int


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time conference metrics."""

    active_count: int = 0
    total_today: int = 0
    average_duration: int = 0
    longest_running: Optional[LongestRunning] = None
    stale_count: int = 0
    cleanup_stats: CleanupStats = field(default_factory=CleanupStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_count": self.active_count,
            "total_today": self.total_today,
            "average_duration": self.average_duration,
            "longest_running": asdict(self.longest_running) if self.longest_running else None,
            "stale_count": self.stale_count,
            "cleanup_stats": self.cleanup_stats.to_dict(),
        }


@dataclass(frozen=True)
class ScheduledCleanupInfo:
    """Public view of a pending max-duration timer."""

    conference_sid: str
    scheduled_at: datetime
    fires_at: datetime
