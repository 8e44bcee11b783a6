"""
SQLAlchemy model for call logs.

Only the columns the conference cleanup reads or stamps are mapped; the table
itself is owned by the CRM application.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from conference_cleanup.shared.database import Base

CONFERENCE_NAME_KEY = "conferenceName"
CONFERENCE_SID_KEY = "conferenceSid"


class CallLog(Base):
    """Call log row (one per business call)."""

    __tablename__ = "calls"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    call_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
        default=dict,
    )

    def __repr__(self) -> str:
        return f"<CallLog(id={self.id}, company_id={self.company_id}, status={self.status})>"


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class CallLogRecord:
    """Detached snapshot of a call log handed to the cleanup core."""

    id: int
    company_id: int | None
    ended_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def conference_name(self) -> str | None:
        return self.metadata.get(CONFERENCE_NAME_KEY)

    @property
    def conference_sid(self) -> str | None:
        sid = self.metadata.get(CONFERENCE_SID_KEY)
        return sid if isinstance(sid, str) and sid else None

    @classmethod
    def from_orm(cls, row: CallLog) -> "CallLogRecord":
        return cls(
            id=row.id,
            company_id=row.company_id,
            ended_at=_as_utc(row.ended_at),
            metadata=dict(row.call_metadata or {}),
        )


@dataclass(frozen=True)
class TodayConferenceStats:
    """Completed conference-linked calls since UTC midnight."""

    total_today: int = 0
    average_duration: int = 0
