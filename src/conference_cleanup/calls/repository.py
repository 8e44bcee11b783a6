"""
Repository for call log lookups used by the conference cleanup.

Call logs are correlated to provider conferences through the
``conferenceName`` key embedded in their JSON metadata.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import ColumnElement, func, select

from conference_cleanup.calls.models import (
    CONFERENCE_NAME_KEY,
    CallLog,
    CallLogRecord,
    TodayConferenceStats,
)
from conference_cleanup.shared.database import DatabaseManager
from conference_cleanup.shared.logging import get_logger

logger = get_logger(__name__)


class CallLogStore(Protocol):
    """Protocol for the call log collaborator."""

    async def find_by_conference_name(self, conference_name: str) -> Sequence[CallLogRecord]:
        """Get every call log whose metadata names this conference."""
        ...

    async def update_record(
        self,
        company_id: int | None,
        record_id: int,
        metadata: dict[str, Any],
    ) -> CallLogRecord | None:
        """Merge partial metadata into a call log."""
        ...

    async def today_conference_stats(self, since: datetime) -> TodayConferenceStats:
        """Count and average duration of completed conference calls since `since`."""
        ...


class CallLogRepository:
    """SQLAlchemy-backed call log collaborator."""

    def __init__(self, db: DatabaseManager) -> None:
        """Initialize repository.

        Args:
            db: Database manager providing short-lived sessions.
        """
        self._db = db

    @staticmethod
    def _conference_name_expr() -> ColumnElement:
        return CallLog.call_metadata[CONFERENCE_NAME_KEY].as_string()

    def _duration_seconds_expr(self) -> ColumnElement:
        if self._db.engine.dialect.name == "postgresql":
            return func.extract("epoch", CallLog.ended_at - CallLog.started_at)
        return (func.julianday(CallLog.ended_at) - func.julianday(CallLog.started_at)) * 86400.0

    async def find_by_conference_name(self, conference_name: str) -> list[CallLogRecord]:
        """Get call logs by conference name (stored in metadata).

        Args:
            conference_name: Provider friendly name of the conference.

        Returns:
            Detached snapshots of the matching call logs.
        """
        stmt = (
            select(CallLog)
            .where(self._conference_name_expr() == conference_name)
            .order_by(CallLog.id.asc())
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [CallLogRecord.from_orm(row) for row in result.scalars().all()]

    async def update_record(
        self,
        company_id: int | None,
        record_id: int,
        metadata: dict[str, Any],
    ) -> CallLogRecord | None:
        """Merge partial metadata into a call log.

        Args:
            company_id: Owning tenant; None matches tenant-less rows.
            record_id: Call log primary key.
            metadata: Keys to set on the existing metadata map.

        Returns:
            The updated snapshot, or None if no row matched.
        """
        stmt = select(CallLog).where(CallLog.id == record_id)
        if company_id is None:
            stmt = stmt.where(CallLog.company_id.is_(None))
        else:
            stmt = stmt.where(CallLog.company_id == company_id)

        async with self._db.session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                logger.warning(
                    "Call log not found for metadata update",
                    extra={"company_id": company_id, "call_log_id": record_id},
                )
                return None

            # Reassign so the JSON column is flagged dirty
            row.call_metadata = {**(row.call_metadata or {}), **metadata}
            await session.flush()
            return CallLogRecord.from_orm(row)

    async def today_conference_stats(self, since: datetime) -> TodayConferenceStats:
        duration = self._duration_seconds_expr()
        stmt = select(
            func.count(CallLog.id),
            func.coalesce(func.sum(duration), 0.0),
        ).where(
            CallLog.started_at >= since,
            CallLog.ended_at.is_not(None),
            self._conference_name_expr().is_not(None),
        )
        async with self._db.session() as session:
            count, total_duration = (await session.execute(stmt)).one()

        count = int(count or 0)
        total_duration = float(total_duration or 0)
        average = round(total_duration / count) if count > 0 else 0
        return TodayConferenceStats(total_today=count, average_duration=average)
