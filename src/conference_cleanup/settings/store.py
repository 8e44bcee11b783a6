"""
Key-value application settings.

Admin tooling writes JSON values under fixed keys; services read them on
demand so edits take effect without a restart.
"""

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import JSON, DateTime, String, func, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from conference_cleanup.shared.database import Base, DatabaseManager


class AppSetting(Base):
    """Application-wide setting row."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class SettingsStore(Protocol):
    """Protocol for the settings store collaborator."""

    async def get_setting(self, key: str) -> Any | None:
        """Return the stored value for `key`, or None when absent."""
        ...


class SqlSettingsStore:
    """SQLAlchemy-backed settings store."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_setting(self, key: str) -> Any | None:
        async with self._db.session() as session:
            row = (
                await session.execute(select(AppSetting).where(AppSetting.key == key))
            ).scalar_one_or_none()
            return row.value if row is not None else None

    async def set_setting(self, key: str, value: Any) -> None:
        async with self._db.session() as session:
            row = await session.get(AppSetting, key)
            if row is None:
                session.add(AppSetting(key=key, value=value))
            else:
                row.value = value
