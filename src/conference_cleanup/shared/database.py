"""
Async SQLAlchemy access to the call-log and settings tables.

The cleanup service only reads call logs, merges metadata stamps into them and
keeps one JSON settings row per key; every unit of work is a short
commit-or-rollback session.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from conference_cleanup.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for the tables this service reads and stamps."""


def _engine_options(database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": get_settings().debug, "pool_pre_ping": True}
    # SQLite drivers reject pool sizing arguments
    if not database_url.startswith("sqlite"):
        options.update(pool_size=5, max_overflow=10)
    return options


class DatabaseManager:
    """Lazily built engine plus session factory for one database URL."""

    def __init__(self, database_url: str | None = None) -> None:
        self.database_url = database_url or get_settings().database_url
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **_engine_options(self.database_url))
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            self._sessions = async_sessionmaker(
                bind=self.engine,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._sessions

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create every registered table that does not exist yet.

        Production schemas are owned by the main application's migrations;
        this is used for local SQLite databases and tests.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessions = None


_db_manager: DatabaseManager | None = None


def get_database_manager() -> DatabaseManager:
    """Process-wide manager bound to the configured DATABASE_URL."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


__all__ = [
    "Base",
    "DatabaseManager",
    "get_database_manager",
]
