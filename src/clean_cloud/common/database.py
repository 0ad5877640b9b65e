"""Async database manager for the Clean control plane.

SQLite (the default and the test backend) gets foreign keys switched on
for every connection so member and tunnel rows cascade with their org.
In-memory SQLite shares one connection across sessions; anything else
gets a pre-ping pool.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from clean_cloud.common.config import CleanSettings, get_settings
from clean_cloud.common.models import Base

# Register tables on Base.metadata for create_all().
import clean_cloud.orgs.models  # noqa: F401
import clean_cloud.tunnels.models  # noqa: F401

logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_memory(url: str) -> bool:
    # sqlite+aiosqlite://  or  sqlite+aiosqlite:///:memory:
    return _is_sqlite(url) and (url.endswith("://") or ":memory:" in url)


def engine_options(url: str) -> dict[str, Any]:
    if _is_memory(url):
        return {"poolclass": StaticPool}
    if _is_sqlite(url):
        return {}
    return {"pool_pre_ping": True}


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """Owns the engine and hands out one session (and transaction) per unit of work."""

    def __init__(self, settings: CleanSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized, call init() first")
        return self.engine

    async def init(self) -> None:
        url = self._settings.db_url
        self.engine = create_async_engine(url, echo=False, **engine_options(url))
        if _is_sqlite(url):
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self._session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on clean exit and rolls back on any error."""
        self._require_engine()
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        async with self._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """True if a trivial query succeeds."""
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
