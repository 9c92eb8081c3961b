"""Engine and session ownership for the storage layer.

One ``DatabaseManager`` is created per process. It lazily builds an async
engine for the configured URL and hands out unit-of-work sessions that commit
on success. Production runs on PostgreSQL through asyncpg; SQLite through
aiosqlite is good enough for local runs and the test suite.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mempool_tracker.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

# Bare dialect names and the async driver each one runs on.
ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def to_async_url(database_url: str) -> str:
    """Rewrite a driverless URL so it names the async driver for its dialect.

    ``postgresql://`` becomes ``postgresql+asyncpg://`` and ``sqlite://``
    becomes ``sqlite+aiosqlite://``. URLs that already name a driver are
    returned unchanged.
    """
    url = make_url(database_url)
    driver = ASYNC_DRIVERS.get(url.drivername)
    if driver is None:
        return database_url
    logger.warning("DATABASE_URL has no async driver, switching %s to %s", url.drivername, driver)
    return url.set(drivername=driver).render_as_string(hide_password=False)


def engine_options(database_url: str, *, pool_size: int, max_overflow: int, echo: bool) -> dict[str, Any]:
    """Keyword arguments for ``create_async_engine``.

    Pool sizing only applies to server backends; SQLite gets the default pool.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"echo": echo}
    return {
        "echo": echo,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
    }


class DatabaseManager:
    """Owns the async engine and its session factory.

    Example:
        ```python
        db = DatabaseManager("postgresql+asyncpg://localhost/mempool_tracker")
        await db.create_schema()
        async with db.session() as session:
            ...
        await db.dispose()
        ```
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
        engine: AsyncEngine | None = None,
    ) -> None:
        """Initialize the manager without connecting.

        Args:
            database_url: Connection URL; a bare dialect gets its async driver.
            pool_size: Persistent connections kept by the pool (server backends only).
            max_overflow: Extra connections allowed under load (server backends only).
            echo: Log every SQL statement.
            engine: Ready-made engine to use instead of building one.
        """
        self.database_url = to_async_url(database_url)
        self._options = engine_options(
            self.database_url, pool_size=pool_size, max_overflow=max_overflow, echo=echo
        )
        self._engine = engine
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """The async engine, created on first use."""
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **self._options)
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session that commits on clean exit and rolls back on error."""
        if self._sessions is None:
            self._sessions = async_sessionmaker(bind=self.engine, expire_on_commit=False)
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        """Create any missing tables from the ORM metadata."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready")

    async def dispose(self) -> None:
        """Close pooled connections; the next use builds a fresh engine."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Database connections closed")
