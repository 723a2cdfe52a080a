"""
Persistence gateway.

A ``Database`` owns the async engine (and therefore the connection pool)
and the session factory.  It is constructed once by the application
factory and handed to whoever needs it -- the FastAPI dependencies, the
Socket.IO gateway, tests -- instead of living in a module global.

Units of work are wrapped with :func:`atomic`, which commits on success and
rolls back on any exception before re-raising it.  Sessions opened through
:meth:`Database.session` are always closed, which returns their connection
to the pool.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from bidhub.core.config import Settings

logger = logging.getLogger(__name__)


class Database:
    """Pooled async database handle."""

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            echo=settings.sql_echo,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; roll back anything left uncommitted and release
        the connection no matter how the block exits."""
        session = self.session_factory()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_all(self) -> None:
        """Create every table known to ``Base.metadata`` (dev/test helper)."""
        from bidhub.models import Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        from bidhub.models import Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block as one transaction: COMMIT on success, ROLLBACK on error.

    Usage::

        async with atomic(db):
            bid = await _lock_bid(db, bid_id)
            ...
    """
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
