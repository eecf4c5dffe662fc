"""
Database session management for async SQLAlchemy operations.

A Database owns one engine and its session factory. It is built explicitly
(per application lifespan, per CLI run, per test) and passed to whatever
needs it, instead of living in a module-level global.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

from ..config.settings import settings

logger = logging.getLogger(__name__)


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine with connection pooling settings."""
    return create_async_engine(
        database_url or settings.database_url,
        echo=False,
        pool_size=10,
        max_overflow=10,
        pool_pre_ping=True,   # Detect stale connections before use
        pool_recycle=3600,    # Recycle connections every hour
        pool_timeout=30,      # Wait max 30s for connection from pool
    )


class Database:
    """Engine + session factory with explicit open/close."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, database_url: Optional[str] = None) -> "Database":
        return cls(create_engine(database_url))

    async def init(self):
        """Initialize database tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def close(self):
        """Close database connections."""
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session; the caller decides when to commit. Rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception as e:
                logger.error(f"Database session error, rolling back: {e}")
                await session.rollback()
                raise

    def get_pool_status(self) -> dict:
        """Connection pool counters, for the health endpoint."""
        pool = self.engine.pool
        return {
            "pool_size": pool.size(),
            "checked_in": pool.checkedin(),
            "checked_out": pool.checkedout(),
            "overflow": pool.overflow(),
        }
