"""
Database infrastructure for SprintSync API.

Async SQLAlchemy engine and session management. PostgreSQL (psycopg) in
production, SQLite (aiosqlite) for local development and tests.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import sqlalchemy
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
import structlog

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def make_async_url(url: str) -> str:
    """Convert a sync database URL to its async driver equivalent."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if url.startswith(("postgresql+psycopg://", "sqlite+aiosqlite://")):
        return url
    raise ValueError(f"Unsupported database URL scheme: {url}")


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, url: str, echo: bool = False):
        self.url = make_async_url(url)
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def connect(self) -> None:
        """Initialize the async engine and session factory."""
        if self._engine is not None:
            return

        options = {"echo": self.echo}
        if self.url.startswith("postgresql"):
            options.update(pool_size=10, max_overflow=5, pool_timeout=30, pool_recycle=3600)

        self._engine = create_async_engine(self.url, **options)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("database_initialized", url=self.url.split("@")[-1])

    async def close(self) -> None:
        """Dispose the engine and release connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("database_closed")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call connect() first.")
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional async session scope."""
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call connect() first.")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create all tables defined in models (for development/testing)."""
        # Register ORM models on Base.metadata
        import sprintsync.db.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_created")

    async def ping(self) -> bool:
        """Check that the database answers a trivial query."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(sqlalchemy.text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("database_ping_failed", error=str(e))
            return False
