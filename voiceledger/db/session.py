"""
Database Session Management - Async SQLAlchemy engine and session factory.

A Database is constructed once at the composition root and handed to the
SQL ledger store. There are no module-level engines.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from voiceledger.config import Settings
from voiceledger.db.models import Base


def _connect_args(settings: Settings) -> dict[str, Any]:
    """Server-side statement timeout and client-side command timeout for asyncpg."""
    if not settings.database_url.startswith("postgresql+asyncpg"):
        return {}
    return {
        "command_timeout": settings.database_command_timeout,
        "server_settings": {"statement_timeout": str(settings.database_statement_timeout_ms)},
    }


class Database:
    """Owns the async engine and the session factory."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Create a bounded connection pool from settings."""
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,
            connect_args=_connect_args(settings),
            echo=settings.log_level == "DEBUG",
        )
        return cls(engine)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Get an async database session.

        Usage:
            async with database.session() as session:
                await session.execute(...)
                await session.commit()
        """
        async with self._session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    async def create_schema(self) -> None:
        """Create all tables directly (tests and local runs; production uses Alembic)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close the engine (for graceful shutdown)."""
        await self.engine.dispose()
