"""Database configuration and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from minrisk.config.settings import Settings, get_settings


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create an async engine from settings.

    Pool sizing applies to server databases only; the test environment
    uses NullPool.
    """
    settings = settings or get_settings()
    kwargs: dict[str, Any] = {"echo": settings.DEBUG}
    if settings.ENVIRONMENT == "test":
        kwargs["poolclass"] = NullPool
    elif not settings.DATABASE_URL.startswith("sqlite"):
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
    return create_async_engine(settings.DATABASE_URL, **kwargs)


def create_session_factory(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    """Create a session factory; objects stay usable after commit."""
    return async_sessionmaker(
        engine or get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


@lru_cache
def get_engine() -> AsyncEngine:
    """Get the process-wide engine built from the cached settings."""
    return create_engine()


async def init_db() -> None:
    """Verify connectivity before the first evaluation runs."""
    async with get_engine().begin() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db() -> None:
    """Close database connections gracefully."""
    await get_engine().dispose()


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for obtaining a database session.

    Usage:
        async with get_async_session() as session:
            result = await session.execute(query)

    Yields:
        AsyncSession: A database session that will be automatically closed
    """
    async with create_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()
