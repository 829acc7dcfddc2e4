"""Async PostgreSQL connection management.

Provides the async engine, session factory, and connection lifecycle.
The engine is created on first use so importing the package never needs
a reachable database.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from groundwave.config import settings
from groundwave.errors import ConfigurationError

log = structlog.get_logger()

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


# =============================================================================
# Engine Configuration
# =============================================================================


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it from settings on first call."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is None:
        if not settings.database_url:
            raise ConfigurationError("DATABASE_URL is required")
        _engine = create_async_engine(
            settings.database_url,
            echo=settings.log_level == "DEBUG",
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        _session_factory = async_sessionmaker(
            bind=_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


# =============================================================================
# Connection Lifecycle
# =============================================================================


async def init_db() -> None:
    """Create all tables that don't exist yet.

    Called once at application startup; any failure is fatal.
    """
    # Register every table on the metadata before create_all.
    from groundwave.db import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        log.info("Database tables initialized")


async def close_db() -> None:
    """Dispose of pooled connections at shutdown."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        log.info("Database connections closed")


# =============================================================================
# Session Management
# =============================================================================


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Usage:
        async with get_session() as session:
            result = await session.execute(select(Model))

    Yields:
        AsyncSession: Database session that auto-commits on success,
            rolls back on exception.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_session_dependency() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions.

    Usage in FastAPI routes:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_session_dependency)):
            ...
    """
    async with get_session() as session:
        yield session

