"""
Warehouse Connection Management

Async SQLAlchemy 2.0 engine for the read-only warehouse snapshot. Sessions
are scoped: every session is rolled back and closed on exit, nothing is
ever committed.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from bizmetrics.config import get_settings

logger = structlog.get_logger(__name__)

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


async def init_database(url: Optional[str] = None, engine: Optional[AsyncEngine] = None) -> AsyncEngine:
    """
    Initialize the warehouse engine.

    Args:
        url: Override the configured warehouse URL
        engine: Use an existing engine (tests share an in-memory database)

    Returns:
        AsyncEngine: The initialized engine
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings()
    if engine is None:
        # Batch runs open few sessions; the driver handles its own pooling
        engine = create_async_engine(
            url or settings.warehouse.async_url,
            echo=settings.warehouse.echo,
            pool_pre_ping=True,
            poolclass=NullPool,
        )

    _engine = engine
    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Warehouse connection established", url=_engine.url.render_as_string(hide_password=True))
    except Exception as e:
        logger.error("Failed to connect to warehouse", error=str(e))
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        raise

    return _engine


async def close_database() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Warehouse connection closed")


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Read-only warehouse session.

    Example:
        async with get_session() as session:
            result = await session.execute(select(CrmOpportunity))
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    session = _async_session_factory()
    try:
        yield session
    finally:
        await session.rollback()
        await session.close()
        logger.debug("Warehouse session released")
