"""
Database Module
===============
Async SQLAlchemy engine and session factories for the audit store.

Nothing here is global: callers create the engine at startup and pass the
session factory to SQLAlchemyAuditStore.
"""

from typing import AsyncGenerator
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.orm import DeclarativeBase
import structlog

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


def create_async_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create and configure the async database engine.

    Args:
        database_url: Async connection string (postgresql+asyncpg://..., sqlite+aiosqlite://...)
        pool_size: Connection pool size (default: 10, ignored for SQLite)
        max_overflow: Max overflow connections (default: 20, ignored for SQLite)
        pool_pre_ping: Enable connection health checks (default: True)
        echo: Log SQL statements (default: False)

    Returns:
        Configured AsyncEngine instance
    """
    kwargs = {"pool_pre_ping": pool_pre_ping, "echo": echo}
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_size=pool_size, max_overflow=max_overflow)

    engine = sa_create_async_engine(database_url, **kwargs)
    logger.info("Database engine initialized", dialect=engine.dialect.name)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional session scope.

    Commits on success and rolls back on exception.

    Usage:
        async with session_scope(factory) as db:
            await db.execute(...)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: AsyncEngine) -> None:
    """Create every table registered on Base (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_engine(engine: AsyncEngine) -> None:
    """Close the database engine. Call during application shutdown."""
    await engine.dispose()
    logger.info("Database engine closed")
