"""Database Connection Module

Provides the async SQLAlchemy engine and session factory used by the metric
store. Production runs on Postgres through psycopg 3 (``postgresql+psycopg``);
development and tests run on SQLite through aiosqlite.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from perfwatch.lib.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for perfwatch ORM models."""


def is_sqlite_url(database_url: str) -> bool:
    return database_url.startswith('sqlite')


def create_engine_from_settings(settings: Settings, **overrides) -> AsyncEngine:
    """Create the async engine for the configured database.

    Pool sizing applies to server databases only; SQLite uses SQLAlchemy's
    default pool for aiosqlite.

    Args:
        settings: Application settings
        **overrides: Extra keyword arguments passed to ``create_async_engine``

    Returns:
        Configured async engine
    """
    options = {'echo': False}
    if not is_sqlite_url(settings.database_url):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,  # Verify connections before use
            pool_recycle=3600,
        )
    options.update(overrides)
    return create_async_engine(settings.database_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory for the store; objects stay usable after commit."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create missing tables. Used for SQLite development databases and tests.

    Postgres deployments are migrated with alembic instead.
    """
    # Import for side effect: registers the tables on Base.metadata
    from perfwatch.models import performance_sample  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine(engine: AsyncEngine) -> None:
    """Close all pooled connections."""
    await engine.dispose()
    logger.info('Database engine disposed')


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Open a session that commits on success and rolls back on error.

    Usage:
        async with session_scope(factory) as session:
            session.add(row)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
