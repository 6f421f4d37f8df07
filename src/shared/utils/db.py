"""Async database engine, sessions and schema management.

Every table in ridestream is declared on ``Base``. PostgreSQL (or any other
async driver) is used in production; SQLite via aiosqlite in development
and tests.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool, StaticPool

from shared.settings import Settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    """Create an async engine for the configured database URL."""
    logger.info("Creating async database engine", url=settings.database_url.split("@")[-1])

    if settings.is_sqlite:
        if ":memory:" in settings.database_url:
            # In-memory databases live on a single shared connection
            return create_async_engine(
                settings.database_url,
                echo=settings.echo_sql,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(settings.database_url, echo=settings.echo_sql, poolclass=NullPool)

    return create_async_engine(settings.database_url, echo=settings.echo_sql, pool_pre_ping=True)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Open a session, commit on success and roll back on error.

    Usage:
        async with session_scope(factory) as session:
            await session.execute(statement)
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def _import_models() -> None:
    """Import every module that declares tables so they register on ``Base``."""
    import notifications.notification.record  # noqa: F401
    import notifications.projections.delivery_stats  # noqa: F401
    import rides.projections.ride_event_log  # noqa: F401
    import rides.resume_tokens  # noqa: F401


async def setup_db(engine: AsyncEngine) -> None:
    """Create all tables."""
    _import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready", tables=sorted(Base.metadata.tables))


async def drop_db(engine: AsyncEngine) -> None:
    """Drop all tables."""
    _import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.info("Database schema dropped")
