"""Database primitives."""

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends
from loguru import logger
from sqlalchemy import MetaData, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from telemetry_server.config import Settings, get_settings
from telemetry_server.errors import StartupError


class Base(DeclarativeBase):
    """Base declarative model class."""

    metadata = MetaData()


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured database.

    Parameters
    ----------
    settings : Settings
        Runtime settings.

    Returns
    -------
    AsyncEngine
        Configured engine.
    """
    if settings.is_sqlite:
        return create_async_engine(settings.database_url, future=True)
    connect_args: dict[str, object] = {}
    if settings.database_ssl:
        connect_args["ssl"] = True
    return create_async_engine(
        settings.database_url,
        future=True,
        pool_pre_ping=True,
        pool_size=settings.pool_size,
        max_overflow=settings.pool_size // 2,
        connect_args=connect_args,
    )


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Return the process-wide engine.

    Returns
    -------
    AsyncEngine
        Cached engine built from settings.
    """
    return build_engine(get_settings())


@lru_cache(maxsize=1)
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory.

    Returns
    -------
    async_sessionmaker[AsyncSession]
        Session factory bound to the cached engine.
    """
    return async_sessionmaker(get_engine(), expire_on_commit=False, class_=AsyncSession)


async def get_session(
    factory: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session.

    Parameters
    ----------
    factory : async_sessionmaker[AsyncSession]
        Session factory.

    Yields
    ------
    AsyncSession
        Active async SQLAlchemy session.
    """
    async with factory() as session:
        yield session


async def migrate(engine: AsyncEngine) -> None:
    """Create missing tables and indexes.

    ``create_all`` checks for each table and index before creating it and
    walks tables in foreign-key order, so repeated runs are no-ops.

    Parameters
    ----------
    engine : AsyncEngine
        Target engine.

    Returns
    -------
    None
        Raises ``StartupError`` when the database is unreachable.
    """
    import telemetry_server.models  # noqa: F401

    try:
        async with engine.begin() as connection:
            await connection.execute(text("SELECT 1"))
            await connection.run_sync(Base.metadata.create_all)
    except (OperationalError, DBAPIError, OSError) as exc:
        logger.error("Database migration failed: {}", exc)
        raise StartupError(str(exc)) from exc
    logger.info("Database schema is up to date")


def dialect_name(session: AsyncSession) -> str:
    """Return the SQL dialect name a session is bound to."""
    return session.get_bind().dialect.name
