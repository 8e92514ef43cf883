"""Async engine for the form record store.

The repository owns the engine it is given and disposes of it on close;
nothing here is cached at module level.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.database import DatabaseSettings, get_database_settings

logger = logging.getLogger(__name__)


def create_engine(settings: Optional[DatabaseSettings] = None) -> AsyncEngine:
    """
    Build the async engine for the configured store.

    SQLite files get a NullPool (one connection per transaction) and WAL
    journaling; server URLs get a pre-pinged pool.
    """
    settings = settings or get_database_settings()

    if settings.is_sqlite:
        engine = create_async_engine(
            settings.async_url,
            echo=settings.echo_sql,
            connect_args=settings.get_connect_args(),
            poolclass=NullPool,
        )
        event.listen(engine.sync_engine, "connect", _sqlite_on_connect)
        logger.info(f"Form record store: SQLite file {settings.sqlite_path}")
    else:
        engine = create_async_engine(
            settings.async_url,
            echo=settings.echo_sql,
            connect_args=settings.get_connect_args(),
            pool_pre_ping=True,
        )
        logger.info(f"Form record store: {engine.url.get_backend_name()} server at {engine.url.host}")

    return engine


def _sqlite_on_connect(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory whose sessions keep records readable after commit."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(engine: AsyncEngine) -> None:
    """Create the form_records table and its indexes if missing."""
    from database.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Form record tables ready")


async def check_database_connection(engine: AsyncEngine) -> bool:
    """Health check: True when a trivial query succeeds."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Form record store unreachable: {e}")
        return False
    return True
