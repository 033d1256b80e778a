"""Postgres access for baselines and monitoring check records.

Collaborator data (assessments, evidence, alerts) goes through Supabase; only
the monitoring engine's own tables live behind this engine.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config.settings import settings

logger = logging.getLogger(__name__)

_ASYNC_SCHEMES = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
}

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def normalize_db_url(url: str) -> str:
    """Point plain postgres URLs at the asyncpg driver; leave others alone."""
    for prefix, replacement in _ASYNC_SCHEMES.items():
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def get_async_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is not set")
        _engine = create_async_engine(
            normalize_db_url(settings.database_url),
            pool_pre_ping=True,
            pool_size=settings.database_pool_size,
            echo=settings.database_echo,
        )
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker(get_async_engine(), expire_on_commit=False)
    return _sessionmaker


async def dispose_engine() -> None:
    """Close pooled connections so a short-lived CLI run exits cleanly."""
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None


async def check_database() -> str | None:
    """Run a trivial query. Returns None when reachable, else the error text."""
    try:
        async with get_async_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError, OSError) as e:
        logger.warning("Database check failed: %s", e)
        return str(e)
    return None
