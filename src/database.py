"""
Database engine and session management (SQLAlchemy 2.0 async).

The SQL stores are the only callers. session_scope() opens a short
transaction per store operation, so progress and appended slides are
visible to polling readers as soon as they are written.

All models import Base from here to keep metadata centralized.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from src.config import Settings, get_settings

log = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Alembic discovers tables by importing src.models, which registers every
    model against this metadata.
    """


def _build_engine(settings: Settings, *, for_test: bool = False) -> AsyncEngine:
    """Create an async SQLAlchemy engine from settings.

    Uses NullPool in test mode to avoid connection leaks between test cases.
    """
    kwargs: dict[str, Any] = {"echo": settings.db_echo_sql}
    if for_test:
        kwargs["poolclass"] = NullPool
    else:
        # Workers hold a connection only for the duration of one store call,
        # so a small pool serves API + worker coroutines in one process.
        kwargs.update(
            {
                "pool_size": 5 + settings.background_worker_concurrency,
                "max_overflow": 10,
                "pool_pre_ping": True,
                "pool_recycle": 300,
            }
        )
    return create_async_engine(settings.database_url, **kwargs)


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(settings: Settings | None = None, *, for_test: bool = False) -> None:
    """Initialize the database engine and session factory.

    Called once during application or worker startup.
    """
    global _engine, _session_factory
    cfg = settings or get_settings()
    _engine = _build_engine(cfg, for_test=for_test)
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )
    log.info("database.initialized", url=cfg.database_url.split("@")[-1])


async def close_db() -> None:
    """Dispose the engine and release all connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        log.info("database.closed")
        _engine = None
        _session_factory = None


def get_engine() -> AsyncEngine:
    """Return the initialized engine (raises if not initialized)."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the initialized session factory (raises if not initialized)."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Open a session bound to one transaction.

    Commits when the block exits cleanly, rolls back on any exception.
    """
    session_factory = factory or get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

