"""
Database session management.

Two engines exist:
  - `engine` / `AsyncSessionLocal` — pooled, owned by the API process and its
    single event loop.
  - `get_worker_session_factory()` — NullPool engine for Celery workers. Each
    task runs its coroutine on a fresh event loop, and asyncpg connections
    cannot cross loops, so the worker never keeps connections between tasks.

Transactions are short: the record store opens one session per operation
via `session_scope()`, and no transaction is ever held across OCR or
storage I/O.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from capture_inbox.core.config import settings
from capture_inbox.models.captures import Base

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

engine: AsyncEngine = create_async_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,          # detect stale connections before use
    pool_recycle=3600,           # recycle connections every hour
    echo=settings.db_echo_sql,   # log SQL in dev; disable in prod
)

# Session factory — expire_on_commit=False keeps ORM objects usable after commit
AsyncSessionLocal: SessionFactory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@lru_cache(maxsize=1)
def get_worker_session_factory() -> SessionFactory:
    worker_engine = create_async_engine(
        settings.database_url,
        poolclass=NullPool,
        echo=settings.db_echo_sql,
    )
    return async_sessionmaker(bind=worker_engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Transaction scope
# ---------------------------------------------------------------------------

@asynccontextmanager
async def session_scope(factory: SessionFactory) -> AsyncIterator[AsyncSession]:
    """
    One session, one transaction.

    Commits on clean exit; rolls back and re-raises on any exception.
    """
    async with factory() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session, committed when the route returns."""
    async with session_scope(AsyncSessionLocal) as session:
        yield session


# ---------------------------------------------------------------------------
# Schema bootstrap
# ---------------------------------------------------------------------------

async def create_schema(bind: AsyncEngine) -> None:
    """Create missing tables. Idempotent; existing tables are left untouched."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health(bind: AsyncEngine | None = None) -> dict:
    """Ping the database; used by /ready endpoint."""
    try:
        async with (bind or engine).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
