"""
Database engine and session management.

The engine is built lazily from settings so importing this module never
opens a connection (Celery workers fork after import; tests swap in their
own SQLite engine).

Flow for pipeline code:
    async with session_scope(factory) as session:
        ...          # one transaction; commits on exit, rolls back on error

Flow for FastAPI routes:
    db: AsyncSession = Depends(get_db)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from bookpipe.core.config import Settings, get_settings
from bookpipe.models.books import Base

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine / session factory
# ---------------------------------------------------------------------------

def build_engine(settings: Settings, *, null_pool: bool = False) -> AsyncEngine:
    """
    Create an async engine; pool sizing only applies to server databases.

    Celery tasks run each job on a fresh event loop, and asyncpg connections
    are bound to the loop that opened them, so workers pass null_pool=True.
    """
    kwargs: dict = {"echo": settings.db_echo_sql}
    if null_pool:
        kwargs["poolclass"] = NullPool
    elif not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,     # detect stale connections before use
            pool_recycle=3600,      # recycle connections every hour
        )
    return create_async_engine(settings.database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    return build_engine(get_settings())


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return build_session_factory(get_engine())


# ---------------------------------------------------------------------------
# Transaction helpers
# ---------------------------------------------------------------------------

@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """One session, one transaction: commit on clean exit, rollback on error."""
    factory = factory or get_session_factory()
    async with factory() as session:
        async with session.begin():
            yield session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a transactional session."""
    async with session_scope() as session:
        yield session


# ---------------------------------------------------------------------------
# Schema / health helpers
# ---------------------------------------------------------------------------

async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create books/book_pages if missing (local dev and tests)."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured | url=%s", engine.url.render_as_string(hide_password=True))


async def check_db_health(engine: AsyncEngine | None = None) -> dict:
    """Ping the database; used by /ready."""
    engine = engine or get_engine()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
