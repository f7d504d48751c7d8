"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : db_engine, session_factory, db_session, fake_redis,
                    job_history, job_tracker, make_book, sample document builders

Environment strategy:
  - The database is in-memory SQLite through aiosqlite (one shared
    connection via StaticPool), created fresh per test.
  - Job history runs against fakeredis; no Redis server needed.
  - Celery never contacts a broker: memory:// transport, cache+memory://
    results, tasks driven through push_request()/run() or apply().

How to run:
  pytest                           # all tests
  pytest -m unit                   # unit tests only (fast, no I/O)
  pytest -m integration            # SQLite / ASGI wiring tests
  pytest -m pipeline               # full task runs through all attempts
"""

from __future__ import annotations

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio


# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any bookpipe imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("DATABASE_URL",          "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("REDIS_URL",             "redis://localhost:6379/15")
os.environ.setdefault("APP_ENV",               "development")
os.environ.setdefault("LOG_LEVEL",             "DEBUG")

import fakeredis  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from bookpipe.db.session import build_session_factory, session_scope  # noqa: E402
from bookpipe.models.books import Base, Book  # noqa: E402
from bookpipe.processing.extractor import MediaType  # noqa: E402
from bookpipe.services.books import create_book  # noqa: E402
from bookpipe.workers.history import JobHistory  # noqa: E402
from bookpipe.workers.tracking import JobTracker  # noqa: E402
from tests.builders import long_text  # noqa: E402


# ─────────────────────────────────────────────────────────────────────────────
# Database
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory schema; StaticPool keeps the one connection alive."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_book(session_factory):
    """
    Factory fixture: insert a committed 'pending' book and return it.

    Usage:
        book = await make_book(file_path=str(path), mime_type="text/plain")
    """
    async def _build(
        *,
        title:     str = "Test Book",
        file_path: str = "/tmp/missing.txt",
        mime_type: str = MediaType.TEXT.value,
    ) -> Book:
        async with session_scope(session_factory) as session:
            return await create_book(
                session, title=title, file_path=file_path, mime_type=mime_type,
            )
    return _build


# ─────────────────────────────────────────────────────────────────────────────
# Redis (job history)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_redis():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def job_history(fake_redis) -> JobHistory:
    return JobHistory(fake_redis, completed_limit=100, failed_limit=500)


@pytest.fixture
def job_tracker(fake_redis) -> JobTracker:
    return JobTracker(fake_redis, inflight_ttl=1800)


# ─────────────────────────────────────────────────────────────────────────────
# Sample inputs
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def sample_text() -> str:
    return long_text(paragraphs=3, words_each=40)


@pytest.fixture
def text_file(tmp_path, sample_text):
    """A saved UTF-8 upload on disk, as the upload layer would leave it."""
    path = tmp_path / "book.txt"
    path.write_text(sample_text, encoding="utf-8")
    return path
