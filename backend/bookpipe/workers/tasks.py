"""
Celery Tasks — Book Ingestion

Task: process_book
  1. Build the IngestionJob from the message. attempt counts deliveries
     (Redis INCR per task id), so a redelivery after a worker crash uses up
     an attempt just like Task.retry() does; once deliveries exceed the
     ceiling the book is marked failed without running again
  2. Run BookIngestionOrchestrator (status → processing → completed | failed)
  3. Ask RetryPolicy what the outcome means for this attempt
  4. success  → record in completed history, return the outcome
     retry    → Task.retry(countdown=backoff)
     terminal → record in failed history, raise AttemptsExhausted

Task: reconcile_books
  Beat task — re-enqueues books stuck in 'pending' (broker down during
  upload), books left in 'processing' past the hard time limit (worker
  killed mid-run) and 'completed' books whose page rows disagree with
  total_pages. A book whose in-flight marker is held is skipped.

Both tasks only carry ids and paths; file bytes never travel through the
broker.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from celery import Task
from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookpipe.core.config import Settings, get_settings
from bookpipe.core.exceptions import AttemptsExhausted, JobTimeout, WorkerLost
from bookpipe.db.session import build_engine, build_session_factory, session_scope
from bookpipe.models.books import Book, Page
from bookpipe.pipeline.orchestrator import BookIngestionOrchestrator, JobOutcome, ProgressCallback
from bookpipe.schemas.books import IngestionJob, JobRecord, ProcessingStatus
from bookpipe.workers.celery_app import PROCESS_BOOK_TASK, RECONCILE_BOOKS_TASK, celery_app
from bookpipe.workers.queue import JobQueueHandle, create_job_queue
from bookpipe.workers.tracking import JobTracker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    # Already inside a loop (eager mode under an async caller)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


# ---------------------------------------------------------------------------
# Per-process worker context
# ---------------------------------------------------------------------------

@dataclass
class WorkerContext:
    """Everything a worker process needs to run jobs, built once per process."""
    queue:           JobQueueHandle
    orchestrator:    BookIngestionOrchestrator
    session_factory: async_sessionmaker[AsyncSession]
    settings:        Settings


_context: WorkerContext | None = None


def build_worker_context(handle: JobQueueHandle, settings: Settings | None = None) -> WorkerContext:
    settings = settings or get_settings()
    session_factory = build_session_factory(build_engine(settings, null_pool=True))
    orchestrator = BookIngestionOrchestrator.from_settings(
        settings,
        session_factory,
        timeout_errors=(SoftTimeLimitExceeded, TimeoutError),
    )
    return WorkerContext(
        queue=handle,
        orchestrator=orchestrator,
        session_factory=session_factory,
        settings=settings,
    )


def bind_worker_context(context: WorkerContext | None) -> None:
    """Install the context used by tasks in this process (None resets it)."""
    global _context
    _context = context


def get_worker_context() -> WorkerContext:
    # Processes started with the plain `celery worker` CLI build their own
    global _context
    if _context is None:
        settings = get_settings()
        _context = build_worker_context(create_job_queue(settings, app=celery_app), settings)
    return _context


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name=PROCESS_BOOK_TASK,
    bind=True,
    max_retries=None,          # RetryPolicy owns the attempt ceiling
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_book(
    self: Task,
    *,
    book_id:     str,
    file_path:   str,
    mime_type:   str,
    enqueued_at: str | None = None,
) -> dict[str, Any]:
    """Run one ingestion attempt and settle it against the retry policy."""
    ctx = get_worker_context()
    tracker = ctx.queue.tracker
    max_attempts = ctx.queue.policy.max_attempts

    attempt = _delivery_number(self, tracker)
    job = IngestionJob(
        book_id=uuid.UUID(book_id),
        file_path=file_path,
        mime_type=mime_type,
        attempt=min(attempt, max_attempts),
        **({"enqueued_at": enqueued_at} if enqueued_at else {}),
    )
    if self.request.id:
        tracker.mark_inflight(job.book_id, self.request.id)

    if attempt > max_attempts:
        # Every allowed delivery ended with the worker dying mid-run
        outcome = run_async(
            ctx.orchestrator.abort(
                job, WorkerLost(f"Worker lost mid-run; all {max_attempts} deliveries used")
            )
        )
        return _settle(self, ctx.queue, job, outcome)

    try:
        outcome = run_async(ctx.orchestrator.run(job, progress=_progress_reporter(self)))
    except SoftTimeLimitExceeded as exc:
        outcome = run_async(
            ctx.orchestrator.abort(
                job, JobTimeout(f"Job exceeded its time limit: {exc!r}", cause=exc)
            )
        )

    return _settle(self, ctx.queue, job, outcome)


def _settle(
    task: Task,
    queue: JobQueueHandle,
    job: IngestionJob,
    outcome: JobOutcome,
) -> dict[str, Any]:
    decision = queue.policy.decide(job.attempt, outcome.failure)
    record = JobRecord(
        task_id=task.request.id or "",
        book_id=job.book_id,
        mime_type=job.mime_type,
        attempts=job.attempt,
        outcome=outcome.label,
        total_pages=outcome.total_pages,
        error=outcome.message,
    )

    if outcome.succeeded:
        queue.history.record_completed(record)
        _finish(queue, job, record.task_id)
        return outcome.as_dict()

    if decision.retry:
        logger.warning(
            "Retrying | book=%s attempt=%d delay=%.1fs reason=%s",
            job.book_id, job.attempt, decision.delay, decision.reason,
        )
        raise task.retry(countdown=decision.delay)

    logger.error(
        "Job terminal | book=%s attempts=%d reason=%s",
        job.book_id, job.attempt, decision.reason,
    )
    queue.history.record_failed(record)
    _finish(queue, job, record.task_id)
    raise AttemptsExhausted(job.book_id, job.attempt, outcome.message or outcome.label)


def _delivery_number(task: Task, tracker: JobTracker) -> int:
    """1-based delivery count; falls back to the retry counter without Redis."""
    by_retries = task.request.retries + 1
    if not task.request.id:
        return by_retries
    delivered = tracker.count_delivery(task.request.id)
    return max(by_retries, delivered or 0)


def _finish(queue: JobQueueHandle, job: IngestionJob, task_id: str) -> None:
    if task_id:
        queue.tracker.release(job.book_id, task_id)
        queue.tracker.forget_deliveries(task_id)


def _progress_reporter(task: Task) -> ProgressCallback:
    def report(value: int) -> None:
        task.update_state(state="PROGRESS", meta={"progress": value})
    return report


# ---------------------------------------------------------------------------
# Reconcile scanner — runs every reconcile_interval_seconds via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name=RECONCILE_BOOKS_TASK,
    bind=False,
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def reconcile_books() -> dict[str, int]:
    """
    Re-enqueue books that were never processed, whose worker vanished, or
    whose page set is torn. Status is left untouched: the re-run job moves
    it through the pipeline.
    """
    ctx = get_worker_context()
    return run_async(_reconcile_books_async(ctx))


async def _reconcile_books_async(ctx: WorkerContext) -> dict[str, int]:
    settings = ctx.settings
    now = datetime.now(timezone.utc)
    pending_cutoff    = now - timedelta(minutes=settings.stale_pending_minutes)
    processing_cutoff = now - timedelta(seconds=settings.ingest_time_limit)

    page_counts = (
        select(Page.book_id, func.count(Page.id).label("stored"))
        .group_by(Page.book_id)
        .subquery()
    )
    stale_pending = and_(
        Book.processing_status == ProcessingStatus.PENDING.value,
        Book.created_at < pending_cutoff,
    )
    # No live job can still be running past the hard time limit
    stuck_processing = and_(
        Book.processing_status == ProcessingStatus.PROCESSING.value,
        Book.updated_at < processing_cutoff,
    )
    torn_pages = and_(
        Book.processing_status == ProcessingStatus.COMPLETED.value,
        func.coalesce(page_counts.c.stored, 0) != Book.total_pages,
    )

    async with session_scope(ctx.session_factory) as session:
        result = await session.execute(
            select(Book.id, Book.file_path, Book.mime_type, Book.processing_status)
            .outerjoin(page_counts, page_counts.c.book_id == Book.id)
            .where(or_(stale_pending, stuck_processing, torn_pages))
            .order_by(Book.created_at)
            .limit(settings.reconcile_batch_size)
        )
        rows = result.all()

    requeued = 0
    for book_id, file_path, mime_type, status in rows:
        task_id = ctx.queue.enqueue(
            IngestionJob(book_id=book_id, file_path=file_path, mime_type=mime_type),
            countdown=5,
            only_if_idle=True,
        )
        if task_id is None:
            continue
        requeued += 1
        logger.info("Re-queued book | book=%s status=%s task_id=%s", book_id, status, task_id)

    return {"requeued": requeued}
