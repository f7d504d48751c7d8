"""
Job queue handle — the one object both sides of the queue hold.

The API process builds a handle to submit jobs and read history; the
worker entry point receives the same kind of handle and builds its pool
from it. Nothing reaches for a global broker client.

    queue = create_job_queue(settings)
    task_id = queue.enqueue(IngestionJob(book_id=..., file_path=..., mime_type=...))
    queue.job_progress(task_id)      # {"state": "PROGRESS", "progress": 50}
    queue.recent_failed()            # last failed_job_history records
    queue.close()
"""

from __future__ import annotations

import logging
from typing import Any

from celery import Celery
from celery.result import AsyncResult

from bookpipe.core.config import Settings, get_settings
from bookpipe.schemas.books import IngestionJob, JobRecord
from bookpipe.workers.celery_app import INGEST_QUEUE, PROCESS_BOOK_TASK, create_celery_app
from bookpipe.workers.history import JobHistory
from bookpipe.workers.retry import RetryPolicy
from bookpipe.workers.tracking import JobTracker

logger = logging.getLogger(__name__)


class JobQueueHandle:
    def __init__(
        self,
        app:     Celery,
        history: JobHistory,
        policy:  RetryPolicy,
        tracker: JobTracker,
    ) -> None:
        self.app     = app
        self.history = history
        self.policy  = policy
        self.tracker = tracker

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(
        self,
        job: IngestionJob,
        *,
        countdown:    float | None = None,
        only_if_idle: bool = False,
    ) -> str | None:
        """
        Publish a job; returns the broker task id.

        only_if_idle=True (reconcile) first claims the book's in-flight
        marker and returns None without publishing when another job holds it.
        """
        if only_if_idle and not self.tracker.claim(job.book_id):
            logger.info("Job skipped, book has a job in flight | book=%s", job.book_id)
            return None
        try:
            result = self.app.send_task(
                PROCESS_BOOK_TASK,
                kwargs=job.to_task_kwargs(),
                queue=INGEST_QUEUE,
                countdown=countdown,
            )
        except Exception:
            if only_if_idle:
                self.tracker.release(job.book_id)
            raise
        self.tracker.mark_inflight(job.book_id, result.id)
        logger.info(
            "Job enqueued | task_id=%s book=%s mime=%s",
            result.id, job.book_id, job.mime_type,
        )
        return result.id

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def job_progress(self, task_id: str) -> dict[str, Any]:
        """Advisory state of a job: Celery state plus 0–100 progress."""
        result = AsyncResult(task_id, app=self.app)
        info = result.info if isinstance(result.info, dict) else {}
        progress = info.get("progress")
        if progress is None:
            progress = 100 if result.state == "SUCCESS" else 0
        return {"task_id": task_id, "state": result.state, "progress": progress}

    def recent_completed(self, limit: int | None = None) -> list[JobRecord]:
        return self.history.recent_completed(limit)

    def recent_failed(self, limit: int | None = None) -> list[JobRecord]:
        return self.history.recent_failed(limit)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.history.close()
        self.tracker.close()
        self.app.close()

    def __enter__(self) -> "JobQueueHandle":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def create_job_queue(
    settings: Settings | None = None,
    *,
    app:     Celery | None = None,
    history: JobHistory | None = None,
    tracker: JobTracker | None = None,
) -> JobQueueHandle:
    settings = settings or get_settings()
    return JobQueueHandle(
        app=app or create_celery_app(settings),
        history=history or JobHistory.from_settings(settings),
        policy=RetryPolicy.from_settings(settings),
        tracker=tracker or JobTracker.from_settings(settings),
    )
