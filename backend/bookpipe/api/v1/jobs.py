"""
Jobs API Router — queue observability

GET /api/v1/jobs/completed             → last N completed jobs, newest first
GET /api/v1/jobs/failed                → last N terminally failed jobs
GET /api/v1/jobs/{task_id}/progress    → advisory Celery state + 0–100 progress

Handlers are sync: Redis reads run in FastAPI's threadpool.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from bookpipe.api.dependencies import JobQueue
from bookpipe.schemas.books import JobRecord

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.get("/completed", response_model=list[JobRecord])
def list_completed_jobs(
    queue: JobQueue,
    limit: int | None = Query(None, ge=1, le=500),
) -> list[JobRecord]:
    return queue.recent_completed(limit)


@router.get("/failed", response_model=list[JobRecord])
def list_failed_jobs(
    queue: JobQueue,
    limit: int | None = Query(None, ge=1, le=500),
) -> list[JobRecord]:
    return queue.recent_failed(limit)


@router.get("/{task_id}/progress")
def get_job_progress(task_id: str, queue: JobQueue) -> dict[str, Any]:
    return queue.job_progress(task_id)
