"""
Job queue package — Celery transport, retry policy, bounded history.

Producer side (API process)::

    from bookpipe.workers import create_job_queue
    queue = create_job_queue(settings)
    queue.enqueue(job)

Worker side::

    from bookpipe.workers.worker import run_worker
    run_worker(create_job_queue(settings))

Task bodies live in bookpipe.workers.tasks and are imported by the worker
only; producers publish by task name.
"""

from bookpipe.workers.history import JobHistory
from bookpipe.workers.queue import JobQueueHandle, create_job_queue
from bookpipe.workers.retry import RetryDecision, RetryPolicy
from bookpipe.workers.tracking import JobTracker

__all__ = [
    "JobHistory",
    "JobQueueHandle",
    "JobTracker",
    "RetryDecision",
    "RetryPolicy",
    "create_job_queue",
]
