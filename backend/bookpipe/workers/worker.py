"""
Worker pool entry point.

    bookpipe-worker --concurrency 4 --beat

The handle built here is the same kind the API holds: the worker pool is
constructed from it explicitly and every forked child inherits the bound
context (NullPool engine, history client, retry policy).
"""

from __future__ import annotations

import argparse
import logging

from bookpipe.core.config import Settings, get_settings
from bookpipe.core.logging import configure_logging
from bookpipe.workers.celery_app import INGEST_QUEUE, MAINTENANCE_QUEUE
from bookpipe.workers.queue import JobQueueHandle, create_job_queue
from bookpipe.workers.tasks import bind_worker_context, build_worker_context

logger = logging.getLogger(__name__)


def build_worker_argv(
    *,
    concurrency: int | None = None,
    loglevel:    str = "INFO",
    beat:        bool = False,
) -> list[str]:
    argv = [
        "worker",
        f"--loglevel={loglevel}",
        f"--queues={INGEST_QUEUE},{MAINTENANCE_QUEUE}",
    ]
    if concurrency:
        argv.append(f"--concurrency={concurrency}")
    if beat:
        argv.append("--beat")
    return argv


def run_worker(
    handle: JobQueueHandle,
    *,
    settings:    Settings | None = None,
    concurrency: int | None = None,
    loglevel:    str | None = None,
    beat:        bool = False,
) -> None:
    """Bind the worker context to `handle` and block in the Celery worker loop."""
    settings = settings or get_settings()
    bind_worker_context(build_worker_context(handle, settings))

    argv = build_worker_argv(
        concurrency=concurrency,
        loglevel=loglevel or settings.log_level,
        beat=beat,
    )
    logger.info("Starting worker pool | argv=%s", " ".join(argv))
    handle.app.worker_main(argv=argv)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the book ingestion worker pool")
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--loglevel", default=None)
    parser.add_argument("--beat", action="store_true", help="also run the reconcile scheduler")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings)
    with create_job_queue(settings) as handle:
        run_worker(
            handle,
            settings=settings,
            concurrency=args.concurrency,
            loglevel=args.loglevel,
            beat=args.beat,
        )


if __name__ == "__main__":
    main()
