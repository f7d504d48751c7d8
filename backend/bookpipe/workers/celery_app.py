"""
Celery Application Factory

Configures the Celery app that carries ingestion jobs.
Broker: Redis (redis://) by default; RabbitMQ (amqp://) works unchanged.
Result backend: Redis — holds advisory task state (PROGRESS 0–100) only;
the book's processing_status in the database is the source of truth.

Queue topology:
  books.ingest        — one message per ingestion job
  system.maintenance  — reconcile scanner (Celery beat)

Delivery guarantees:
  - task_acks_late + task_reject_on_worker_lost: a job whose worker dies
    mid-run is redelivered (at-least-once). process_book counts every
    delivery in Redis, so crash redeliveries share the attempt ceiling.
  - worker_prefetch_multiplier=1: a worker reserves one job at a time, so
    a delivered job is held by exactly one worker until acked.

Never put file bytes in task payloads — jobs carry the saved file's path.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import after_setup_logger, task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from bookpipe.core.config import Settings, get_settings
from bookpipe.core.logging import configure_logging

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

INGEST_QUEUE      = "books.ingest"
MAINTENANCE_QUEUE = "system.maintenance"

PROCESS_BOOK_TASK    = "bookpipe.workers.tasks.process_book"
RECONCILE_BOOKS_TASK = "bookpipe.workers.tasks.reconcile_books"

BOOKS_EXCHANGE = Exchange("books", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        INGEST_QUEUE,
        exchange=BOOKS_EXCHANGE,
        routing_key=INGEST_QUEUE,
        durable=True,
    ),
    Queue(
        MAINTENANCE_QUEUE,
        Exchange("system", type="direct", durable=True),
        routing_key=MAINTENANCE_QUEUE,
        durable=True,
    ),
)

TASK_ROUTES = {
    PROCESS_BOOK_TASK:    {"queue": INGEST_QUEUE},
    RECONCILE_BOOKS_TASK: {"queue": MAINTENANCE_QUEUE},
}


# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app(settings: Settings | None = None) -> Celery:
    settings = settings or get_settings()
    app = Celery("bookpipe", include=["bookpipe.workers.tasks"])

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue=INGEST_QUEUE,
        task_default_exchange="books",
        task_default_routing_key=INGEST_QUEUE,

        # --- Reliability ---
        task_acks_late=True,            # ack only after the job settles
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,   # one reserved job per worker process
        task_track_started=True,

        # --- Timeouts (per job wall clock) ---
        task_soft_time_limit=settings.ingest_soft_time_limit,
        task_time_limit=settings.ingest_time_limit,

        # --- Result TTL ---
        result_expires=3600,   # progress only; status lives in PostgreSQL

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (reconcile scanner) ---
        beat_schedule={
            "reconcile-books": {
                "task":     RECONCILE_BOOKS_TASK,
                "schedule": settings.reconcile_interval_seconds,
                "options":  {"queue": MAINTENANCE_QUEUE},
            },
        },

        # --- Worker ---
        worker_max_tasks_per_child=200,   # recycle children; PDF parsing is memory hungry
        worker_hijack_root_logger=False,
    )

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals — one structured line per job start / end / failure
# ---------------------------------------------------------------------------

@after_setup_logger.connect
def on_after_setup_logger(logger, **_):
    configure_logging(get_settings(), logger)


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s book=%s attempt=%d",
        task_id, task.name,
        (kwargs or {}).get("book_id", "?"),
        task.request.retries + 1,
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s book=%s",
        task_id, task.name, state, (kwargs or {}).get("book_id", "?"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s book=%s error=%s",
        task_id, (kwargs or {}).get("book_id", "?"), exception,
    )
