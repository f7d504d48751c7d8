"""
Process-wide logging setup.

Both the API process and Celery worker processes call configure_logging()
so every log line shares one format:

    2026-01-01 12:00:00,000 INFO bookpipe.pipeline.orchestrator Ingest complete | book=... pages=12
"""

from __future__ import annotations

import logging

from bookpipe.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Chatty third-party loggers that drown out pipeline lines at INFO
_QUIET_LOGGERS = ("pypdf", "httpx", "sqlalchemy.engine")


def configure_logging(settings: Settings, logger: logging.Logger | None = None) -> None:
    """
    Install the shared format on `logger` (root logger when None).

    Celery hands its own logger to the after_setup_logger signal; that one
    is passed in here so worker output matches the API process.
    """
    level = logging.DEBUG if settings.debug else getattr(
        logging, settings.log_level.upper(), logging.INFO
    )
    target = logger or logging.getLogger()

    if logger is None:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        for handler in target.handlers:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
    target.setLevel(level)

    for name in _QUIET_LOGGERS:
        # db_echo_sql keeps SQLAlchemy statements visible
        if name == "sqlalchemy.engine" and settings.db_echo_sql:
            continue
        logging.getLogger(name).setLevel(logging.WARNING)
