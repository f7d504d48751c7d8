"""
Bounded job history — the last N completed and last M failed jobs.

Celery forgets a task once it is acked; operators still want to see what
happened to recent uploads. Each finished job is pushed as JSON onto a
Redis list and the list is trimmed in the same pipeline, so retention is
enforced on every write:

    bookpipe:jobs:completed   newest first, capped at completed_job_history (100)
    bookpipe:jobs:failed      newest first, capped at failed_job_history    (500)

Only terminal outcomes are recorded: a failed attempt that will be retried
is not a failed job yet.
"""

from __future__ import annotations

import logging

import redis

from bookpipe.core.config import Settings
from bookpipe.schemas.books import JobRecord

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "bookpipe:jobs"


class JobHistory:
    def __init__(
        self,
        client: redis.Redis,
        *,
        completed_limit: int = 100,
        failed_limit:    int = 500,
        key_prefix:      str = DEFAULT_KEY_PREFIX,
    ) -> None:
        if completed_limit < 1 or failed_limit < 1:
            raise ValueError("history limits must be positive")
        self._client          = client
        self._completed_limit = completed_limit
        self._failed_limit    = failed_limit
        self.completed_key    = f"{key_prefix}:completed"
        self.failed_key       = f"{key_prefix}:failed"

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobHistory":
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return cls(
            client,
            completed_limit=settings.completed_job_history,
            failed_limit=settings.failed_job_history,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_completed(self, record: JobRecord) -> None:
        self._push(self.completed_key, record, self._completed_limit)

    def record_failed(self, record: JobRecord) -> None:
        self._push(self.failed_key, record, self._failed_limit)

    def _push(self, key: str, record: JobRecord, limit: int) -> None:
        payload = record.model_dump_json(by_alias=True)
        try:
            pipe = self._client.pipeline()
            pipe.lpush(key, payload)
            pipe.ltrim(key, 0, limit - 1)
            pipe.execute()
        except redis.RedisError as exc:
            # History is for inspection only; the job outcome already stands
            logger.warning(
                "Job history write failed | key=%s task=%s error=%s",
                key, record.task_id, exc,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def recent_completed(self, limit: int | None = None) -> list[JobRecord]:
        return self._read(self.completed_key, limit or self._completed_limit)

    def recent_failed(self, limit: int | None = None) -> list[JobRecord]:
        return self._read(self.failed_key, limit or self._failed_limit)

    def _read(self, key: str, limit: int) -> list[JobRecord]:
        raw = self._client.lrange(key, 0, limit - 1)
        return [JobRecord.model_validate_json(item) for item in raw]

    def close(self) -> None:
        self._client.close()
