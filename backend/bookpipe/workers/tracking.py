"""
Per-job bookkeeping in Redis that Celery does not keep for us.

Delivery counts
    bookpipe:jobs:deliveries:<task_id>   INCR on every delivery, including
    redeliveries after a worker crash (which leave request.retries as is).
    Task.retry() keeps the task id, so the count spans the job's attempts.

In-flight markers
    bookpipe:jobs:inflight:<book_id>     task id of the job currently queued
    or running for the book, with a TTL. The reconcile scanner claims the
    marker with SET NX before re-enqueueing, so a book whose job is still
    waiting in a backlog is not queued twice.

Redis errors are logged and degrade to "unknown": the delivery count falls
back to the retry counter and a failed claim skips the book until the next
scan.
"""

from __future__ import annotations

import logging
import uuid

import redis

from bookpipe.core.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "bookpipe:jobs"

# Placeholder held between a reconcile claim and the broker publish
_CLAIMED = "claimed"


class JobTracker:
    def __init__(
        self,
        client: redis.Redis,
        *,
        inflight_ttl: int = 1800,
        delivery_ttl: int = 86400,
        key_prefix:   str = DEFAULT_KEY_PREFIX,
    ) -> None:
        if inflight_ttl < 1 or delivery_ttl < 1:
            raise ValueError("tracker TTLs must be positive")
        self._client       = client
        self._inflight_ttl = inflight_ttl
        self._delivery_ttl = delivery_ttl
        self._prefix       = key_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobTracker":
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return cls(client, inflight_ttl=settings.inflight_marker_seconds)

    def delivery_key(self, task_id: str) -> str:
        return f"{self._prefix}:deliveries:{task_id}"

    def inflight_key(self, book_id: uuid.UUID | str) -> str:
        return f"{self._prefix}:inflight:{book_id}"

    # ------------------------------------------------------------------
    # Delivery counting
    # ------------------------------------------------------------------

    def count_delivery(self, task_id: str) -> int | None:
        """Record one delivery of `task_id`; returns the running count, or None."""
        key = self.delivery_key(task_id)
        try:
            pipe = self._client.pipeline()
            pipe.incr(key)
            pipe.expire(key, self._delivery_ttl)
            count, _ = pipe.execute()
        except redis.RedisError as exc:
            logger.warning("Delivery count unavailable | task=%s error=%s", task_id, exc)
            return None
        return int(count)

    def forget_deliveries(self, task_id: str) -> None:
        try:
            self._client.delete(self.delivery_key(task_id))
        except redis.RedisError as exc:
            logger.warning("Delivery count cleanup failed | task=%s error=%s", task_id, exc)

    # ------------------------------------------------------------------
    # In-flight markers
    # ------------------------------------------------------------------

    def claim(self, book_id: uuid.UUID | str) -> bool:
        """Take the book's marker only if no job holds it."""
        try:
            return bool(
                self._client.set(self.inflight_key(book_id), _CLAIMED, nx=True, ex=self._inflight_ttl)
            )
        except redis.RedisError as exc:
            logger.warning("In-flight claim failed | book=%s error=%s", book_id, exc)
            return False

    def mark_inflight(self, book_id: uuid.UUID | str, task_id: str) -> None:
        """Point the book's marker at `task_id` and restart its TTL."""
        try:
            self._client.set(self.inflight_key(book_id), task_id, ex=self._inflight_ttl)
        except redis.RedisError as exc:
            logger.warning("In-flight mark failed | book=%s task=%s error=%s", book_id, task_id, exc)

    def inflight_task(self, book_id: uuid.UUID | str) -> str | None:
        return self._client.get(self.inflight_key(book_id))

    def release(self, book_id: uuid.UUID | str, task_id: str | None = None) -> None:
        """
        Drop the book's marker. With `task_id`, only when the marker still
        names that task: a newer submission for the book keeps its marker.
        """
        key = self.inflight_key(book_id)
        try:
            if task_id is not None and self._client.get(key) != task_id:
                return
            self._client.delete(key)
        except redis.RedisError as exc:
            logger.warning("In-flight release failed | book=%s error=%s", book_id, exc)

    def close(self) -> None:
        self._client.close()
