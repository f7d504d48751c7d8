"""
Unit Tests — Bounded job history (fakeredis)
"""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock

import pytest
import redis

from bookpipe.schemas.books import JobRecord
from bookpipe.workers.history import JobHistory


def _record(n: int, outcome: str = "succeeded") -> JobRecord:
    return JobRecord(
        task_id=f"task-{n}",
        book_id=uuid.uuid4(),
        mime_type="text/plain",
        attempts=1,
        outcome=outcome,
        total_pages=n,
    )


@pytest.mark.unit
class TestJobHistory:

    def test_records_round_trip_newest_first(self, job_history):
        for n in range(3):
            job_history.record_completed(_record(n))

        recent = job_history.recent_completed()
        assert [r.task_id for r in recent] == ["task-2", "task-1", "task-0"]
        assert recent[0].total_pages == 2

    def test_completed_and_failed_are_separate(self, job_history):
        job_history.record_completed(_record(1))
        job_history.record_failed(_record(2, outcome="corrupt_input"))

        assert [r.task_id for r in job_history.recent_completed()] == ["task-1"]
        failed = job_history.recent_failed()
        assert [r.outcome for r in failed] == ["corrupt_input"]

    def test_retention_discards_oldest(self, fake_redis):
        history = JobHistory(fake_redis, completed_limit=3, failed_limit=2)
        for n in range(5):
            history.record_completed(_record(n))
            history.record_failed(_record(n, outcome="timeout"))

        assert [r.task_id for r in history.recent_completed()] == ["task-4", "task-3", "task-2"]
        assert [r.task_id for r in history.recent_failed()] == ["task-4", "task-3"]
        assert fake_redis.llen(history.completed_key) == 3
        assert fake_redis.llen(history.failed_key) == 2

    def test_read_limit(self, job_history):
        for n in range(10):
            job_history.record_completed(_record(n))
        assert len(job_history.recent_completed(limit=4)) == 4

    def test_stored_as_camel_case_json(self, job_history, fake_redis):
        job_history.record_completed(_record(7))
        raw = fake_redis.lindex(job_history.completed_key, 0)
        assert '"taskId":"task-7"' in raw
        assert '"totalPages":7' in raw

    def test_redis_outage_does_not_raise(self, caplog):
        client = MagicMock()
        client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")
        history = JobHistory(client)

        history.record_failed(_record(1, outcome="timeout"))

        assert "Job history write failed" in caplog.text

    def test_limits_must_be_positive(self, fake_redis):
        with pytest.raises(ValueError):
            JobHistory(fake_redis, completed_limit=0)
