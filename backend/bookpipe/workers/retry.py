"""
Retry policy for ingestion jobs.

A pure function of (attempt number, failure kind): no clocks, no broker,
no exception types. The Celery task asks the policy what to do and only
then calls Task.retry() with the returned countdown.

Defaults: 3 attempts, exponential backoff 2 s → 4 s.

    attempt 1 fails → retry in 2 s
    attempt 2 fails → retry in 4 s
    attempt 3 fails → terminal (AttemptsExhausted)

Failure kinds are retried uniformly, including ones that cannot succeed on
redelivery of the same file (unsupported format, too-short text). The one
exception is a missing book row: there is nothing left to ingest into.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from bookpipe.core.config import Settings
from bookpipe.core.exceptions import FailureKind


@dataclass(frozen=True)
class RetryDecision:
    retry:  bool
    delay:  float = 0.0    # seconds until redelivery; 0 when not retrying
    reason: str = ""


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay:   float = 2.0
    non_retryable: frozenset[FailureKind] = field(
        default_factory=lambda: frozenset({FailureKind.BOOK_NOT_FOUND})
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.ingest_max_attempts,
            base_delay=settings.ingest_retry_base_delay,
        )

    def backoff(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return self.base_delay * (2 ** (attempt - 1))

    def decide(self, attempt: int, failure: FailureKind | None) -> RetryDecision:
        if failure is None:
            return RetryDecision(retry=False, reason="succeeded")
        if failure in self.non_retryable:
            return RetryDecision(retry=False, reason=f"{failure.value} is not retryable")
        if attempt >= self.max_attempts:
            return RetryDecision(
                retry=False,
                reason=f"attempts exhausted ({attempt}/{self.max_attempts})",
            )
        return RetryDecision(
            retry=True,
            delay=self.backoff(attempt),
            reason=f"{failure.value} on attempt {attempt}/{self.max_attempts}",
        )
