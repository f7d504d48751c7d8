"""
Error taxonomy for the ingestion pipeline and the read path.

Pipeline errors carry a FailureKind so the orchestrator can hand the queue a
tagged outcome instead of a bare exception. The queue's retry policy only
ever looks at the kind, never at exception types.
"""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    UNSUPPORTED_FORMAT = "unsupported_format"
    CORRUPT_INPUT      = "corrupt_input"
    EMPTY_OR_TOO_SHORT = "empty_or_too_short"
    STORAGE_FAILURE    = "storage_failure"
    TIMEOUT            = "timeout"
    BOOK_NOT_FOUND     = "book_not_found"
    WORKER_LOST        = "worker_lost"
    UNEXPECTED         = "unexpected"


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------

class PipelineError(Exception):
    """Base for every failure raised inside one ingestion run."""

    kind: FailureKind = FailureKind.UNEXPECTED

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class UnsupportedFormat(PipelineError):
    kind = FailureKind.UNSUPPORTED_FORMAT

    def __init__(self, media_type: str) -> None:
        super().__init__(f"No extraction strategy for media type '{media_type}'")
        self.media_type = media_type


class CorruptInput(PipelineError):
    """A supported format failed to decode; `cause` holds the parser error."""

    kind = FailureKind.CORRUPT_INPUT

    def __init__(self, media_type: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to decode {media_type} document: {cause}",
            cause=cause,
        )
        self.media_type = media_type


class EmptyOrTooShort(PipelineError):
    kind = FailureKind.EMPTY_OR_TOO_SHORT

    def __init__(self, length: int, minimum: int) -> None:
        super().__init__(
            f"Extracted text is too short or empty ({length} < {minimum} chars)"
        )
        self.length = length
        self.minimum = minimum


class StorageFailure(PipelineError):
    kind = FailureKind.STORAGE_FAILURE


class JobTimeout(PipelineError):
    kind = FailureKind.TIMEOUT


class WorkerLost(PipelineError):
    """The job's worker died mid-run on every delivery the policy allows."""

    kind = FailureKind.WORKER_LOST


class BookNotFound(PipelineError):
    kind = FailureKind.BOOK_NOT_FOUND

    def __init__(self, book_id: object) -> None:
        super().__init__(f"Book {book_id} does not exist")
        self.book_id = book_id


class AttemptsExhausted(Exception):
    """Queue-level terminal state: the job will not be redelivered again."""

    def __init__(self, book_id: object, attempts: int, last_failure: str) -> None:
        # args stay positional so Celery's JSON result backend can rebuild it
        super().__init__(str(book_id), attempts, last_failure)
        self.book_id = book_id
        self.attempts = attempts
        self.last_failure = last_failure

    def __str__(self) -> str:
        return (
            f"Ingestion of book {self.book_id} failed after "
            f"{self.attempts} attempt(s): {self.last_failure}"
        )


# ---------------------------------------------------------------------------
# Read-path errors (mapped to HTTP responses by the API layer)
# ---------------------------------------------------------------------------

class BookNotFoundError(LookupError):
    def __init__(self, book_id: object) -> None:
        super().__init__(f"Book '{book_id}' was not found")
        self.book_id = book_id


class BookStillProcessingError(Exception):
    def __init__(self, book_id: object, status: str) -> None:
        super().__init__(f"Book '{book_id}' is still being processed (status={status})")
        self.book_id = book_id
        self.status = status


class PageNotFoundError(LookupError):
    def __init__(self, book_id: object, page_number: int) -> None:
        super().__init__(f"Page {page_number} of book '{book_id}' was not found")
        self.book_id = book_id
        self.page_number = page_number
