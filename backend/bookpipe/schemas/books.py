"""
Book Ingestion — Pydantic Schemas

Covers:
  - The ingestion job payload handed to the queue
  - The status projection polled by readers
  - The page read response
  - Job history records kept by the queue
  - The uniform error envelope used by the HTTP surface

Wire shape: the external API speaks camelCase (bookId, filePath, mimeType,
totalPages, hasNext); Python code uses snake_case via field aliases.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Processing pipeline state machine
# ---------------------------------------------------------------------------

class ProcessingStatus(str, Enum):
    """
    Maps to books.processing_status.
    Transitions: pending → processing → completed | failed
                 failed | completed → processing (re-ingestion)
    """
    PENDING    = "pending"
    PROCESSING = "processing"
    COMPLETED  = "completed"
    FAILED     = "failed"


STATUS_MESSAGES: dict[ProcessingStatus, str] = {
    ProcessingStatus.PENDING:    "Queued for processing...",
    ProcessingStatus.PROCESSING: "Extracting text and creating pages...",
    ProcessingStatus.COMPLETED:  "Book is ready to read!",
    ProcessingStatus.FAILED:     "Processing failed. Please contact support.",
}


def status_message(status: ProcessingStatus | str) -> str:
    return STATUS_MESSAGES[ProcessingStatus(status)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Ingestion job — the queue payload
# ---------------------------------------------------------------------------

class IngestionJob(_CamelModel):
    """
    One queued request to run the pipeline for a book.

    attempt is 1-based and owned by the queue: the worker fills it in from
    the delivery's retry counter, producers leave the default.
    """
    book_id:     UUID
    file_path:   str = Field(..., min_length=1)
    mime_type:   str = Field(..., min_length=1)
    attempt:     int = Field(1, ge=1)
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("mime_type")
    @classmethod
    def _strip_mime_params(cls, value: str) -> str:
        # "text/plain; charset=utf-8" → "text/plain"
        return value.split(";", 1)[0].strip().lower()

    def to_task_kwargs(self) -> dict[str, Any]:
        """JSON-safe kwargs for the Celery task (never raw file bytes)."""
        return {
            "book_id":     str(self.book_id),
            "file_path":   self.file_path,
            "mime_type":   self.mime_type,
            "enqueued_at": self.enqueued_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Job submission (API → queue)
# ---------------------------------------------------------------------------

class JobSubmissionRequest(_CamelModel):
    file_path: str = Field(..., min_length=1, description="Path of the durably saved upload")
    mime_type: str = Field(..., min_length=1, description="Declared media type of the upload")


class JobSubmissionResponse(_CamelModel):
    book_id: UUID
    task_id: str
    status:  ProcessingStatus
    message: str


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------

class BookStatusResponse(_CamelModel):
    """Polled by readers until status == completed."""
    id:          UUID
    title:       str
    status:      ProcessingStatus
    total_pages: int = 0
    message:     str


class BookPageResponse(_CamelModel):
    page_number:  int
    content:      str
    total_pages:  int
    has_next:     bool
    has_previous: bool


# ---------------------------------------------------------------------------
# Queue history
# ---------------------------------------------------------------------------

class JobRecord(_CamelModel):
    """One finished job kept in the bounded completed/failed history."""
    task_id:      str
    book_id:      UUID
    mime_type:    str
    attempts:     int
    outcome:      str            # "succeeded" or a FailureKind value
    total_pages:  int = 0
    error:        str | None = None
    finished_at:  datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str         = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """Uniform error envelope for all 4xx/5xx responses."""
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")
    status:     ProcessingStatus | None = None
