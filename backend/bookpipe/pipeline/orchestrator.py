"""
Book Ingestion Orchestrator — the worker-side driver for one job
═════════════════════════════════════════════════════════════════

Pipeline for a delivered IngestionJob:

  ┌──────────────────────────────────────────────────────────────────┐
  │ 1. books.processing_status → processing  (unconditional)         │
  │ 2. read file bytes → extract_text()      (inline, main thread)    │
  │ 3. PageChunker.chunk()                                           │
  │ 4. ONE transaction, book row locked FOR UPDATE:                  │
  │      DELETE book_pages WHERE book_id                             │
  │      INSERT new pages 1..N                                       │
  │      books.processing_status → completed, total_pages = N        │
  │ 5. return JobOutcome.success                                     │
  └──────────────────────────────────────────────────────────────────┘

Any failure in 2–4 → books.processing_status → failed (total_pages left
as is) and a JobOutcome carrying the FailureKind. run() never raises for
pipeline errors: the queue decides about retries from the tagged outcome.

This class is the single writer of processing_status and total_pages.
The row lock in step 4 serialises two jobs for the same book that reach
the replace step together; the later one wins with a complete page set.

Step 2 runs on the loop's own thread (each job owns its loop), so a Celery
soft time limit, raised by signal on the main thread, interrupts the parser
and is classified as TIMEOUT by run().
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookpipe.core.config import Settings
from bookpipe.core.exceptions import (
    BookNotFound,
    FailureKind,
    JobTimeout,
    PipelineError,
    StorageFailure,
)
from bookpipe.db.session import session_scope
from bookpipe.models.books import Book, Page
from bookpipe.processing.chunking import PageChunker
from bookpipe.processing.extractor import ExtractionResult, extract_text
from bookpipe.schemas.books import IngestionJob, ProcessingStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

# Advisory progress checkpoints (0–100); no effect on correctness
PROGRESS_STARTED   = 10
PROGRESS_EXTRACTED = 50
PROGRESS_CHUNKED   = 70
PROGRESS_DONE      = 100


# ---------------------------------------------------------------------------
# Tagged result handed back to the queue
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class JobOutcome:
    book_id:     uuid.UUID
    failure:     FailureKind | None = None
    message:     str | None = None
    total_pages: int = 0
    elapsed_ms:  float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @property
    def label(self) -> str:
        return "succeeded" if self.failure is None else self.failure.value

    @classmethod
    def success(cls, book_id: uuid.UUID, total_pages: int, elapsed_ms: float) -> "JobOutcome":
        return cls(book_id=book_id, total_pages=total_pages, elapsed_ms=elapsed_ms)

    @classmethod
    def failed(
        cls, book_id: uuid.UUID, kind: FailureKind, message: str, elapsed_ms: float,
    ) -> "JobOutcome":
        return cls(book_id=book_id, failure=kind, message=message, elapsed_ms=elapsed_ms)

    def as_dict(self) -> dict[str, Any]:
        return {
            "book_id":     str(self.book_id),
            "outcome":     self.label,
            "total_pages": self.total_pages,
            "message":     self.message,
            "elapsed_ms":  round(self.elapsed_ms, 1),
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class BookIngestionOrchestrator:
    """
    One instance per worker process; safe to reuse across jobs.

    Constructor args:
        session_factory : async_sessionmaker bound to the books database
        words_per_page  : chunker page budget
        min_text_chars  : extraction minimum before EmptyOrTooShort
        timeout_errors  : exception types that mean "wall clock exceeded"
                          (the Celery task passes SoftTimeLimitExceeded)
        extractor       : injectable for tests; defaults to extract_text
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        words_per_page: int = 500,
        min_text_chars: int = 100,
        timeout_errors: tuple[type[BaseException], ...] = (TimeoutError,),
        extractor: Callable[..., ExtractionResult] = extract_text,
    ) -> None:
        self._session_factory = session_factory
        self._chunker        = PageChunker(words_per_page)
        self._min_text_chars = min_text_chars
        self._timeout_errors = timeout_errors
        self._extract        = extractor

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        **kwargs: Any,
    ) -> "BookIngestionOrchestrator":
        return cls(
            session_factory,
            words_per_page=settings.words_per_page,
            min_text_chars=settings.min_text_chars,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        job: IngestionJob,
        progress: ProgressCallback | None = None,
    ) -> JobOutcome:
        t0 = time.monotonic()
        book_id = job.book_id
        logger.info(
            "Ingest start | book=%s attempt=%d mime=%s file=%s",
            book_id, job.attempt, job.mime_type, job.file_path,
        )

        try:
            await self._set_status(book_id, ProcessingStatus.PROCESSING)
            _report(progress, PROGRESS_STARTED)

            # Read and parse on this thread: a Celery soft time limit is raised
            # here, inside the parser, and lands in the except clause below
            data = self._read_source(job.file_path)
            extraction = self._extract(data, job.mime_type, min_chars=self._min_text_chars)
            _report(progress, PROGRESS_EXTRACTED)

            pages = self._chunker.chunk(extraction.text, book_id=book_id)
            _report(progress, PROGRESS_CHUNKED)

            await self._replace_pages(book_id, pages)
            _report(progress, PROGRESS_DONE)

        except BookNotFound as exc:
            # No row to mark failed; nothing else to do
            logger.error("Ingest aborted | book=%s reason=%s", book_id, exc.message)
            return JobOutcome.failed(book_id, exc.kind, exc.message, _ms_since(t0))

        except Exception as exc:
            error = self._classify(exc)
            logger.error(
                "Ingest failed | book=%s attempt=%d kind=%s error=%s",
                book_id, job.attempt, error.kind.value, error.message,
                exc_info=error.kind in (FailureKind.UNEXPECTED, FailureKind.STORAGE_FAILURE),
            )
            await self._mark_failed(book_id)
            return JobOutcome.failed(book_id, error.kind, error.message, _ms_since(t0))

        elapsed = _ms_since(t0)
        logger.info(
            "Ingest complete | book=%s pages=%d chars=%d strategy=%s elapsed_ms=%.0f",
            book_id, len(pages), extraction.total_chars, extraction.strategy_used, elapsed,
        )
        return JobOutcome.success(book_id, len(pages), elapsed)

    async def abort(self, job: IngestionJob, error: PipelineError) -> JobOutcome:
        """
        Mark the book failed for an error that escaped run().

        A Celery soft time limit is delivered as a signal; when it lands
        while the event loop is idle it unwinds asyncio.run() instead of
        the coroutine, so the task calls this to keep the status honest.
        """
        logger.error(
            "Ingest aborted | book=%s attempt=%d kind=%s error=%s",
            job.book_id, job.attempt, error.kind.value, error.message,
        )
        await self._mark_failed(job.book_id)
        return JobOutcome.failed(job.book_id, error.kind, error.message, 0.0)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _read_source(self, file_path: str) -> bytes:
        try:
            return Path(file_path).read_bytes()
        except OSError as exc:
            raise StorageFailure(f"Cannot read source file {file_path}: {exc}", cause=exc) from exc

    async def _set_status(self, book_id: uuid.UUID, status: ProcessingStatus) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    update(Book)
                    .where(Book.id == book_id)
                    .values(processing_status=status.value)
                )
                if result.rowcount == 0:
                    raise BookNotFound(book_id)
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Status update to {status.value} failed: {exc}", cause=exc) from exc

    async def _replace_pages(self, book_id: uuid.UUID, pages: list[str]) -> None:
        """Delete + insert + completed, atomically, under a book row lock."""
        try:
            async with session_scope(self._session_factory) as session:
                locked = await session.execute(
                    select(Book.id).where(Book.id == book_id).with_for_update()
                )
                if locked.scalar_one_or_none() is None:
                    raise BookNotFound(book_id)

                await session.execute(delete(Page).where(Page.book_id == book_id))
                if pages:
                    await session.execute(
                        insert(Page),
                        [
                            {"book_id": book_id, "page_number": number, "content": content}
                            for number, content in enumerate(pages, start=1)
                        ],
                    )
                await session.execute(
                    update(Book)
                    .where(Book.id == book_id)
                    .values(
                        processing_status=ProcessingStatus.COMPLETED.value,
                        total_pages=len(pages),
                    )
                )
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Page replacement failed: {exc}", cause=exc) from exc

    async def _mark_failed(self, book_id: uuid.UUID) -> None:
        try:
            await self._set_status(book_id, ProcessingStatus.FAILED)
        except PipelineError as exc:
            # The outcome still reports failure; reconcile picks the book up later
            logger.exception("Could not mark book failed | book=%s error=%s", book_id, exc.message)

    def _classify(self, exc: Exception) -> PipelineError:
        if isinstance(exc, PipelineError):
            return exc
        if isinstance(exc, self._timeout_errors):
            return JobTimeout(f"Job exceeded its time limit: {exc!r}", cause=exc)
        return PipelineError(f"Unexpected error: {exc!r}", cause=exc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _report(progress: ProgressCallback | None, value: int) -> None:
    if progress is None:
        return
    try:
        progress(value)
    except Exception as exc:
        # Progress is advisory; a broken reporter never fails the job
        logger.debug("Progress report dropped | value=%d error=%s", value, exc)


def _ms_since(t0: float) -> float:
    return (time.monotonic() - t0) * 1000
