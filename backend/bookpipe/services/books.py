"""
Book Service — catalog helper, read path and job submission

Read path (never mutates state):
  get_book_status  → { id, title, status, totalPages, message }
  get_book_page    → one page + hasNext / hasPrevious; refuses while the
                     book is not completed

Submission:
  submit_ingestion → verify the book exists, record the submitted file on
                     the catalog row, enqueue an IngestionJob on the given
                     JobQueueHandle. The status stays as it is: only the
                     orchestrator moves processing_status.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookpipe.core.exceptions import (
    BookNotFoundError,
    BookStillProcessingError,
    PageNotFoundError,
)
from bookpipe.models.books import Book, Page
from bookpipe.schemas.books import (
    BookPageResponse,
    BookStatusResponse,
    IngestionJob,
    JobSubmissionResponse,
    ProcessingStatus,
    status_message,
)
from bookpipe.workers.queue import JobQueueHandle

logger = logging.getLogger(__name__)


async def create_book(
    session: AsyncSession,
    *,
    title:       str,
    file_path:   str,
    mime_type:   str,
    author_name: str = "",
    file_size:   int = 0,
) -> Book:
    """Insert a catalog row in 'pending'; the caller enqueues the job afterwards."""
    book = Book(
        title=title,
        author_name=author_name,
        file_path=file_path,
        mime_type=mime_type,
        file_size=file_size,
        processing_status=ProcessingStatus.PENDING.value,
        total_pages=0,
    )
    session.add(book)
    await session.flush()
    logger.info("Book created | book=%s title=%r mime=%s", book.id, title, mime_type)
    return book


async def _load_book(session: AsyncSession, book_id: uuid.UUID) -> Book:
    result = await session.execute(select(Book).where(Book.id == book_id))
    book = result.scalars().first()
    if book is None:
        raise BookNotFoundError(book_id)
    return book


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------

async def get_book_status(session: AsyncSession, book_id: uuid.UUID) -> BookStatusResponse:
    book = await _load_book(session, book_id)
    status = ProcessingStatus(book.processing_status)
    return BookStatusResponse(
        id=book.id,
        title=book.title,
        status=status,
        total_pages=book.total_pages,
        message=status_message(status),
    )


async def get_book_page(
    session: AsyncSession,
    book_id: uuid.UUID,
    page_number: int,
) -> BookPageResponse:
    book = await _load_book(session, book_id)
    if book.processing_status != ProcessingStatus.COMPLETED.value:
        raise BookStillProcessingError(book_id, book.processing_status)

    # Bounds come from total_pages so a torn page set never serves a stale page
    if page_number < 1 or page_number > book.total_pages:
        raise PageNotFoundError(book_id, page_number)

    result = await session.execute(
        select(Page.content).where(
            Page.book_id == book_id,
            Page.page_number == page_number,
        )
    )
    content = result.scalar_one_or_none()
    if content is None:
        logger.warning(
            "Page row missing for completed book | book=%s page=%d total=%d",
            book_id, page_number, book.total_pages,
        )
        raise PageNotFoundError(book_id, page_number)

    return BookPageResponse(
        page_number=page_number,
        content=content,
        total_pages=book.total_pages,
        has_next=page_number < book.total_pages,
        has_previous=page_number > 1,
    )


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

async def submit_ingestion(
    queue: JobQueueHandle,
    session: AsyncSession,
    book_id: uuid.UUID,
    file_path: str,
    mime_type: str,
) -> JobSubmissionResponse:
    """
    Enqueue a job for an existing book.

    The media type is passed through unfiltered; an unsupported type fails
    inside the pipeline like any other extraction error.
    """
    book = await _load_book(session, book_id)
    job = IngestionJob(book_id=book.id, file_path=file_path, mime_type=mime_type)

    # Catalog fields, not status: reconcile re-runs use what is recorded here
    book.file_path = job.file_path
    book.mime_type = job.mime_type
    await session.flush()

    # Broker publish is blocking I/O; keep it off the event loop
    loop = asyncio.get_running_loop()
    task_id = await loop.run_in_executor(None, queue.enqueue, job)

    status = ProcessingStatus(book.processing_status)
    logger.info("Ingestion submitted | book=%s task_id=%s status=%s", book.id, task_id, status.value)
    return JobSubmissionResponse(
        book_id=book.id,
        task_id=task_id,
        status=status,
        message=status_message(status),
    )
