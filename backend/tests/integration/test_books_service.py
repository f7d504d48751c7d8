"""
Integration Tests — Read path and job submission (service layer)
"""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy import update

from bookpipe.core.exceptions import (
    BookNotFoundError,
    BookStillProcessingError,
    PageNotFoundError,
)
from bookpipe.db.session import session_scope
from bookpipe.models.books import Book
from bookpipe.pipeline.orchestrator import BookIngestionOrchestrator
from bookpipe.schemas.books import IngestionJob, ProcessingStatus
from bookpipe.services.books import get_book_page, get_book_status, submit_ingestion
from tests.builders import fetch_book, long_text


async def _ingested_book(make_book, session_factory, tmp_path, paragraphs: int = 3):
    """A completed book with one page per 400-word paragraph."""
    path = tmp_path / "book.txt"
    path.write_text(long_text(paragraphs, 400), encoding="utf-8")
    book = await make_book(file_path=str(path))
    await BookIngestionOrchestrator(session_factory).run(
        IngestionJob(book_id=book.id, file_path=str(path), mime_type="text/plain")
    )
    return await fetch_book(session_factory, book.id)


async def _set_status(session_factory, book_id, status: ProcessingStatus) -> None:
    async with session_scope(session_factory) as session:
        await session.execute(
            update(Book).where(Book.id == book_id).values(processing_status=status.value)
        )


@pytest.mark.integration
class TestBookStatus:

    async def test_new_book_is_pending(self, make_book, db_session):
        book = await make_book(title="Dune")

        result = await get_book_status(db_session, book.id)

        assert result.status is ProcessingStatus.PENDING
        assert result.title == "Dune"
        assert result.total_pages == 0
        assert result.message == "Queued for processing..."

    @pytest.mark.parametrize("status, message", [
        (ProcessingStatus.PROCESSING, "Extracting text and creating pages..."),
        (ProcessingStatus.FAILED,     "Processing failed. Please contact support."),
    ])
    async def test_message_follows_status(self, make_book, session_factory, db_session, status, message):
        book = await make_book()
        await _set_status(session_factory, book.id, status)

        result = await get_book_status(db_session, book.id)

        assert result.status is status
        assert result.message == message

    async def test_completed_book_reports_pages(self, make_book, session_factory, db_session, tmp_path):
        book = await _ingested_book(make_book, session_factory, tmp_path)

        result = await get_book_status(db_session, book.id)

        assert result.status is ProcessingStatus.COMPLETED
        assert result.total_pages == 3
        assert result.message == "Book is ready to read!"

    async def test_unknown_book(self, db_session):
        with pytest.raises(BookNotFoundError):
            await get_book_status(db_session, uuid.uuid4())


@pytest.mark.integration
class TestBookPages:

    async def test_navigation_flags(self, make_book, session_factory, db_session, tmp_path):
        book = await _ingested_book(make_book, session_factory, tmp_path)

        first = await get_book_page(db_session, book.id, 1)
        middle = await get_book_page(db_session, book.id, 2)
        last = await get_book_page(db_session, book.id, 3)

        assert (first.has_previous, first.has_next) == (False, True)
        assert (middle.has_previous, middle.has_next) == (True, True)
        assert (last.has_previous, last.has_next) == (True, False)
        assert first.total_pages == 3
        assert first.content.startswith("p0w0 ")
        assert last.content.startswith("p2w0 ")

    @pytest.mark.parametrize("page_number", [0, -1, 4, 99])
    async def test_out_of_range(self, make_book, session_factory, db_session, tmp_path, page_number):
        book = await _ingested_book(make_book, session_factory, tmp_path)

        with pytest.raises(PageNotFoundError):
            await get_book_page(db_session, book.id, page_number)

    @pytest.mark.parametrize("status", [
        ProcessingStatus.PENDING,
        ProcessingStatus.PROCESSING,
        ProcessingStatus.FAILED,
    ])
    async def test_refused_until_completed(self, make_book, session_factory, db_session, status):
        book = await make_book()
        await _set_status(session_factory, book.id, status)

        with pytest.raises(BookStillProcessingError) as exc_info:
            await get_book_page(db_session, book.id, 1)
        assert exc_info.value.status == status.value

    async def test_unknown_book(self, db_session):
        with pytest.raises(BookNotFoundError):
            await get_book_page(db_session, uuid.uuid4(), 1)


@pytest.mark.integration
class TestSubmitIngestion:

    async def test_enqueues_and_leaves_status_alone(self, make_book, session_factory, db_session):
        book = await make_book()
        queue = MagicMock()
        queue.enqueue.return_value = "task-123"

        response = await submit_ingestion(queue, db_session, book.id, "/data/new.pdf", "application/pdf")

        assert response.task_id == "task-123"
        assert response.status is ProcessingStatus.PENDING
        job = queue.enqueue.call_args.args[0]
        assert job.book_id == book.id
        assert job.file_path == "/data/new.pdf"
        assert job.attempt == 1
        assert (await fetch_book(session_factory, book.id)).processing_status == "pending"

    async def test_records_the_submitted_file_on_the_book(self, make_book, session_factory, db_session):
        book = await make_book(file_path="/data/old.txt", mime_type="text/plain")
        queue = MagicMock()
        queue.enqueue.return_value = "task-124"

        await submit_ingestion(queue, db_session, book.id, "/data/new.epub", "application/epub+zip")
        await db_session.commit()

        stored = await fetch_book(session_factory, book.id)
        assert stored.file_path == "/data/new.epub"
        assert stored.mime_type == "application/epub+zip"
        assert stored.processing_status == "pending"

    async def test_unknown_book_is_not_enqueued(self, db_session):
        queue = MagicMock()

        with pytest.raises(BookNotFoundError):
            await submit_ingestion(queue, db_session, uuid.uuid4(), "/a.txt", "text/plain")
        queue.enqueue.assert_not_called()
