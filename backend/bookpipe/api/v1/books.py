"""
Books API Router

GET  /api/v1/books/{book_id}/status             → status projection (polled)
GET  /api/v1/books/{book_id}/pages/{page_number} → one page, completed books only
POST /api/v1/books/{book_id}/ingest             → enqueue an ingestion job (202)

Read-path errors (unknown book, still processing, page out of range) are
raised by the service layer and mapped to the error envelope in main.py.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, status

from bookpipe.api.dependencies import DBSession, JobQueue
from bookpipe.schemas.books import (
    BookPageResponse,
    BookStatusResponse,
    ErrorResponse,
    JobSubmissionRequest,
    JobSubmissionResponse,
)
from bookpipe.services import books as book_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["Books"])


@router.get(
    "/{book_id}/status",
    response_model=BookStatusResponse,
    summary="Poll ingestion status",
    responses={404: {"model": ErrorResponse}},
)
async def get_book_status(book_id: UUID, db: DBSession) -> BookStatusResponse:
    return await book_service.get_book_status(db, book_id)


@router.get(
    "/{book_id}/pages/{page_number}",
    response_model=BookPageResponse,
    summary="Read one page",
    responses={
        404: {"model": ErrorResponse, "description": "Unknown book or page out of range"},
        409: {"model": ErrorResponse, "description": "Book is not completed yet"},
    },
)
async def get_book_page(book_id: UUID, page_number: int, db: DBSession) -> BookPageResponse:
    return await book_service.get_book_page(db, book_id, page_number)


@router.post(
    "/{book_id}/ingest",
    response_model=JobSubmissionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue an ingestion job for a saved file",
    description=(
        "The file must already be durably saved at filePath. "
        "Returns 202 immediately; poll GET /books/{id}/status for completion."
    ),
    responses={404: {"model": ErrorResponse}},
)
async def ingest_book(
    book_id: UUID,
    body: JobSubmissionRequest,
    db: DBSession,
    queue: JobQueue,
) -> JobSubmissionResponse:
    return await book_service.submit_ingestion(
        queue, db, book_id, body.file_path, body.mime_type,
    )
