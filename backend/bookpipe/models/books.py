"""
SQLAlchemy ORM Models — Books & Pages

Using SQLAlchemy 2.x mapped classes for full async support. Column types are
dialect-portable (PostgreSQL in production, SQLite in the test suite).

Ownership:
  - Book rows are created by the catalog (status='pending', total_pages=0).
  - processing_status and total_pages are written ONLY by
    bookpipe.pipeline.orchestrator.BookIngestionOrchestrator.
  - Page rows are replaced wholesale by the orchestrator; never merged.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from bookpipe.schemas.books import ProcessingStatus


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ProcessingStatus)


# ---------------------------------------------------------------------------
# Book model — books
# ---------------------------------------------------------------------------

class Book(Base):
    """
    One uploaded book and where it is in the ingestion pipeline.

    State machine (processing_status column):
        pending    — file saved, job queued, no worker has picked it up
        processing — a worker is extracting / chunking / persisting
        completed  — pages stored; total_pages == count(pages)
        failed     — last attempt failed; a fresh job moves it back to processing
    """

    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint(
            f"processing_status IN ({_STATUS_VALUES})",
            name="books_processing_status_check",
        ),
        CheckConstraint("total_pages >= 0", name="books_total_pages_check"),
        Index("idx_books_processing_status", "processing_status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    title:       Mapped[str] = mapped_column(String(255), nullable=False)
    author_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Saved upload, written by the upload layer before the job is queued
    file_path: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Path of the durably saved upload on the shared volume",
    )
    mime_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Declared media type recorded at upload",
    )
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Ingestion state machine
    processing_status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=ProcessingStatus.PENDING.value,
        server_default=ProcessingStatus.PENDING.value,
    )
    total_pages: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    pages: Mapped[list["Page"]] = relationship(
        back_populates="book",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Page.page_number",
    )

    def __repr__(self) -> str:
        return (
            f"<Book id={self.id} status={self.processing_status} "
            f"pages={self.total_pages} title={self.title!r}>"
        )


# ---------------------------------------------------------------------------
# Page model — book_pages
# ---------------------------------------------------------------------------

class Page(Base):
    """One reading page; (book_id, page_number) is unique and 1-based."""

    __tablename__ = "book_pages"
    __table_args__ = (
        UniqueConstraint("book_id", "page_number", name="uq_book_pages_position"),
        CheckConstraint("page_number >= 1", name="book_pages_page_number_check"),
        Index("idx_book_pages_book_id", "book_id"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    book_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
    )
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    content:     Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    book: Mapped[Book] = relationship(back_populates="pages")

    def __repr__(self) -> str:
        return f"<Page book={self.book_id} number={self.page_number} chars={len(self.content)}>"
