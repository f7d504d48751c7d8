"""
Page Chunker  —  paragraph-aware, word-bounded reading pages
═════════════════════════════════════════════════════════════

Input is the normalized text from the extractor: paragraphs separated by
one blank line. Output is the ordered list of page bodies.

Algorithm (greedy, single pass)
───────────────────────────────
  1. Split on runs of two or more newlines into paragraphs (never split
     further). A line holding only spaces between two newlines is not a
     break, so such text stays one paragraph.
  2. Append each paragraph to the running page unless the running page is
     already non-empty AND the paragraph would push it past
     words_per_page; in that case flush the running page and start a new
     one with the paragraph.
  3. Flush whatever is left.

  A paragraph longer than words_per_page therefore lands on a page of its
  own: it is never dropped and never cut in half. Page boundaries may fall
  mid-sentence across paragraphs but never inside one.

Example (words_per_page=500): paragraphs of 400/500/600/300 words
  → [p1] [p2] [p3] [p4]   (400+500 > 500, 500+600 > 500, 600+300 > 500)

Pure and deterministic: same text + budget → same pages.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

DEFAULT_WORDS_PER_PAGE = 500

# Paragraphs inside one page are re-joined with a single blank line
PARAGRAPH_SEPARATOR = "\n\n"

_PARAGRAPH_BREAK = re.compile(r"\n{2,}")


def split_paragraphs(text: str) -> list[str]:
    """Paragraphs split on runs of two or more newlines, stripped, empties dropped."""
    return [p.strip() for p in _PARAGRAPH_BREAK.split(text) if p.strip()]


def count_words(text: str) -> int:
    """Whitespace-delimited tokens; empty tokens are not words."""
    return len(text.split())


def chunk_text(text: str, words_per_page: int = DEFAULT_WORDS_PER_PAGE) -> list[str]:
    """Greedy paragraph packing into pages of at most ~words_per_page words."""
    if words_per_page < 1:
        raise ValueError(f"words_per_page must be positive, got {words_per_page}")

    pages: list[str] = []
    current: list[str] = []
    current_words = 0

    for paragraph in split_paragraphs(text):
        words = count_words(paragraph)
        if current and current_words + words > words_per_page:
            pages.append(PARAGRAPH_SEPARATOR.join(current))
            current = [paragraph]
            current_words = words
        else:
            current.append(paragraph)
            current_words += words

    if current:
        pages.append(PARAGRAPH_SEPARATOR.join(current))

    return pages


class PageChunker:
    """
    Stateless wrapper binding a page budget, with a summary log line.

    Usage:
        chunker = PageChunker(words_per_page=settings.words_per_page)
        pages = chunker.chunk(extraction.text, book_id=book_id)
    """

    def __init__(self, words_per_page: int = DEFAULT_WORDS_PER_PAGE) -> None:
        if words_per_page < 1:
            raise ValueError(f"words_per_page must be positive, got {words_per_page}")
        self.words_per_page = words_per_page

    def chunk(self, text: str, *, book_id: object = "?") -> list[str]:
        pages = chunk_text(text, self.words_per_page)
        if not pages:
            logger.warning("PageChunker: empty text for book=%s", book_id)
            return pages

        word_counts = [count_words(p) for p in pages]
        logger.info(
            "PageChunker | book=%s pages=%d budget=%d avg_words=%.0f max_words=%d",
            book_id, len(pages), self.words_per_page,
            sum(word_counts) / len(pages), max(word_counts),
        )
        return pages
