"""
Document Processing Package
════════════════════════════

The pure half of the ingestion pipeline:

  Declared media type → Text Extraction → Normalization → Page Chunking

Modules
───────
  extractor.py  One strategy per media type (PDF, EPUB, DOCX, plain text)
                plus the shared normalization pass
  chunking.py   Greedy paragraph-aware chunker producing reading pages

Neither module touches the database, the queue or the file system; the
orchestrator in bookpipe.pipeline owns all side effects.
"""

from bookpipe.processing.chunking import PageChunker, chunk_text
from bookpipe.processing.extractor import (
    EXTRACTORS,
    ExtractionResult,
    MediaType,
    extract_text,
    normalize_text,
)

__all__ = [
    "EXTRACTORS",
    "ExtractionResult",
    "MediaType",
    "PageChunker",
    "chunk_text",
    "extract_text",
    "normalize_text",
]
