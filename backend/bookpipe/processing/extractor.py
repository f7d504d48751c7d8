"""
Text Extraction — one strategy per declared media type
═══════════════════════════════════════════════════════

Design: Strategy + lookup table
───────────────────────────────
  Each supported media type maps to exactly one BaseTextExtractor in
  EXTRACTORS. Dispatch is by the DECLARED media type only; the bytes are
  never sniffed. Unknown types fail closed with UnsupportedFormat before
  any parsing happens.

    application/pdf                 → PdfExtractor   (pypdf, page order)
    application/epub+zip            → EpubExtractor  (OPF spine order, markup stripped)
    application/vnd.openxml…document → DocxExtractor  (python-docx, raw paragraph text)
    text/plain                      → PlainTextExtractor (UTF-8)

Contract
────────
  extract_text(data, media_type) → ExtractionResult
    raises UnsupportedFormat  — no strategy for the declared type
    raises CorruptInput       — the strategy's parser failed (cause chained)
    raises EmptyOrTooShort    — normalized text shorter than min_chars

  Strategies are pure: bytes in, text out. No file-system or network I/O;
  the orchestrator reads the file and hands over the buffer.

Normalization (applied to every strategy's output)
──────────────────────────────────────────────────
  CRLF / CR → LF; runs of 2+ non-newline whitespace → one space;
  3+ newlines → exactly one blank line; trim both ends.
"""

from __future__ import annotations

import io
import logging
import posixpath
import re
import time
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from urllib.parse import unquote
from xml.etree import ElementTree

from bs4 import BeautifulSoup

from bookpipe.core.exceptions import (
    CorruptInput,
    EmptyOrTooShort,
    PipelineError,
    UnsupportedFormat,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

# Guards against "successfully" parsing a file with no usable text
# (image-only PDFs, empty documents). Overridable via settings.min_text_chars.
MIN_TEXT_CHARS = 100

# Blank line between pages (PDF), content documents (EPUB) and paragraphs (DOCX)
UNIT_SEPARATOR = "\n\n"

_LINE_BREAKS   = re.compile(r"\r\n?")
_INLINE_WS_RUN = re.compile(r"[^\S\n]{2,}")
_NEWLINE_RUN   = re.compile(r"\n{3,}")


class MediaType(str, Enum):
    PDF  = "application/pdf"
    EPUB = "application/epub+zip"
    DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    TEXT = "text/plain"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class RawText:
    """
    Un-normalized strategy output.

    units : number of pages (PDF), content documents (EPUB),
            blocks (DOCX) or 1 (plain text)
    """
    text:  str
    units: int


@dataclass
class ExtractionResult:
    """
    Normalized extraction output handed to the chunker.

    text          : normalized text, at least min_chars long
    media_type    : the declared type that selected the strategy
    strategy_used : "pypdf" | "epub-spine" | "python-docx" | "utf-8"
    unit_count    : pages / documents / blocks read by the strategy
    total_chars   : len(text)
    elapsed_ms    : wall time for decode + normalize (ms)
    """
    text:          str
    media_type:    MediaType
    strategy_used: str
    unit_count:    int
    total_chars:   int
    elapsed_ms:    float


# ---------------------------------------------------------------------------
# Abstract strategy
# ---------------------------------------------------------------------------

class BaseTextExtractor(ABC):
    """
    Abstract base for extraction strategies.

    Implementations:
      - Accept raw file bytes (never a path)
      - Let parser exceptions propagate; extract_text() wraps them in
        CorruptInput with the original exception as cause
      - Hold no mutable state, so one instance serves every worker thread
    """

    media_type: MediaType

    @property
    @abstractmethod
    def strategy_name(self) -> str:
        """Unique name for logging."""

    @abstractmethod
    def extract(self, data: bytes) -> RawText:
        """Decode `data` into text. May raise any parser exception."""


# ---------------------------------------------------------------------------
# PDF — pypdf
# ---------------------------------------------------------------------------

class PdfExtractor(BaseTextExtractor):
    """
    Concatenates the text runs of every page in page order.

    Runs come out in pypdf's native content-stream order: no column or
    table reconstruction. Image-only pages yield empty strings, which the
    minimum-length check downstream turns into EmptyOrTooShort.
    """

    media_type = MediaType.PDF

    @property
    def strategy_name(self) -> str:
        return "pypdf"

    def extract(self, data: bytes) -> RawText:
        from pypdf import PdfReader  # imported here to keep module import cheap

        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted:
            # Owner-password-only PDFs open with an empty user password
            reader.decrypt("")
        pages = [page.extract_text() or "" for page in reader.pages]
        return RawText(text=UNIT_SEPARATOR.join(pages), units=len(pages))


# ---------------------------------------------------------------------------
# EPUB — OPF spine order, markup stripped
# ---------------------------------------------------------------------------

_CONTAINER_PATH = "META-INF/container.xml"
_EPUB_NS = {
    "c":   "urn:oasis:names:tc:opendocument:xmlns:container",
    "opf": "http://www.idpf.org/2007/opf",
}


class EpubExtractor(BaseTextExtractor):
    """
    Walks the package's reading order ("spine") and strips markup.

    Reads the ZIP in memory:
      META-INF/container.xml → rootfile (the OPF package document)
      OPF manifest           → id → href
      OPF spine              → ordered itemrefs → content documents

    Every tag becomes a single space, so "<p>one</p><p>two</p>" yields
    "one two", never "onetwo". <script>/<style> bodies are dropped and
    HTML entities decoded.
    """

    media_type = MediaType.EPUB

    @property
    def strategy_name(self) -> str:
        return "epub-spine"

    def extract(self, data: bytes) -> RawText:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            opf_path = self._find_package_document(archive)
            documents = [
                _strip_markup(archive.read(path))
                for path in self._spine_paths(archive, opf_path)
            ]
        return RawText(text=UNIT_SEPARATOR.join(documents), units=len(documents))

    @staticmethod
    def _find_package_document(archive: zipfile.ZipFile) -> str:
        container = ElementTree.fromstring(archive.read(_CONTAINER_PATH))
        rootfile = container.find(".//c:rootfile", _EPUB_NS)
        if rootfile is None or not rootfile.get("full-path"):
            raise ValueError("EPUB container.xml declares no rootfile")
        return rootfile.get("full-path")

    @staticmethod
    def _spine_paths(archive: zipfile.ZipFile, opf_path: str) -> list[str]:
        package = ElementTree.fromstring(archive.read(opf_path))
        base_dir = posixpath.dirname(opf_path)

        manifest = {
            item.get("id"): item.get("href")
            for item in package.iterfind("opf:manifest/opf:item", _EPUB_NS)
        }

        paths: list[str] = []
        for itemref in package.iterfind("opf:spine/opf:itemref", _EPUB_NS):
            idref = itemref.get("idref")
            href = manifest.get(idref)
            if not href:
                logger.warning("EPUB spine references unknown manifest id=%s", idref)
                continue
            href = unquote(href).split("#", 1)[0]
            paths.append(posixpath.normpath(posixpath.join(base_dir, href)))

        if not paths:
            raise ValueError("EPUB spine is empty")
        return paths


def _strip_markup(markup: bytes) -> str:
    """Replace every tag of an (X)HTML document with one space."""
    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    root = soup.body or soup
    return root.get_text(separator=" ")


# ---------------------------------------------------------------------------
# DOCX — python-docx
# ---------------------------------------------------------------------------

class DocxExtractor(BaseTextExtractor):
    """
    Raw paragraph text in document order; styling is discarded.

    Tables are flattened row by row (cells joined by a space) so their text
    is not lost. Each block becomes its own paragraph for the chunker.
    """

    media_type = MediaType.DOCX

    @property
    def strategy_name(self) -> str:
        return "python-docx"

    def extract(self, data: bytes) -> RawText:
        import docx
        from docx.table import Table

        document = docx.Document(io.BytesIO(data))
        blocks: list[str] = []
        for block in document.iter_inner_content():
            if isinstance(block, Table):
                for row in block.rows:
                    blocks.append(" ".join(cell.text for cell in row.cells))
            else:
                blocks.append(block.text)
        return RawText(text=UNIT_SEPARATOR.join(blocks), units=len(blocks))


# ---------------------------------------------------------------------------
# Plain text
# ---------------------------------------------------------------------------

class PlainTextExtractor(BaseTextExtractor):
    """UTF-8, verbatim. A leading byte-order mark is dropped."""

    media_type = MediaType.TEXT

    @property
    def strategy_name(self) -> str:
        return "utf-8"

    def extract(self, data: bytes) -> RawText:
        return RawText(text=data.decode("utf-8-sig"), units=1)


# ---------------------------------------------------------------------------
# Lookup table + entry point
# ---------------------------------------------------------------------------

EXTRACTORS: dict[MediaType, BaseTextExtractor] = {
    MediaType.PDF:  PdfExtractor(),
    MediaType.EPUB: EpubExtractor(),
    MediaType.DOCX: DocxExtractor(),
    MediaType.TEXT: PlainTextExtractor(),
}


def get_extractor(media_type: str) -> BaseTextExtractor:
    """Resolve the strategy for a declared media type, failing closed."""
    declared = (media_type or "").split(";", 1)[0].strip().lower()
    try:
        return EXTRACTORS[MediaType(declared)]
    except (ValueError, KeyError):
        raise UnsupportedFormat(media_type) from None


def normalize_text(text: str) -> str:
    """
    Collapse line endings and whitespace so every strategy hands the chunker
    the same shape: LF only, paragraphs separated by exactly one blank line,
    no double spaces, no leading/trailing whitespace.
    """
    text = _LINE_BREAKS.sub("\n", text)
    text = _INLINE_WS_RUN.sub(" ", text)
    text = _NEWLINE_RUN.sub("\n\n", text)
    return text.strip()


def extract_text(
    data:       bytes,
    media_type: str,
    *,
    min_chars:  int = MIN_TEXT_CHARS,
) -> ExtractionResult:
    """
    Run the strategy for `media_type` over `data` and normalize the output.

    Blocking and CPU-bound for large files; async callers should run it in
    an executor.
    """
    extractor = get_extractor(media_type)
    t0 = time.monotonic()

    try:
        raw = extractor.extract(data)
    except PipelineError:
        raise
    except Exception as exc:
        logger.warning(
            "Extraction failed | strategy=%s bytes=%d error=%s",
            extractor.strategy_name, len(data), exc,
        )
        raise CorruptInput(extractor.media_type.value, exc) from exc

    text = normalize_text(raw.text)
    elapsed_ms = (time.monotonic() - t0) * 1000

    if len(text) < min_chars:
        logger.warning(
            "Extraction too short | strategy=%s units=%d chars=%d min=%d",
            extractor.strategy_name, raw.units, len(text), min_chars,
        )
        raise EmptyOrTooShort(len(text), min_chars)

    logger.info(
        "Extraction | strategy=%s units=%d chars=%d elapsed_ms=%.0f",
        extractor.strategy_name, raw.units, len(text), elapsed_ms,
    )
    return ExtractionResult(
        text=text,
        media_type=extractor.media_type,
        strategy_used=extractor.strategy_name,
        unit_count=raw.units,
        total_chars=len(text),
        elapsed_ms=elapsed_ms,
    )
