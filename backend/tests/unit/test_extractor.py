"""
Unit Tests — Text Extraction
═════════════════════════════
Strategy dispatch, per-format decoding and the shared normalization pass.

Coverage targets:
  ✅ Dispatch by declared media type (parameters and case ignored)
  ✅ Unknown media type → UnsupportedFormat before decoding
  ✅ Plain text: UTF-8 verbatim, BOM dropped, invalid bytes → CorruptInput
  ✅ PDF: page text in order, garbage bytes → CorruptInput
  ✅ EPUB: spine order (not manifest order), tags become spaces, style dropped
  ✅ DOCX: paragraphs and table rows in document order
  ✅ Normalized output: no \\r, no 3+ newlines, no 2+ inline whitespace
  ✅ Output under the minimum length → EmptyOrTooShort
"""

from __future__ import annotations

import re

import pytest

from bookpipe.core.exceptions import (
    CorruptInput,
    EmptyOrTooShort,
    FailureKind,
    UnsupportedFormat,
)
from bookpipe.processing.extractor import (
    EXTRACTORS,
    DocxExtractor,
    EpubExtractor,
    MediaType,
    PdfExtractor,
    PlainTextExtractor,
    extract_text,
    get_extractor,
    normalize_text,
)
from tests.builders import build_docx, build_epub, build_pdf, long_text, words


def _assert_normalized(text: str) -> None:
    assert "\r" not in text
    assert "\n\n\n" not in text
    assert not re.search(r"[^\S\n]{2,}", text)
    assert text == text.strip()


# ─────────────────────────────────────────────────────────────────────────────
# Dispatch
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestDispatch:

    def test_every_media_type_has_a_strategy(self):
        assert set(EXTRACTORS) == set(MediaType)

    @pytest.mark.parametrize("declared, strategy", [
        ("application/pdf",      PdfExtractor),
        ("application/epub+zip", EpubExtractor),
        (MediaType.DOCX.value,   DocxExtractor),
        ("text/plain",           PlainTextExtractor),
    ])
    def test_declared_type_selects_strategy(self, declared, strategy):
        assert isinstance(get_extractor(declared), strategy)

    def test_parameters_and_case_are_ignored(self):
        assert isinstance(get_extractor("Text/Plain; charset=utf-8"), PlainTextExtractor)

    @pytest.mark.parametrize("declared", ["image/png", "application/msword", "", "text/html"])
    def test_unknown_type_fails_closed(self, declared):
        with pytest.raises(UnsupportedFormat) as exc_info:
            get_extractor(declared)
        assert exc_info.value.kind is FailureKind.UNSUPPORTED_FORMAT

    def test_unsupported_format_never_decodes(self, monkeypatch):
        calls = []
        for extractor in EXTRACTORS.values():
            monkeypatch.setattr(extractor, "extract", lambda data, _c=calls: _c.append(data))

        with pytest.raises(UnsupportedFormat):
            extract_text(b"anything", "application/x-unknown")
        assert calls == []


# ─────────────────────────────────────────────────────────────────────────────
# Plain text
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestPlainText:

    def test_utf8_decoded_verbatim(self):
        text = long_text(paragraphs=2, words_each=30) + " café ñ 書"
        result = extract_text(text.encode("utf-8"), "text/plain")

        assert result.text == text
        assert result.strategy_used == "utf-8"
        assert result.media_type is MediaType.TEXT
        assert result.total_chars == len(text)

    def test_byte_order_mark_is_dropped(self):
        text = long_text(paragraphs=2, words_each=30)
        result = extract_text(b"\xef\xbb\xbf" + text.encode("utf-8"), "text/plain")
        assert result.text == text

    def test_invalid_utf8_is_corrupt_input_with_cause(self):
        data = long_text().encode("utf-8") + b"\xff\xfe\xfa"
        with pytest.raises(CorruptInput) as exc_info:
            extract_text(data, "text/plain")

        err = exc_info.value
        assert err.kind is FailureKind.CORRUPT_INPUT
        assert isinstance(err.cause, UnicodeDecodeError)
        assert err.__cause__ is err.cause

    def test_crlf_and_blank_runs_are_normalized(self):
        raw = (
            "Chapter   One\r\n\r\n\r\n\r\n"
            + words(30) + "\t\tend\r\n\r\n"
            + words(30, prefix="x")
        )
        result = extract_text(raw.encode("utf-8"), "text/plain")

        _assert_normalized(result.text)
        assert result.text.startswith("Chapter One\n\n")
        assert "w29 end\n\nx0" in result.text


# ─────────────────────────────────────────────────────────────────────────────
# PDF
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestPdf:

    def test_pages_are_read_in_order(self):
        data = build_pdf([
            "The quick brown fox jumps over the lazy dog on the first page of the book.",
            "A second page follows with more words so the minimum length is exceeded.",
        ])
        result = extract_text(data, "application/pdf")

        assert result.strategy_used == "pypdf"
        assert result.unit_count == 2
        assert result.text.index("quick brown fox") < result.text.index("second page")
        _assert_normalized(result.text)

    def test_garbage_bytes_are_corrupt_input(self):
        with pytest.raises(CorruptInput) as exc_info:
            extract_text(b"%PDF-1.4 this is not really a pdf", "application/pdf")
        assert exc_info.value.cause is not None

    def test_image_only_pdf_is_too_short(self):
        data = build_pdf(["", ""])
        with pytest.raises(EmptyOrTooShort) as exc_info:
            extract_text(data, "application/pdf")
        assert exc_info.value.kind is FailureKind.EMPTY_OR_TOO_SHORT


# ─────────────────────────────────────────────────────────────────────────────
# EPUB
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestEpub:

    def test_spine_order_wins_over_manifest_order(self):
        data = build_epub(
            chapters=[
                ("ch2", f"<h1>Second</h1><p>{words(30, 'b')}</p>"),
                ("ch1", f"<h1>First</h1><p>{words(30, 'a')}</p>"),
            ],
            spine=["ch1", "ch2"],
        )
        result = extract_text(data, "application/epub+zip")

        assert result.strategy_used == "epub-spine"
        assert result.unit_count == 2
        assert result.text.index("First") < result.text.index("Second")
        assert "\n\n" in result.text   # documents joined by a blank line

    def test_tags_become_spaces_not_glue(self):
        data = build_epub(chapters=[
            ("ch1", "<p>one</p><p>two</p><span>three</span>" + f"<p>{words(30)}</p>"),
        ])
        result = extract_text(data, "application/epub+zip")
        assert "one two three" in result.text
        assert "onetwo" not in result.text

    def test_style_and_entities(self):
        data = build_epub(chapters=[
            ("ch1", "<script>var x = 1;</script><p>Tom &amp; Jerry</p>" + f"<p>{words(30)}</p>"),
        ])
        result = extract_text(data, "application/epub+zip")

        assert "Tom & Jerry" in result.text
        assert "color" not in result.text
        assert "var x" not in result.text
        _assert_normalized(result.text)

    def test_not_a_zip_is_corrupt_input(self):
        with pytest.raises(CorruptInput):
            extract_text(b"PK but not really" * 10, "application/epub+zip")


# ─────────────────────────────────────────────────────────────────────────────
# DOCX
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestDocx:

    def test_paragraphs_and_tables_in_document_order(self):
        data = build_docx(
            paragraphs=["Introduction", words(30), words(30, prefix="z")],
            table=[["Name", "Value"], ["alpha", "beta"]],
        )
        result = extract_text(data, MediaType.DOCX.value)

        assert result.strategy_used == "python-docx"
        assert result.text.startswith("Introduction\n\nw0")
        assert result.text.endswith("Name Value\n\nalpha beta")
        _assert_normalized(result.text)

    def test_random_bytes_are_corrupt_input(self):
        with pytest.raises(CorruptInput):
            extract_text(b"\x00\x01" * 200, MediaType.DOCX.value)


# ─────────────────────────────────────────────────────────────────────────────
# Normalization + minimum length
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestNormalization:

    @pytest.mark.parametrize("raw, expected", [
        ("a\r\nb",            "a\nb"),
        ("a\rb",              "a\nb"),
        ("a\n\n\n\nb",        "a\n\nb"),
        ("a  \t b",           "a b"),
        ("  padded  \n",      "padded"),
        ("keep\n\nblank",     "keep\n\nblank"),
    ])
    def test_rules(self, raw, expected):
        assert normalize_text(raw) == expected

    def test_below_minimum_is_rejected(self):
        with pytest.raises(EmptyOrTooShort) as exc_info:
            extract_text(b"short text", "text/plain")
        assert exc_info.value.length == len("short text")
        assert exc_info.value.minimum == 100

    def test_minimum_is_configurable(self):
        result = extract_text(b"short text", "text/plain", min_chars=5)
        assert result.text == "short text"

    def test_whitespace_only_counts_as_empty(self):
        with pytest.raises(EmptyOrTooShort):
            extract_text(b" \r\n \t " * 100, "text/plain")
