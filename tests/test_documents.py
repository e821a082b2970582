# =============================================================================
# Unit Tests — MITC Document Library and PDF Text Extraction
# =============================================================================
#
# The library is tested with a fake extractor over a tmp_path tree. The
# Docling-backed extractor is tested with a stub converter, so neither
# Docling nor real PDFs are needed.
# =============================================================================

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from cardwise.exceptions import CollaboratorUnavailable
from cardwise.services import parser
from cardwise.services.documents import (
    SAMPLE_CARD_NAMES,
    SAMPLE_DOCUMENTS,
    DocumentLibrary,
    sample_mitc_text,
)


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"%PDF-1.4 stub")
    return path


# ---------------------------------------------------------------------------
# Test: Document Library
# ---------------------------------------------------------------------------


class TestDocumentLibrary:
    """Tests for DocumentLibrary.discover() and load()."""

    def test_discover_groups_pdfs_by_card(self, tmp_path):
        _touch(tmp_path / "HDFC Regalia" / "b_fees.pdf")
        _touch(tmp_path / "HDFC Regalia" / "a_terms.PDF")
        _touch(tmp_path / "HDFC Regalia" / "notes.txt")
        _touch(tmp_path / "Axis Flipkart" / "mitc.pdf")
        (tmp_path / "Empty Card").mkdir()

        found = DocumentLibrary(tmp_path, extractor=lambda p: "x").discover()

        assert list(found) == ["Axis Flipkart", "HDFC Regalia"]
        assert [p.name for p in found["HDFC Regalia"]] == ["a_terms.PDF", "b_fees.pdf"]

    def test_missing_root(self, tmp_path):
        library = DocumentLibrary(tmp_path / "nope", extractor=lambda p: "x")
        assert library.discover() == {}
        assert library.load() == []

    def test_load_joins_and_cleans_text(self, tmp_path):
        _touch(tmp_path / "HDFC Regalia" / "a.pdf")
        _touch(tmp_path / "HDFC Regalia" / "b.pdf")
        _touch(tmp_path / "SBI SimplyCLICK" / "a.pdf")

        texts = {
            "a.pdf": "Annual fee\n\nRs 2500.",
            "b.pdf": "Interest   3.6% monthly.",
        }

        def extractor(path: Path):
            if path.parent.name == "SBI SimplyCLICK":
                return None
            return texts[path.name]

        documents = DocumentLibrary(tmp_path, extractor).load()

        assert len(documents) == 1
        assert documents[0].source_id == "HDFC Regalia"
        assert documents[0].text == "Annual fee Rs 2500. Interest 3.6% monthly."
        assert documents[0].file_path.endswith("a.pdf")

    def test_extractor_errors_propagate(self, tmp_path):
        _touch(tmp_path / "HDFC Regalia" / "a.pdf")

        def extractor(path):
            raise CollaboratorUnavailable("pdf-extractor", "docling is not installed")

        with pytest.raises(CollaboratorUnavailable):
            DocumentLibrary(tmp_path, extractor).load()


class TestSampleDocuments:
    """Built-in placeholder documents."""

    def test_one_per_sample_card(self):
        assert [d.source_id for d in SAMPLE_DOCUMENTS] == list(SAMPLE_CARD_NAMES)

    def test_text_names_the_card(self):
        assert "SBI SimplyCLICK" in sample_mitc_text("SBI SimplyCLICK")


# ---------------------------------------------------------------------------
# Test: PDF Text Extraction
# ---------------------------------------------------------------------------


class FakeFrame:
    def __init__(self, rows: list[dict]):
        self._rows = rows

    def iterrows(self):
        for i, row in enumerate(self._rows):
            yield i, row


def _item(label: str, text: str = "", frame: FakeFrame | None = None):
    item = SimpleNamespace(label=SimpleNamespace(value=label), text=text)
    if frame is not None:
        item.export_to_dataframe = lambda: frame
    return item


class FakeConverter:
    def __init__(self, items):
        self._items = items

    def convert(self, source):
        return SimpleNamespace(
            document=SimpleNamespace(iterate_items=lambda: [(i, 0) for i in self._items])
        )


class TestExtractDocumentText:
    """Tests for extract_document_text() with a stub converter."""

    def test_missing_file(self, tmp_path):
        assert parser.extract_document_text(tmp_path / "missing.pdf") is None

    def test_text_and_tables(self, tmp_path, monkeypatch):
        fees = FakeFrame([
            {"Fee": "Joining fee", "Amount": "Rs 2500"},
            {"Fee": "Late payment", "Amount": ""},
        ])
        monkeypatch.setattr(parser, "_converter", FakeConverter([
            _item("section_header", "Schedule of Charges"),
            _item("table", frame=fees),
            _item("picture", "ignored"),
            _item("text", "  Interest is 3.6%\nper month. "),
        ]))

        text = parser.extract_document_text(_touch(tmp_path / "mitc.pdf"))

        assert text == (
            "Schedule of Charges "
            "Fee: Joining fee; Amount: Rs 2500. Fee: Late payment. "
            "Interest is 3.6% per month."
        )

    def test_empty_document(self, tmp_path, monkeypatch):
        monkeypatch.setattr(parser, "_converter", FakeConverter([_item("picture")]))
        assert parser.extract_document_text(_touch(tmp_path / "blank.pdf")) is None

    def test_conversion_failure(self, tmp_path, monkeypatch):
        class Broken:
            def convert(self, source):
                raise RuntimeError("corrupt PDF")

        monkeypatch.setattr(parser, "_converter", Broken())
        assert parser.extract_document_text(_touch(tmp_path / "bad.pdf")) is None

    def test_table_falls_back_to_plain_text(self):
        item = SimpleNamespace(label=SimpleNamespace(value="table"), text="Fee table")

        def fail():
            raise RuntimeError("no pandas")

        item.export_to_dataframe = fail
        assert parser._table_to_text(item) == "Fee table"
