# =============================================================================
# PDF Text Extraction — Docling Document Intelligence
# =============================================================================
#
# Turns an MITC (Most Important Terms and Conditions) PDF into plain text
# for chunking. The retrieval core only needs `extract_document_text(path)
# -> str | None`; everything Docling-specific stays in this module.
#
# DESIGN DECISION: Docling over PyPDF/pdfplumber.
# MITC documents are fee schedules and charge tables. Docling keeps table
# rows together (exported row by row) instead of interleaving cell text.
#
# DESIGN DECISION: Optional dependency, imported lazily.
# Docling pulls in ML models and is installed via the `pdf` extra. The rest
# of the package (and its tests) never import it. A missing install
# surfaces as CollaboratorUnavailable, which the document loader handles by
# falling back to the built-in sample documents.
#
# DESIGN DECISION: Return None (not raise) for unreadable documents.
# A single corrupt PDF should not abort loading the rest of the library.
# =============================================================================

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from cardwise.exceptions import CollaboratorUnavailable
from cardwise.services.chunker import clean_text

if TYPE_CHECKING:
    from docling.document_converter import DocumentConverter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Docling Converter — Lazy Singleton
# ---------------------------------------------------------------------------
# Initialization loads layout models into memory (a few seconds on first
# use), so one converter is reused for every document.
# ---------------------------------------------------------------------------

_converter: DocumentConverter | None = None

_TEXT_LABELS = frozenset({
    "title", "section_header", "text", "paragraph",
    "list_item", "caption", "footnote",
})


def _get_converter() -> DocumentConverter:
    """Lazily initialize and cache the Docling DocumentConverter."""
    global _converter
    if _converter is None:
        try:
            from docling.datamodel.base_models import InputFormat
            from docling.datamodel.pipeline_options import PdfPipelineOptions
            from docling.document_converter import DocumentConverter, PdfFormatOption
        except ImportError as e:
            raise CollaboratorUnavailable(
                "pdf-extractor",
                "docling is not installed (pip install 'cardwise[pdf]')",
            ) from e

        logger.info(
            "Initializing Docling DocumentConverter "
            "(first use, may take a few seconds)..."
        )

        # MITC PDFs are digitally generated; OCR only slows them down
        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_table_structure = True
        pipeline_options.do_ocr = False

        _converter = DocumentConverter(
            format_options={
                InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
            }
        )
        logger.info("Docling DocumentConverter initialized")
    return _converter


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_document_text(path: str | Path) -> str | None:
    """
    Extract cleaned text from a PDF.

    Args:
        path: Path to the PDF on disk.

    Returns:
        Whitespace-normalised text in reading order, or None if the file is
        missing, cannot be converted, or contains no text.

    Raises:
        CollaboratorUnavailable: If Docling is not installed.
    """
    file_path = Path(path)
    if not file_path.is_file():
        logger.warning("PDF not found: %s", file_path)
        return None

    converter = _get_converter()

    try:
        result = converter.convert(str(file_path))
    except Exception as e:
        logger.warning("Docling failed to parse '%s': %s", file_path.name, e)
        return None

    parts: list[str] = []
    for item, _level in result.document.iterate_items():
        label = getattr(getattr(item, "label", None), "value", "")
        if label == "table":
            table_text = _table_to_text(item)
            if table_text:
                parts.append(table_text)
        elif label in _TEXT_LABELS:
            text = (getattr(item, "text", "") or "").strip()
            if text:
                parts.append(text)

    text = clean_text(" ".join(parts))
    if not text:
        logger.warning("No text extracted from '%s'", file_path.name)
        return None

    logger.info(
        "Extracted %d chars from '%s' (%d elements)",
        len(text), file_path.name, len(parts),
    )
    return text


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _table_to_text(table_item: object) -> str:
    """
    Render a Docling table as one sentence per row ("Header: value; ...").

    Row-wise rendering keeps a fee name next to its amount after chunking.
    Falls back to the item's plain text if DataFrame export fails.
    """
    try:
        if hasattr(table_item, "export_to_dataframe"):
            df = table_item.export_to_dataframe()
            rows = []
            for _, row in df.iterrows():
                cells = [
                    f"{column}: {value}"
                    for column, value in row.items()
                    if str(value).strip()
                ]
                if cells:
                    rows.append("; ".join(cells) + ".")
            return " ".join(rows)
    except Exception as e:
        logger.warning("Table export to DataFrame failed: %s", e)

    text = getattr(table_item, "text", "")
    return text.strip() if text else ""
