#!/usr/bin/env python3
"""
Generate sample MITC (Most Important Terms and Conditions) PDFs.

Writes one PDF per built-in sample card in the layout the document
library expects, so the PDF extraction path can be exercised end to end
without real bank documents:

    card-mitc-documents/
    ├── HDFC Regalia/mitc_terms.pdf
    ├── ICICI Amazon Pay/mitc_terms.pdf
    ├── SBI SimplyCLICK/mitc_terms.pdf
    └── Axis Flipkart/mitc_terms.pdf

Usage:
    python scripts/generate_sample_mitc.py [output_root]

Output root defaults to DOCUMENTS_PATH from settings (./card-mitc-documents).
"""

from __future__ import annotations

import sys
from pathlib import Path

from fpdf import FPDF
from fpdf.enums import XPos, YPos

from cardwise.config import get_settings
from cardwise.models.records import SourceDocument
from cardwise.services.chunker import split_sentences
from cardwise.services.documents import SAMPLE_DOCUMENTS

MITC_FILENAME = "mitc_terms.pdf"


class MitcDocument(FPDF):
    """Single-card terms document with a running header and page footer."""

    def __init__(self, card_name: str) -> None:
        super().__init__()
        self.card_name = card_name

    def header(self):
        self.set_font("Helvetica", "B", 10)
        self.set_text_color(100, 100, 100)
        self.cell(
            0, 8, f"{self.card_name}  - Most Important Terms and Conditions",
            align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT,
        )
        self.line(10, self.get_y(), 200, self.get_y())
        self.ln(4)

    def footer(self):
        self.set_y(-15)
        self.set_font("Helvetica", "I", 8)
        self.set_text_color(150, 150, 150)
        self.cell(
            0, 10, f"Page {self.page_no()}/{{nb}} | Sample document for development",
            align="C",
        )

    def section_title(self, title: str):
        self.set_font("Helvetica", "B", 14)
        self.set_text_color(0, 0, 0)
        self.ln(6)
        self.cell(0, 10, title, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.line(10, self.get_y(), 200, self.get_y())
        self.ln(2)

    def body_text(self, text: str):
        self.set_font("Helvetica", "", 10)
        self.set_text_color(30, 30, 30)
        self.multi_cell(0, 5.5, text, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(2)


def render_document(document: SourceDocument, output_root: Path) -> Path:
    """Write one document as <output_root>/<source_id>/mitc_terms.pdf."""
    pdf = MitcDocument(document.source_id)
    pdf.alias_nb_pages()
    pdf.set_auto_page_break(auto=True, margin=20)
    pdf.add_page()

    sentences = split_sentences(document.text)
    title, body = (sentences[0], sentences[1:]) if sentences else (document.source_id, [])

    pdf.section_title(title.rstrip("."))
    for sentence in body:
        pdf.body_text(sentence)

    card_dir = output_root / document.source_id
    card_dir.mkdir(parents=True, exist_ok=True)
    path = card_dir / MITC_FILENAME
    pdf.output(str(path))
    return path


def generate_samples(output_root: Path) -> list[Path]:
    return [render_document(doc, output_root) for doc in SAMPLE_DOCUMENTS]


if __name__ == "__main__":
    root = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(get_settings().documents_path)
    for written in generate_samples(root):
        print(f"Generated: {written}")
