# =============================================================================
# MITC Document Library — Discovery, Extraction and Built-in Samples
# =============================================================================
#
# Policy documents live on disk as one directory per card:
#
#   card-mitc-documents/
#   ├── HDFC Regalia/
#   │   └── mitc_terms.pdf
#   └── ICICI Amazon Pay/
#       ├── mitc_terms.pdf
#       └── fee_schedule.pdf
#
# The directory name is the document's source id (the card it describes).
# Several PDFs for one card are concatenated in filename order.
#
# DESIGN DECISION: The extractor is injected.
# DocumentLibrary only knows `extractor(path) -> str | None`; the Docling
# implementation lives in parser.py. Tests pass a lambda.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from cardwise.models.records import SourceDocument
from cardwise.services.chunker import clean_text

logger = logging.getLogger(__name__)

TextExtractor = Callable[[Path], "str | None"]


# ---------------------------------------------------------------------------
# Built-in Samples
# ---------------------------------------------------------------------------

SAMPLE_CARD_NAMES: tuple[str, ...] = (
    "HDFC Regalia",
    "ICICI Amazon Pay",
    "SBI SimplyCLICK",
    "Axis Flipkart",
)


def sample_mitc_text(card_name: str) -> str:
    """Placeholder MITC terms for a card, used when no PDFs can be loaded."""
    return (
        f"MITC Document for {card_name}. "
        "This is a sample MITC (Most Important Terms and Conditions) document "
        f"for {card_name}. "
        "Key Terms: Annual Fee: As per bank's discretion. "
        "Interest Rate: As per bank's policy. "
        "Credit Limit: Based on credit assessment. "
        "Rewards: Subject to terms and conditions. "
        "Please refer to the actual bank document for complete terms and conditions."
    )


SAMPLE_DOCUMENTS: tuple[SourceDocument, ...] = tuple(
    SourceDocument(source_id=name, text=sample_mitc_text(name))
    for name in SAMPLE_CARD_NAMES
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class DocumentLibrary:
    """Loads every card's MITC text from `<root>/<Card Name>/*.pdf`."""

    def __init__(self, root: str | Path, extractor: TextExtractor) -> None:
        self._root = Path(root)
        self._extractor = extractor

    @property
    def root(self) -> Path:
        return self._root

    def discover(self) -> dict[str, list[Path]]:
        """Map each card directory name to its PDFs, sorted by filename."""
        if not self._root.is_dir():
            logger.warning("MITC documents directory not found: %s", self._root)
            return {}

        found: dict[str, list[Path]] = {}
        for card_dir in sorted(p for p in self._root.iterdir() if p.is_dir()):
            pdfs = sorted(
                p for p in card_dir.iterdir()
                if p.is_file() and p.suffix.lower() == ".pdf"
            )
            if pdfs:
                found[card_dir.name] = pdfs
        return found

    def load(self) -> list[SourceDocument]:
        """
        Extract and clean the text of every discovered card.

        PDFs that yield no text are skipped. Errors raised by the extractor
        (e.g. CollaboratorUnavailable when Docling is not installed)
        propagate to the caller.
        """
        documents: list[SourceDocument] = []
        for card_name, paths in self.discover().items():
            texts = []
            for path in paths:
                text = self._extractor(path)
                if text:
                    texts.append(text)
            if not texts:
                logger.warning("No readable MITC text for '%s'", card_name)
                continue
            documents.append(SourceDocument(
                source_id=card_name,
                text=clean_text(" ".join(texts)),
                file_path=str(paths[0]),
            ))

        logger.info(
            "Loaded %d MITC documents from %s", len(documents), self._root,
        )
        return documents
