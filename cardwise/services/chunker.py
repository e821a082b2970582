# =============================================================================
# Sentence-Boundary Text Chunker — Character Budget
# =============================================================================
#
# Splits cleaned MITC document text into chunks of at most `chunk_size`
# characters, each tagged with its source document id and ordinal index.
#
# DESIGN DECISION: Character-based (not token-based) budget.
# MITC documents are short, term-by-term disclosures. A character budget
# is predictable, needs no tokenizer download, and is independent of which
# embedding provider (OpenAI or hash fallback) is active.
#
# ALGORITHM:
# 1. Clean: collapse all whitespace runs to a single space, strip ends
# 2. Split into sentences after ".", "!" or "?" followed by whitespace
# 3. Any sentence longer than the budget is broken at word boundaries
#    (and a single over-long word is cut at the budget)
# 4. Greedily pack units into chunks joined by single spaces, starting a
#    new chunk whenever the next unit would exceed the budget
#
# INVARIANT: " ".join(chunk.text for chunk in chunks) == clean_text(source)
# whenever no single word exceeds the budget. Over-long words are the only
# case where whitespace differs.
# =============================================================================

from __future__ import annotations

import logging
import re

from cardwise.models.records import DocumentChunk

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def clean_text(text: str) -> str:
    """Collapse whitespace runs (including newlines) to single spaces."""
    return _WHITESPACE.sub(" ", text).strip()


def split_sentences(text: str) -> list[str]:
    """Split cleaned text into sentences, keeping terminal punctuation."""
    if not text:
        return []
    return [s for s in _SENTENCE_BOUNDARY.split(text) if s]


def chunk_text(
    text: str,
    source_id: str,
    chunk_size: int = 1000,
) -> list[DocumentChunk]:
    """
    Split a document into sentence-aligned chunks of at most chunk_size chars.

    Args:
        text: Raw or cleaned document text.
        source_id: Identifier of the source document (card name).
        chunk_size: Maximum characters per chunk (default 1000).

    Returns:
        List of DocumentChunk in document order, chunk_index from 0.

    Pipeline position: Step 2 of document ingestion
    (extract → chunk → embed → upsert).
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    cleaned = clean_text(text)
    if not cleaned:
        logger.warning("No text to chunk for '%s'", source_id)
        return []

    units: list[str] = []
    for sentence in split_sentences(cleaned):
        if len(sentence) <= chunk_size:
            units.append(sentence)
        else:
            units.extend(_split_long_sentence(sentence, chunk_size))

    packed = _pack(units, chunk_size)
    chunks = [
        DocumentChunk(text=body, source_id=source_id, chunk_index=i)
        for i, body in enumerate(packed)
    ]

    logger.info(
        "Chunked '%s' into %d chunks (%d chars, budget=%d)",
        source_id, len(chunks), len(cleaned), chunk_size,
    )
    return chunks


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _pack(units: list[str], budget: int) -> list[str]:
    """Greedily join units with single spaces without exceeding the budget."""
    chunks: list[str] = []
    current = ""
    for unit in units:
        if not current:
            current = unit
        elif len(current) + 1 + len(unit) <= budget:
            current = f"{current} {unit}"
        else:
            chunks.append(current)
            current = unit
    if current:
        chunks.append(current)
    return chunks


def _split_long_sentence(sentence: str, budget: int) -> list[str]:
    """Break an over-budget sentence into word-aligned pieces."""
    pieces: list[str] = []
    for word in sentence.split(" "):
        if len(word) > budget:
            # No word boundary to use; cut the word itself
            pieces.extend(word[i : i + budget] for i in range(0, len(word), budget))
        else:
            pieces.append(word)
    return _pack(pieces, budget)
