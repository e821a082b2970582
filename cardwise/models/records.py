# =============================================================================
# Vector Records and Metadata Variants
# =============================================================================
#
# DESIGN DECISION: Metadata is a tagged union keyed by collection.
# Structured product records and document chunks carry different payloads.
# Each variant has a literal `kind` equal to its collection name, so tier
# code can branch exhaustively (`isinstance` / `match`) instead of probing
# an untyped dict for keys.
#
# DESIGN DECISION: Frozen dataclasses.
# Records are never mutated in place: re-ingestion replaces by id. Freezing
# makes that rule structural rather than conventional.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

STRUCTURED = "structured"
DOCUMENT_CHUNK = "document-chunk"

COLLECTIONS: tuple[str, ...] = (STRUCTURED, DOCUMENT_CHUNK)


# ---------------------------------------------------------------------------
# Metadata Variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StructuredMetadata:
    """A catalog product record, normalised and rendered to text."""

    product_id: str
    name: str
    text: str
    bank_name: str = ""
    category: str = ""
    product: dict = field(default_factory=dict)
    kind: Literal["structured"] = STRUCTURED


@dataclass(frozen=True)
class ChunkMetadata:
    """One chunk of an unstructured policy (MITC) document."""

    source_id: str
    chunk_index: int
    text: str
    file_path: str | None = None
    kind: Literal["document-chunk"] = DOCUMENT_CHUNK


RecordMetadata = Union[StructuredMetadata, ChunkMetadata]


# ---------------------------------------------------------------------------
# Index Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VectorRecord:
    """A stored (vector, metadata) pair. `vector` has exactly D components."""

    id: str
    vector: tuple[float, ...]
    metadata: RecordMetadata


@dataclass(frozen=True)
class SearchHit:
    """
    A single result from brute-force similarity search.

    `similarity` is cosine similarity in [-1, 1]; 0.0 when either vector
    is all zeros.
    """

    record: VectorRecord
    similarity: float

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def metadata(self) -> RecordMetadata:
        return self.record.metadata


# ---------------------------------------------------------------------------
# Documents and Chunks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceDocument:
    """Cleaned text of one policy document, keyed by the card it describes."""

    source_id: str
    text: str
    file_path: str | None = None


@dataclass(frozen=True)
class DocumentChunk:
    """A unit of document text no longer than the configured budget."""

    text: str
    source_id: str
    chunk_index: int

    @property
    def record_id(self) -> str:
        return f"{self.source_id}:{self.chunk_index}"
