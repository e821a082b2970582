# =============================================================================
# In-Memory Vector Index — Brute-Force Cosine Search
# =============================================================================
#
# Stores (vector, metadata) records in two named collections:
#   - "structured"      → catalog product records
#   - "document-chunk"  → MITC policy document chunks
#
# DESIGN DECISION: Brute force over an approximate index.
# The corpus is hundreds to low thousands of records. A single numpy
# matrix-vector product over the whole collection is cheaper than building
# and maintaining an ANN structure, and result ordering is exactly
# reproducible (ties broken by insertion order, earlier first).
#
# DESIGN DECISION: Copy-on-write snapshots.
# Each collection is an immutable _Snapshot. Writers build a new snapshot
# under a lock and swap the reference; searches grab the current reference
# once and never observe a half-applied upsert or clear. Readers take no
# lock, so concurrent queries from different users run in parallel.
#
# DESIGN DECISION: Vectors are stored un-normalised.
# Cosine similarity normalises at comparison time. A zero vector on either
# side has similarity 0.0 (not NaN).
#
# ARCHITECTURE:
#   InMemoryVectorIndex
#   ├── upsert() / upsert_many()  — validate dimension, publish snapshot
#   ├── search()                  — cosine top-k over one snapshot
#   ├── clear() / clear_all()     — idempotent
#   └── stats()                   — per-collection counts
# =============================================================================

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from functools import cached_property

import numpy as np

from cardwise.exceptions import DimensionMismatch
from cardwise.models.records import (
    COLLECTIONS,
    RecordMetadata,
    SearchHit,
    VectorRecord,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


class _Snapshot:
    """Immutable view of one collection. The matrix is built on first search."""

    def __init__(
        self,
        records: tuple[VectorRecord, ...],
        positions: dict[str, int],
    ) -> None:
        self.records = records
        self.positions = positions

    @cached_property
    def matrix(self) -> np.ndarray:
        return np.array([r.vector for r in self.records], dtype=np.float64)

    @cached_property
    def norms(self) -> np.ndarray:
        return np.linalg.norm(self.matrix, axis=1)


_EMPTY = _Snapshot((), {})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class InMemoryVectorIndex:
    """
    Process-local vector index with a fixed dimension D.

    Construct one per service (no module-level singleton) so tests get
    isolated instances.
    """

    def __init__(self, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be positive, got {dimensions}")
        self._dimensions = dimensions
        self._collections: dict[str, _Snapshot] = {
            name: _EMPTY for name in COLLECTIONS
        }
        self._write_lock = threading.Lock()

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def upsert(
        self,
        collection: str,
        record_id: str,
        vector: Sequence[float],
        metadata: RecordMetadata,
    ) -> None:
        """
        Insert or replace a record.

        Raises:
            DimensionMismatch: If len(vector) != D.
            ValueError: If the collection is unknown or the metadata variant
                does not belong to it.
        """
        self.upsert_many(collection, [(record_id, vector, metadata)])

    def upsert_many(
        self,
        collection: str,
        items: Iterable[tuple[str, Sequence[float], RecordMetadata]],
    ) -> int:
        """
        Insert or replace several records, published as one snapshot.

        Every item is validated before anything is published, so a
        DimensionMismatch leaves the collection untouched.

        Returns:
            Number of records written.
        """
        self._check_collection(collection)
        prepared = [
            self._prepare(collection, record_id, vector, metadata)
            for record_id, vector, metadata in items
        ]
        if not prepared:
            return 0

        with self._write_lock:
            current = self._collections[collection]
            records = list(current.records)
            positions = dict(current.positions)
            for record in prepared:
                # Replacement keeps the original insertion position
                position = positions.get(record.id)
                if position is None:
                    positions[record.id] = len(records)
                    records.append(record)
                else:
                    records[position] = record
            self._collections[collection] = _Snapshot(tuple(records), positions)

        logger.debug(
            "Upserted %d records into '%s' (size=%d)",
            len(prepared), collection, len(records),
        )
        return len(prepared)

    def search(
        self,
        collection: str,
        query_vector: Sequence[float],
        k: int,
    ) -> list[SearchHit]:
        """
        Top-k records by cosine similarity, highest first.

        Ties are broken by insertion order (earlier wins). Returns fewer than
        k hits when the collection is smaller.

        Raises:
            DimensionMismatch: If len(query_vector) != D.
        """
        self._check_collection(collection)
        query = self._as_array(query_vector)
        snapshot = self._collections[collection]

        if k <= 0 or not snapshot.records:
            return []

        similarities = _cosine_similarities(snapshot.matrix, snapshot.norms, query)
        # Stable sort on the negated scores keeps insertion order for ties
        order = np.argsort(-similarities, kind="stable")[:k]

        return [
            SearchHit(
                record=snapshot.records[i],
                similarity=float(similarities[i]),
            )
            for i in order
        ]

    def count(self, collection: str) -> int:
        self._check_collection(collection)
        return len(self._collections[collection].records)

    def clear(self, collection: str) -> None:
        """Drop every record in one collection. Idempotent."""
        self._check_collection(collection)
        with self._write_lock:
            self._collections[collection] = _EMPTY
        logger.info("Cleared collection '%s'", collection)

    def clear_all(self) -> None:
        """Drop every record in every collection. Idempotent."""
        with self._write_lock:
            for name in COLLECTIONS:
                self._collections[name] = _EMPTY
        logger.info("Cleared all collections")

    def stats(self) -> dict:
        counts = {
            name: len(snapshot.records)
            for name, snapshot in self._collections.items()
        }
        return {
            "dimensions": self._dimensions,
            "collections": counts,
            "total_records": sum(counts.values()),
        }

    # -----------------------------------------------------------------------
    # Internal Helpers
    # -----------------------------------------------------------------------

    def _check_collection(self, collection: str) -> None:
        if collection not in self._collections:
            raise ValueError(
                f"Unknown collection '{collection}'. "
                f"Expected one of: {list(COLLECTIONS)}"
            )

    def _as_array(self, vector: Sequence[float]) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float64)
        if array.ndim != 1 or array.shape[0] != self._dimensions:
            actual = array.shape[0] if array.ndim == 1 else array.size
            raise DimensionMismatch(self._dimensions, int(actual))
        return array

    def _prepare(
        self,
        collection: str,
        record_id: str,
        vector: Sequence[float],
        metadata: RecordMetadata,
    ) -> VectorRecord:
        if metadata.kind != collection:
            raise ValueError(
                f"Metadata of kind '{metadata.kind}' cannot be stored in "
                f"collection '{collection}'"
            )
        array = self._as_array(vector)
        return VectorRecord(
            id=record_id,
            vector=tuple(float(x) for x in array),
            metadata=metadata,
        )


def _cosine_similarities(
    matrix: np.ndarray,
    norms: np.ndarray,
    query: np.ndarray,
) -> np.ndarray:
    """Cosine similarity of `query` against each row; 0.0 where a norm is 0."""
    query_norm = float(np.linalg.norm(query))
    if query_norm == 0.0:
        return np.zeros(matrix.shape[0], dtype=np.float64)

    dots = matrix @ query
    denominators = norms * query_norm
    similarities = np.divide(
        dots,
        denominators,
        out=np.zeros_like(dots),
        where=denominators > 0,
    )
    return np.clip(similarities, -1.0, 1.0)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors of equal length; 0.0 for zero vectors."""
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    if left.shape != right.shape:
        raise DimensionMismatch(left.shape[0], right.shape[0])
    norms = np.linalg.norm(left[np.newaxis, :], axis=1)
    return float(_cosine_similarities(left[np.newaxis, :], norms, right)[0])
