# =============================================================================
# Error Taxonomy
# =============================================================================
#
# DimensionMismatch        — programmer/ingestion error, fatal, never retried
# CollaboratorUnavailable  — embedding, catalog, document or LLM failure;
#                            the affected tier yields no candidate
# InvalidConfiguration     — rejected admin update; previous value retained
# =============================================================================

from __future__ import annotations


class CardwiseError(Exception):
    """Base class for all errors raised by the retrieval core."""


class DimensionMismatch(CardwiseError):
    """A vector did not have the index's configured dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class CollaboratorUnavailable(CardwiseError):
    """An external collaborator (network or I/O) failed or timed out."""

    def __init__(self, collaborator: str, reason: str) -> None:
        super().__init__(f"{collaborator} unavailable: {reason}")
        self.collaborator = collaborator
        self.reason = reason


class InvalidConfiguration(CardwiseError, ValueError):
    """A runtime configuration update was outside its permitted range."""
