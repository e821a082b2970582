# =============================================================================
# Answers and Responses
# =============================================================================
#
# CandidateAnswer is what a tier produces; RAGResponse is what the caller
# receives. Every path through the cascade and orchestrator (accept,
# fallback, error) ends in a well-formed RAGResponse with a tier label and a
# confidence.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TierName(str, Enum):
    """Label identifying which path produced an answer."""

    STRUCTURED = "structured"
    DOCUMENT = "document"
    GENERATIVE = "generative"
    FALLBACK = "fallback"
    ERROR = "error"


# Tiers that can produce a CandidateAnswer (fallback/error are terminal
# labels applied by the cascade and orchestrator).
ANSWER_TIERS: tuple[TierName, ...] = (
    TierName.STRUCTURED,
    TierName.DOCUMENT,
    TierName.GENERATIVE,
)


class EvidenceRef(BaseModel):
    """Reference to an index record that supported an answer."""

    collection: str
    record_id: str
    similarity: float
    label: str = ""

    model_config = ConfigDict(frozen=True)


@dataclass
class CandidateAnswer:
    """A tier's proposed answer, prior to the cascade's acceptance check."""

    text: str
    confidence: float
    tier: TierName
    evidence: list[EvidenceRef] = field(default_factory=list)
    products: list[dict] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.tier not in ANSWER_TIERS:
            raise ValueError(f"Tier '{self.tier}' cannot produce a candidate")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(
                f"Candidate confidence must be in [0, 1], got {self.confidence}"
            )


class RAGResponse(BaseModel):
    """
    Final answer returned to the caller.

    Returned for accepted candidates (tier = producing tier), for the
    cascade's fallback (tier = "fallback", confidence 0.3) and for the
    orchestrator's error path (tier = "error", confidence 0.0).
    """

    answer: str
    tier: TierName
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: list[EvidenceRef] = Field(default_factory=list)
    products_recommended: list[dict] = Field(default_factory=list)
    followup_questions: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
