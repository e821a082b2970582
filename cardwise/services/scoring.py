# =============================================================================
# Relevance Scorer — Confidence Calibration with Adaptive Tier Weights
# =============================================================================
#
# Scores a candidate answer against the query it responds to:
#
#   relevance    = 0.6 · token overlap + 0.4 · Jaccard similarity
#   completeness = (0.5 + 0.2 · intents covered) · tier multiplier
#   confidence   = 0.4 · relevance + 0.3 · completeness + 0.3 · external
#
# `external` is a similarity signal supplied by the caller (embedding
# similarity, if any) and defaults to a neutral 0.5.
#
# DESIGN DECISION: Cheap lexical heuristics, not embeddings.
# The tiers already rank evidence by vector similarity upstream; this layer
# is a second, independent signal. A stronger semantic function can be
# swapped in as long as every score stays in [0, 1].
#
# DESIGN DECISION: Weights are advisory.
# Per-tier weights are recalibrated from user ratings and reported in stats
# for operators to inspect; they do not enter the confidence formula, which
# keeps cascade acceptance deterministic for a given query and threshold.
#
# The acceptance threshold lives here (not on the cascade) so that admin
# updates via set_threshold() have a single source of truth.
# =============================================================================

from __future__ import annotations

import logging
import math
import re
import threading
from collections import deque
from dataclasses import asdict, dataclass

from cardwise.config import Settings
from cardwise.exceptions import InvalidConfiguration
from cardwise.models.conversation import FeedbackRecord
from cardwise.models.responses import ANSWER_TIERS, TierName

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

RELEVANCE_OVERLAP_WEIGHT = 0.6
RELEVANCE_JACCARD_WEIGHT = 0.4

CONFIDENCE_RELEVANCE_WEIGHT = 0.4
CONFIDENCE_COMPLETENESS_WEIGHT = 0.3
CONFIDENCE_EXTERNAL_WEIGHT = 0.3

NEUTRAL_SIMILARITY = 0.5

COMPLETENESS_BASE = 0.5
COMPLETENESS_PER_INTENT = 0.2

INTENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "recommendation": ("best", "recommend", "suggest", "top", "good"),
    "comparison": ("compare", "difference", "vs", "versus", "better"),
    "information": ("what", "how", "when", "where", "why", "tell me"),
    "specific": ("annual fee", "interest rate", "rewards", "benefits", "eligibility"),
}
GENERAL_INTENT = "general"

# Structured summaries are terse lists, document chunks are verbose prose,
# LLM answers tend to address every part of the question.
TIER_COMPLETENESS_MULTIPLIER: dict[TierName, float] = {
    TierName.STRUCTURED: 0.9,
    TierName.DOCUMENT: 0.8,
    TierName.GENERATIVE: 0.95,
}

THRESHOLD_FLOOR = 0.1
THRESHOLD_CEILING = 1.0
WEIGHT_FLOOR = 0.1
WEIGHT_CEILING = 0.8

_NON_WORD = re.compile(r"[^\w\s]")
_INTENT_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    intent: tuple(re.compile(rf"\b{re.escape(k)}\b") for k in keywords)
    for intent, keywords in INTENT_KEYWORDS.items()
}


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TierWeights:
    """Per-tier score weights, each within [0.1, 0.8] once recalibrated."""

    structured: float
    document: float
    generative: float

    @classmethod
    def from_settings(cls, settings: Settings) -> TierWeights:
        return cls(
            structured=settings.weight_structured,
            document=settings.weight_document,
            generative=settings.weight_generative,
        )

    def get(self, tier: TierName) -> float:
        return getattr(self, tier.value)

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Text Helpers
# ---------------------------------------------------------------------------


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation, split on whitespace, keep tokens > 2 chars."""
    return [t for t in _NON_WORD.sub(" ", text.lower()).split() if len(t) > 2]


def detect_intents(query: str) -> list[str]:
    """Intent categories whose keywords appear in the query, else ['general']."""
    lowered = query.lower()
    intents = [
        intent
        for intent, patterns in _INTENT_PATTERNS.items()
        if any(p.search(lowered) for p in patterns)
    ]
    return intents or [GENERAL_INTENT]


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class RelevanceScorer:
    """
    Stateless scoring functions plus two pieces of mutable state: the
    acceptance threshold and the feedback-driven tier weights.

    Feedback and weight updates are serialized by a lock; score
    computation touches no shared state.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._static_weights = TierWeights.from_settings(settings)
        self._weights = self._static_weights
        self._threshold = settings.confidence_threshold
        self._feedback: deque[FeedbackRecord] = deque(
            maxlen=settings.feedback_capacity
        )
        self._lock = threading.Lock()

    # -----------------------------------------------------------------------
    # Scores
    # -----------------------------------------------------------------------

    def relevance(self, query: str, answer_text: str) -> float:
        query_tokens = set(tokenize(query))
        answer_tokens = set(tokenize(answer_text))
        if not query_tokens or not answer_tokens:
            return 0.0

        shared = query_tokens & answer_tokens
        overlap = len(shared) / len(query_tokens)
        jaccard = len(shared) / len(query_tokens | answer_tokens)
        return _clamp(
            RELEVANCE_OVERLAP_WEIGHT * overlap + RELEVANCE_JACCARD_WEIGHT * jaccard
        )

    def completeness(self, query: str, answer_text: str, tier: TierName) -> float:
        answer = answer_text.lower()
        score = COMPLETENESS_BASE
        for intent in detect_intents(query):
            if intent == GENERAL_INTENT:
                continue
            if any(p.search(answer) for p in _INTENT_PATTERNS[intent]):
                score += COMPLETENESS_PER_INTENT

        multiplier = TIER_COMPLETENESS_MULTIPLIER.get(TierName(tier), 1.0)
        return _clamp(min(score, 1.0) * multiplier)

    def confidence(
        self,
        query: str,
        answer_text: str,
        tier: TierName,
        external_similarity: float = NEUTRAL_SIMILARITY,
    ) -> float:
        """Weighted combination in [0, 1] for any input strings."""
        if math.isnan(external_similarity):
            external_similarity = NEUTRAL_SIMILARITY
        return _clamp(
            CONFIDENCE_RELEVANCE_WEIGHT * self.relevance(query, answer_text)
            + CONFIDENCE_COMPLETENESS_WEIGHT
            * self.completeness(query, answer_text, tier)
            + CONFIDENCE_EXTERNAL_WEIGHT * _clamp(external_similarity)
        )

    # -----------------------------------------------------------------------
    # Threshold
    # -----------------------------------------------------------------------

    @property
    def threshold(self) -> float:
        return self._threshold

    def set_threshold(self, value: float) -> float:
        """
        Update the acceptance threshold, clamped to [0.1, 1.0].

        Raises:
            InvalidConfiguration: If value is NaN or outside [0, 1]. The
                previous threshold is retained.
        """
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidConfiguration(f"Threshold must be a number, got {value!r}")
        if math.isnan(value) or not 0.0 <= value <= 1.0:
            raise InvalidConfiguration(
                f"Threshold must be within [0, 1], got {value}"
            )

        with self._lock:
            previous = self._threshold
            self._threshold = _clamp(float(value), THRESHOLD_FLOOR, THRESHOLD_CEILING)

        logger.info(
            "Confidence threshold updated: %.2f -> %.2f", previous, self._threshold
        )
        return self._threshold

    # -----------------------------------------------------------------------
    # Feedback and Weights
    # -----------------------------------------------------------------------

    @property
    def weights(self) -> TierWeights:
        return self._weights

    def record_feedback(
        self,
        query: str,
        answer_text: str,
        tier: TierName | str,
        rating: float,
        comment: str = "",
    ) -> FeedbackRecord:
        """
        Store a user rating (1–5) and recalibrate tier weights.

        Raises:
            ValueError: If rating is outside [1, 5] or tier is unknown.
        """
        tier = TierName(tier)
        if math.isnan(rating) or not 1.0 <= rating <= 5.0:
            raise ValueError(f"Rating must be within [1, 5], got {rating}")

        record = FeedbackRecord(
            query=query,
            answer_text=answer_text,
            tier=tier,
            user_rating=float(rating),
            comment=comment,
            computed_confidence=self.confidence(query, answer_text, tier),
        )

        with self._lock:
            self._feedback.append(record)
            self._recalibrate_locked()

        logger.info(
            "Recorded feedback (tier=%s, rating=%.1f, buffered=%d)",
            tier.value, rating, len(self._feedback),
        )
        return record

    def recalibrate_weights(self) -> bool:
        """
        Recompute tier weights from buffered ratings.

        Returns:
            True if weights were recomputed, False below the minimum
            number of feedback records.
        """
        with self._lock:
            return self._recalibrate_locked()

    def reset(self) -> None:
        """Restore static weights and drop all feedback. Threshold is kept."""
        with self._lock:
            self._weights = self._static_weights
            self._feedback.clear()
        logger.info("Scorer reset to static weights")

    def feedback_history(self) -> list[FeedbackRecord]:
        with self._lock:
            return list(self._feedback)

    def stats(self) -> dict:
        with self._lock:
            averages = _average_ratings(self._feedback)
            count = len(self._feedback)
        return {
            "weights": self._weights.as_dict(),
            "static_weights": self._static_weights.as_dict(),
            "threshold": self._threshold,
            "learning_rate": self._settings.learning_rate,
            "feedback_count": count,
            "feedback_capacity": self._settings.feedback_capacity,
            "average_rating_by_tier": {t.value: avg for t, avg in averages.items()},
        }

    def _recalibrate_locked(self) -> bool:
        if len(self._feedback) < self._settings.feedback_min_records:
            return False

        averages = _average_ratings(self._feedback)
        total = sum(averages.values())
        if total <= 0:
            return False

        updated = self._weights.as_dict()
        for tier, average in averages.items():
            share = average / total
            updated[tier.value] = _clamp(
                share * self._settings.learning_rate, WEIGHT_FLOOR, WEIGHT_CEILING
            )
        self._weights = TierWeights(**updated)

        logger.info("Recalibrated tier weights: %s", self._weights.as_dict())
        return True


def _average_ratings(records: deque[FeedbackRecord]) -> dict[TierName, float]:
    """Mean rating per answer tier, for tiers with at least one record."""
    sums: dict[TierName, float] = {}
    counts: dict[TierName, int] = {}
    for record in records:
        if record.tier not in ANSWER_TIERS:
            continue
        sums[record.tier] = sums.get(record.tier, 0.0) + record.user_rating
        counts[record.tier] = counts.get(record.tier, 0) + 1
    return {tier: sums[tier] / counts[tier] for tier in sums}
