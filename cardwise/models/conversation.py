# =============================================================================
# Conversation and Feedback Records
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from cardwise.models.responses import TierName


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ConversationTurn:
    """One answered query in a user's history."""

    query: str
    answer_text: str
    tier: TierName
    confidence: float
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class FeedbackRecord:
    """
    A user's rating of an answer.

    `computed_confidence` is the scorer's own confidence for the same
    (query, answer, tier) at the time the feedback arrived, kept so that
    ratings can later be compared against what the scorer predicted.
    """

    query: str
    answer_text: str
    tier: TierName
    user_rating: float
    comment: str = ""
    computed_confidence: float = 0.0
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class UserPreferences:
    """Card types, banks and features a user has asked about recently."""

    card_types: tuple[str, ...] = ()
    banks: tuple[str, ...] = ()
    features: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.card_types or self.banks or self.features)


@dataclass(frozen=True)
class QueryContext:
    """
    Context handed to every tier for a single query.

    `recent_turns` holds at most the configured number of most recent turns,
    oldest first. `extra` carries caller-supplied hints (opaque to the core).
    """

    user_id: str = "default"
    recent_turns: tuple[ConversationTurn, ...] = ()
    preferences: UserPreferences = field(default_factory=UserPreferences)
    extra: dict = field(default_factory=dict)
