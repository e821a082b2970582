# =============================================================================
# Query Analysis — Domain Gate, Entity Cues and User Preferences
# =============================================================================
#
# Cheap keyword heuristics shared by the tiers:
#   - Domain gate: is this a credit card question at all? The structured
#     and document tiers only search when it is; anything else goes
#     straight to the generative tier.
#   - Entity cues: banks (product families), categories and attribute
#     keywords drive the structured tier's secondary relevance score.
#   - Shape cues: comparison, ranking ("best", "top") and an explicit
#     count ("top 5 cards") shape the structured summary and confidence.
#   - Preferences: card types, banks and features mentioned across a
#     user's recent turns feed the generative tier's context string.
#
# DESIGN DECISION: Word-boundary regexes, not substring checks.
# "vs" must not match inside "canvas", "top" not inside "laptop".
# =============================================================================

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from cardwise.models.conversation import QueryContext, UserPreferences
from cardwise.services.scoring import tokenize

# ---------------------------------------------------------------------------
# Keyword Tables
# ---------------------------------------------------------------------------

DOMAIN_TERMS: tuple[str, ...] = (
    "card", "cards", "credit card", "best card", "recommend", "suggestion",
    "suggestions", "annual fee", "joining fee", "fee", "fees", "charges",
    "interest rate", "reward", "rewards", "reward points", "eligibility",
    "credit limit", "credit score", "cibil", "emi", "mitc",
)

# alias → canonical bank (product family)
BANK_ALIASES: dict[str, str] = {
    "hdfc": "hdfc",
    "sbi": "sbi",
    "axis": "axis",
    "icici": "icici",
    "kotak": "kotak",
    "indusind": "indusind",
    "american express": "american express",
    "amex": "american express",
    "yes bank": "yes bank",
}

CATEGORY_TERMS: tuple[str, ...] = (
    "fuel", "travel", "cashback", "dining", "shopping", "grocery",
    "lounge", "premium",
)

# Matched against a record's rewards / benefits / features text
ATTRIBUTE_TERMS: tuple[str, ...] = (
    "travel", "cashback", "rewards", "lounge", "free", "premium", "fuel",
    "dining", "shopping", "grocery", "insurance", "movies", "milestone",
)

COMPARISON_TERMS: tuple[str, ...] = ("compare", "vs", "versus", "difference", "better")
RANKING_TERMS: tuple[str, ...] = (
    "best", "top", "recommend", "suggest", "list", "which", "rank", "ranking",
)

# Tokens that carry no product identity for name matching
GENERIC_TOKENS: frozenset[str] = frozenset({
    "best", "top", "card", "cards", "credit", "good", "recommend", "suggest",
    "which", "what", "the", "for", "with", "and", "bank", "show", "list",
    "give", "tell", "about", "are", "can", "you", "please", "want", "need",
    "compare", "versus", "better", "difference", "most",
})

_NUMBER_WORDS: dict[str, int] = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}
MAX_REQUESTED_COUNT = 20

# Preference extraction (card types, banks, features) across turns
_PREFERENCE_CARD_TYPES: tuple[str, ...] = ("travel", "cashback", "rewards", "premium")
_PREFERENCE_BANKS: tuple[str, ...] = ("hdfc", "icici", "sbi", "axis", "kotak", "yes bank")
_PREFERENCE_FEATURES: dict[str, str] = {
    "lounge": "lounge access",
    "insurance": "insurance",
    "annual fee": "low annual fee",
}

# Query cue → framing line for the generative tier
_FOCUS_LINES: dict[str, str] = {
    "travel": "Focus on travel benefits, lounge access, and travel rewards.",
    "cashback": "Focus on cashback percentages and spending categories.",
    "premium": "Focus on premium cards with high annual fees and exclusive benefits.",
}


def _pattern(terms: Iterable[str]) -> re.Pattern[str]:
    alternatives = sorted(terms, key=len, reverse=True)
    return re.compile(r"\b(" + "|".join(re.escape(t) for t in alternatives) + r")\b")


_DOMAIN_RE = _pattern(DOMAIN_TERMS)
_BANK_RE = _pattern(BANK_ALIASES)
_CATEGORY_RE = _pattern(CATEGORY_TERMS)
_ATTRIBUTE_RE = _pattern(ATTRIBUTE_TERMS)
_COMPARISON_RE = _pattern(COMPARISON_TERMS)
_RANKING_RE = _pattern(RANKING_TERMS)

_COUNT_WORD = r"(\d+|" + "|".join(_NUMBER_WORDS) + r")"
_TOP_N_RE = re.compile(rf"\btop\s+{_COUNT_WORD}\b")
_N_CARDS_RE = re.compile(rf"\b{_COUNT_WORD}\s+(?:\w+\s+){{0,2}}cards?\b")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QueryAnalysis:
    """Keyword cues extracted from one query."""

    query: str
    is_domain_query: bool
    banks: tuple[str, ...]
    categories: tuple[str, ...]
    attributes: tuple[str, ...]
    significant_tokens: tuple[str, ...]
    is_comparison: bool
    is_ranking: bool
    requested_count: int | None

    @property
    def mentions_bank(self) -> bool:
        return bool(self.banks)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def analyze_query(query: str) -> QueryAnalysis:
    lowered = query.lower()

    banks = _unique(BANK_ALIASES[m] for m in _BANK_RE.findall(lowered))
    categories = _unique(_CATEGORY_RE.findall(lowered))

    return QueryAnalysis(
        query=query,
        # A bank or category mention alone ("hdfc lounge") is in-domain
        is_domain_query=bool(_DOMAIN_RE.search(lowered) or banks or categories),
        banks=banks,
        categories=categories,
        attributes=_unique(_ATTRIBUTE_RE.findall(lowered)),
        significant_tokens=_unique(
            t for t in tokenize(query) if t not in GENERIC_TOKENS
        ),
        is_comparison=bool(_COMPARISON_RE.search(lowered)),
        is_ranking=bool(_RANKING_RE.search(lowered)),
        requested_count=parse_requested_count(lowered),
    )


def parse_requested_count(query: str) -> int | None:
    """
    Explicit result count from cues like "top 5", "top three", "2 travel cards".

    Returns None when there is no cue; values are capped at 20.
    """
    lowered = query.lower()
    match = _TOP_N_RE.search(lowered) or _N_CARDS_RE.search(lowered)
    if match is None:
        return None
    word = match.group(1)
    count = int(word) if word.isdigit() else _NUMBER_WORDS[word]
    if count < 1:
        return None
    return min(count, MAX_REQUESTED_COUNT)


def extract_preferences(queries: Iterable[str]) -> UserPreferences:
    """Card types, banks and features mentioned across queries, first-seen order."""
    card_types: list[str] = []
    banks: list[str] = []
    features: list[str] = []

    for query in queries:
        lowered = query.lower()
        for card_type in _PREFERENCE_CARD_TYPES:
            if card_type in lowered and card_type not in card_types:
                card_types.append(card_type)
        for bank in _PREFERENCE_BANKS:
            if re.search(rf"\b{re.escape(bank)}\b", lowered) and bank not in banks:
                banks.append(bank)
        for cue, feature in _PREFERENCE_FEATURES.items():
            if cue in lowered and feature not in features:
                features.append(feature)

    return UserPreferences(
        card_types=tuple(card_types),
        banks=tuple(banks),
        features=tuple(features),
    )


def build_generative_context(query: str, context: QueryContext) -> str:
    """
    System prompt for the generative tier.

    Advisor framing, one focus line per travel / cashback / premium cue,
    the user's recent questions and extracted preferences, and a closing
    instruction to send users to the bank for current terms.
    """
    lowered = query.lower()
    lines = ["You are an expert credit card advisor for the Indian market."]

    lines.extend(line for cue, line in _FOCUS_LINES.items() if cue in lowered)

    if context.recent_turns:
        recent = "; ".join(turn.query for turn in context.recent_turns)
        lines.append(f"Recent questions from this user: {recent}.")

    prefs = context.preferences
    if not prefs.is_empty:
        parts = []
        if prefs.card_types:
            parts.append(f"card types ({', '.join(prefs.card_types)})")
        if prefs.banks:
            parts.append(f"banks ({', '.join(prefs.banks)})")
        if prefs.features:
            parts.append(f"features ({', '.join(prefs.features)})")
        lines.append(f"The user has shown interest in {'; '.join(parts)}.")

    lines.append(
        "Provide practical, actionable advice and always mention that for the "
        "most current and detailed information, users should verify with the "
        "respective banks."
    )
    return " ".join(lines)


def _unique(items: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(items))
