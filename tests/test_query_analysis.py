# =============================================================================
# Unit Tests — Query Analysis
# =============================================================================
#
# Keyword cues used by the tiers: domain gate, banks, categories, result
# counts, user preferences and the generative context string.
# =============================================================================

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from cardwise.agents.query_analysis import (
    MAX_REQUESTED_COUNT,
    analyze_query,
    build_generative_context,
    extract_preferences,
    parse_requested_count,
)
from cardwise.models.conversation import ConversationTurn, QueryContext, UserPreferences
from cardwise.models.responses import TierName


def _turn(query: str) -> ConversationTurn:
    return ConversationTurn(
        query=query,
        answer_text="...",
        tier=TierName.GENERATIVE,
        confidence=0.5,
        timestamp=datetime.now(UTC),
    )


# ---------------------------------------------------------------------------
# Test: Domain Gate and Entity Cues
# ---------------------------------------------------------------------------


class TestAnalyzeQuery:
    """Tests for analyze_query()."""

    def test_bank_travel_ranking_query(self):
        analysis = analyze_query("best HDFC travel card")
        assert analysis.is_domain_query
        assert analysis.banks == ("hdfc",)
        assert analysis.categories == ("travel",)
        assert analysis.attributes == ("travel",)
        assert analysis.is_ranking
        assert not analysis.is_comparison
        assert analysis.mentions_bank
        assert set(analysis.significant_tokens) == {"hdfc", "travel"}

    @pytest.mark.parametrize(
        "query",
        ["what time is it", "tell me a joke", "weather in Mumbai tomorrow"],
    )
    def test_off_domain_queries(self, query):
        assert not analyze_query(query).is_domain_query

    @pytest.mark.parametrize(
        "query",
        ["annual fee of regalia", "hdfc lounge", "cashback options", "what is the MITC"],
    )
    def test_in_domain_queries(self, query):
        assert analyze_query(query).is_domain_query

    def test_bank_alias_maps_to_family(self):
        assert analyze_query("amex platinum card").banks == ("american express",)

    def test_comparison(self):
        assert analyze_query("HDFC vs ICICI cards").is_comparison
        assert analyze_query("HDFC vs ICICI cards").banks == ("hdfc", "icici")

    def test_word_boundaries(self):
        analysis = analyze_query("laptop canvas bag")
        assert not analysis.is_ranking
        assert not analysis.is_comparison
        assert not analysis.is_domain_query


class TestParseRequestedCount:
    """Tests for parse_requested_count()."""

    @pytest.mark.parametrize(
        "query,expected",
        [
            ("top 5 cards", 5),
            ("Top three travel cards", 3),
            ("show me 2 travel cards", 2),
            ("suggest two cashback credit cards", 2),
            ("best card", None),
            ("top 0 cards", None),
            ("top 500 cards", MAX_REQUESTED_COUNT),
        ],
    )
    def test_counts(self, query, expected):
        assert parse_requested_count(query) == expected


# ---------------------------------------------------------------------------
# Test: Preferences and Generative Context
# ---------------------------------------------------------------------------


class TestExtractPreferences:
    """Tests for extract_preferences()."""

    def test_collects_across_queries_in_first_seen_order(self):
        prefs = extract_preferences([
            "best travel card from hdfc",
            "does it have lounge access?",
            "any cashback card from sbi or hdfc",
        ])
        assert prefs.card_types == ("travel", "cashback")
        assert prefs.banks == ("hdfc", "sbi")
        assert prefs.features == ("lounge access",)

    def test_empty(self):
        assert extract_preferences([]).is_empty
        assert extract_preferences(["hello"]).is_empty


class TestBuildGenerativeContext:
    """Tests for build_generative_context()."""

    def test_plain_query(self):
        context = build_generative_context("what time is it", QueryContext())
        assert context.startswith("You are an expert credit card advisor")
        assert "verify with the respective banks" in context
        assert "Recent questions" not in context

    def test_focus_lines(self):
        context = build_generative_context("premium travel card", QueryContext())
        assert "travel benefits" in context
        assert "premium cards" in context
        assert "cashback percentages" not in context

    def test_history_and_preferences(self):
        ctx = QueryContext(
            user_id="u1",
            recent_turns=(_turn("best hdfc travel card"),),
            preferences=UserPreferences(card_types=("travel",), banks=("hdfc",)),
        )
        context = build_generative_context("and the fees?", ctx)
        assert "Recent questions from this user: best hdfc travel card." in context
        assert "card types (travel)" in context
        assert "banks (hdfc)" in context
