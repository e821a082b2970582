# =============================================================================
# Unit Tests — Tier Strategies
# =============================================================================
#
# Structured, document and generative tiers against a real in-memory index.
# Embeddings are either the hash embedder or a tiny keyword-count embedder
# whose similarities can be worked out by hand. The LLM is an AsyncMock.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from cardwise.agents.query_analysis import analyze_query
from cardwise.agents.tiers import (
    DocumentTier,
    GenerativeTier,
    StructuredTier,
    format_product_summary,
    max_possible_score,
    score_record,
)
from cardwise.config import Settings
from cardwise.exceptions import CollaboratorUnavailable
from cardwise.models.conversation import QueryContext
from cardwise.models.records import (
    DOCUMENT_CHUNK,
    STRUCTURED,
    ChunkMetadata,
    StructuredMetadata,
)
from cardwise.models.responses import TierName
from cardwise.services.catalog import product_to_text
from cardwise.services.embedder import HashEmbedder
from cardwise.services.scoring import RelevanceScorer
from cardwise.services.vectorstore import InMemoryVectorIndex


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _settings(**overrides) -> Settings:
    values = {
        "_env_file": None,
        "embedding_provider": "hash",
        "embedding_dimensions": 256,
        "retrieval_top_k": 5,
        "confidence_threshold": 0.3,
        "structured_relevance_gate": 0.3,
        "default_summary_count": 3,
    }
    values.update(overrides)
    return Settings(**values)


class KeywordEmbedder:
    """3-D vectors counting 'fee', 'lounge' and 'cash' mentions."""

    dimensions = 3

    def embed(self, text: str) -> list[float]:
        lowered = text.lower()
        return [
            float(lowered.count("fee")),
            float(lowered.count("lounge")),
            float(lowered.count("cash")),
        ]


HDFC_TRAVEL = {
    "id": "hdfc-travel",
    "name": "HDFC Travel Plus",
    "bank_name": "HDFC Bank",
    "category": "Travel",
    "annual_fee": "Rs 2500",
    "rewards": "5X points on travel bookings",
    "benefits": "Complimentary lounge access",
}
ICICI_FUEL = {
    "id": "icici-fuel",
    "name": "ICICI Fuel Saver",
    "bank_name": "ICICI Bank",
    "category": "Fuel",
    "annual_fee": "Rs 500",
    "rewards": "Surcharge waiver",
    "benefits": "",
}


def _structured_index(embedder, products: list[dict]) -> InMemoryVectorIndex:
    index = InMemoryVectorIndex(embedder.dimensions)
    for product in products:
        text = product_to_text(product)
        index.upsert(
            STRUCTURED,
            product["id"],
            embedder.embed(text),
            StructuredMetadata(
                product_id=product["id"],
                name=product["name"],
                text=text,
                bank_name=product["bank_name"],
                category=product["category"],
                product=dict(product),
            ),
        )
    return index


def _chunk_index(embedder, texts: list[str]) -> InMemoryVectorIndex:
    index = InMemoryVectorIndex(embedder.dimensions)
    for i, text in enumerate(texts):
        index.upsert(
            DOCUMENT_CHUNK,
            f"HDFC Regalia:{i}",
            embedder.embed(text),
            ChunkMetadata(source_id="HDFC Regalia", chunk_index=i, text=text),
        )
    return index


# ---------------------------------------------------------------------------
# Test: Structured Relevance Scoring
# ---------------------------------------------------------------------------


class TestStructuredScoring:
    """Tests for score_record() and max_possible_score()."""

    def _meta(self, product: dict) -> StructuredMetadata:
        return StructuredMetadata(
            product_id=product["id"],
            name=product["name"],
            text=product_to_text(product),
            bank_name=product["bank_name"],
            category=product["category"],
            product=dict(product),
        )

    def test_full_match(self):
        analysis = analyze_query("best HDFC travel card")
        # name 3 + category 2 + one attribute 1 + bank 5
        assert max_possible_score(analysis) == 11
        assert score_record(analysis, self._meta(HDFC_TRAVEL)) == 11

    def test_no_match(self):
        analysis = analyze_query("best HDFC travel card")
        assert score_record(analysis, self._meta(ICICI_FUEL)) == 0

    def test_max_without_bank(self):
        assert max_possible_score(analyze_query("cashback card with lounge")) == 3 + 2 + 2


# ---------------------------------------------------------------------------
# Test: Structured Tier
# ---------------------------------------------------------------------------


class TestStructuredTier:
    """Tests for StructuredTier.attempt()."""

    def _tier(self, products: list[dict], **overrides) -> StructuredTier:
        embedder = HashEmbedder(256)
        return StructuredTier(
            embedder, _structured_index(embedder, products), _settings(**overrides)
        )

    def test_bank_and_category_query(self):
        tier = self._tier([HDFC_TRAVEL, ICICI_FUEL])
        candidate = _run(tier.attempt("best HDFC travel card", QueryContext()))

        assert candidate is not None
        assert candidate.tier is TierName.STRUCTURED
        # 0.4 + 0.1 * 1 listed, + 0.2 bank named, + 0.1 ranking
        assert candidate.confidence == pytest.approx(0.8)
        assert "**HDFC Travel Plus** (HDFC Bank)" in candidate.text
        assert "ICICI Fuel Saver" not in candidate.text
        assert [p["id"] for p in candidate.products] == ["hdfc-travel"]
        assert [e.record_id for e in candidate.evidence] == ["hdfc-travel"]
        assert candidate.evidence[0].collection == STRUCTURED

    def test_irrelevant_records_rejected(self):
        tier = self._tier([HDFC_TRAVEL, ICICI_FUEL])
        assert _run(tier.attempt("best cashback card", QueryContext())) is None

    def test_off_domain_query_skipped(self):
        tier = self._tier([HDFC_TRAVEL, ICICI_FUEL])
        assert _run(tier.attempt("what time is it", QueryContext())) is None

    def test_empty_collection(self):
        tier = self._tier([])
        assert _run(tier.attempt("best HDFC travel card", QueryContext())) is None

    def test_requested_count_limits_listing(self):
        products = [
            {**HDFC_TRAVEL, "id": f"hdfc-{i}", "name": f"HDFC Card {name}"}
            for i, name in enumerate(("Millennia", "Regalia", "Moneyback"))
        ]
        tier = self._tier(products)
        candidate = _run(tier.attempt("top 2 HDFC cards", QueryContext()))

        assert candidate is not None
        assert len(candidate.products) == 2
        assert len(candidate.evidence) == 2
        assert "... and 1 more cards available." in candidate.text
        # 0.4 + 0.1 * 2 listed, + 0.2 bank named, + 0.1 ranking
        assert candidate.confidence == pytest.approx(0.9)

    def test_confidence_capped(self):
        products = [
            {**HDFC_TRAVEL, "id": f"hdfc-{i}", "name": f"HDFC Travel {i}"}
            for i in range(5)
        ]
        tier = self._tier(products)
        candidate = _run(tier.attempt("top 5 HDFC travel cards", QueryContext()))
        assert candidate is not None
        assert candidate.confidence == pytest.approx(0.95)


class TestFormatProductSummary:
    """Tests for format_product_summary()."""

    def test_layout(self):
        text = format_product_summary("travel cards", [HDFC_TRAVEL, ICICI_FUEL], limit=1)
        lines = text.splitlines()
        assert lines[0] == 'Based on your query "travel cards", here are some relevant credit cards:'
        assert lines[2] == "1. **HDFC Travel Plus** (HDFC Bank)"
        assert "   Annual Fee: Rs 2500" in lines
        assert "   Rewards: 5X points on travel bookings" in lines
        assert "... and 1 more cards available." in lines
        assert lines[-1].startswith("For detailed information and to apply")

    def test_empty_fields_omitted(self):
        text = format_product_summary("fuel", [ICICI_FUEL], limit=3)
        assert "Benefits:" not in text
        assert "more cards available" not in text


# ---------------------------------------------------------------------------
# Test: Document Tier
# ---------------------------------------------------------------------------


class TestDocumentTier:
    """Tests for DocumentTier.attempt()."""

    CHUNKS = [
        "Annual fee is Rs 2500.",
        "Lounge access twice a quarter.",
        "Cash advance fee is 2.5 percent.",
    ]

    def _tier(self, texts: list[str]) -> DocumentTier:
        embedder = KeywordEmbedder()
        return DocumentTier(embedder, _chunk_index(embedder, texts), _settings())

    def test_answers_from_matching_chunks(self):
        candidate = _run(self._tier(self.CHUNKS).attempt(
            "what is the annual fee", QueryContext()
        ))
        assert candidate is not None
        assert candidate.tier is TierName.DOCUMENT
        # Two chunks with positive similarity: 0.4 + 0.1 * 2
        assert candidate.confidence == pytest.approx(0.6)
        assert [e.record_id for e in candidate.evidence] == ["HDFC Regalia:0", "HDFC Regalia:2"]
        assert "[1] HDFC Regalia:\nAnnual fee is Rs 2500." in candidate.text
        assert "Lounge access" not in candidate.text

    def test_no_similar_chunks(self):
        tier = self._tier(self.CHUNKS)
        assert _run(tier.attempt("credit card eligibility", QueryContext())) is None

    def test_confidence_capped_at_point_seven(self):
        texts = [f"Fee schedule item {i}." for i in range(6)]
        candidate = _run(self._tier(texts).attempt("late payment fee", QueryContext()))
        assert candidate is not None
        assert len(candidate.evidence) == 5
        assert candidate.confidence == pytest.approx(0.7)

    def test_off_domain_query_skipped(self):
        assert _run(self._tier(self.CHUNKS).attempt("what time is it", QueryContext())) is None

    def test_embedder_timeout_raises(self):
        class SlowEmbedder(KeywordEmbedder):
            def embed(self, text):
                import time

                time.sleep(0.5)
                return super().embed(text)

        embedder = SlowEmbedder()
        tier = DocumentTier(
            embedder,
            _chunk_index(KeywordEmbedder(), self.CHUNKS),
            _settings(embedding_timeout_seconds=0.05),
        )
        with pytest.raises(CollaboratorUnavailable, match="embedder"):
            _run(tier.attempt("annual fee", QueryContext()))


# ---------------------------------------------------------------------------
# Test: Generative Tier
# ---------------------------------------------------------------------------


class TestGenerativeTier:
    """Tests for GenerativeTier.attempt()."""

    def _tier(self, complete_chat, **overrides) -> tuple[GenerativeTier, RelevanceScorer]:
        settings = _settings(**overrides)
        scorer = RelevanceScorer(settings)
        return GenerativeTier(complete_chat, scorer, settings), scorer

    def test_scores_completion(self):
        answer = "I cannot tell what time it is right now."
        complete_chat = AsyncMock(return_value=answer)
        tier, scorer = self._tier(complete_chat)

        candidate = _run(tier.attempt("what time is it", QueryContext()))

        assert candidate is not None
        assert candidate.tier is TierName.GENERATIVE
        assert candidate.text == answer
        assert candidate.confidence == pytest.approx(
            scorer.confidence("what time is it", answer, TierName.GENERATIVE), abs=1e-4
        )
        assert candidate.confidence >= 0.3

        query, context = complete_chat.await_args.args
        assert query == "what time is it"
        assert context.startswith("You are an expert credit card advisor")

    def test_empty_completion(self):
        tier, _ = self._tier(AsyncMock(return_value="   "))
        assert _run(tier.attempt("anything", QueryContext())) is None

    def test_provider_error_reported_as_unavailable(self):
        tier, _ = self._tier(AsyncMock(side_effect=RuntimeError("rate limited")))
        with pytest.raises(CollaboratorUnavailable, match="rate limited"):
            _run(tier.attempt("anything", QueryContext()))

    def test_timeout(self):
        async def slow(query, context):
            await asyncio.sleep(1)
            return "late"

        tier, _ = self._tier(slow, llm_timeout_seconds=0.05)
        with pytest.raises(CollaboratorUnavailable, match="timed out"):
            _run(tier.attempt("anything", QueryContext()))
