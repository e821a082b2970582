# =============================================================================
# Tier Strategies — Structured Records, Policy Documents, LLM
# =============================================================================
#
# Each tier turns a query into at most one CandidateAnswer:
#
#   StructuredTier  — catalog records from the "structured" collection,
#                     re-scored by keyword relevance before being trusted
#   DocumentTier    — MITC chunks from the "document-chunk" collection
#   GenerativeTier  — LLM completion with an advisor context string
#
# CONTRACT: `attempt(query, context) -> CandidateAnswer | None`.
# None means "no relevant evidence". A tier raises only when a collaborator
# (embedder, LLM) genuinely fails; the cascade treats that as None too.
#
# DESIGN DECISION: Vector similarity alone is not trusted for structured
# records. Hash or neural embeddings rank *something* first for any
# in-domain query; the secondary keyword gate (name / category / attribute
# / bank) rejects the set when the records plainly do not match what was
# asked, letting the cascade move on to documents or the LLM.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Protocol

from cardwise.agents.query_analysis import (
    QueryAnalysis,
    analyze_query,
    build_generative_context,
)
from cardwise.config import Settings
from cardwise.exceptions import CollaboratorUnavailable
from cardwise.models.conversation import QueryContext
from cardwise.models.records import (
    DOCUMENT_CHUNK,
    STRUCTURED,
    ChunkMetadata,
    SearchHit,
    StructuredMetadata,
)
from cardwise.models.responses import CandidateAnswer, EvidenceRef, TierName
from cardwise.services.embedder import EmbeddingProvider, embed_async
from cardwise.services.scoring import NEUTRAL_SIMILARITY, RelevanceScorer, tokenize
from cardwise.services.vectorstore import InMemoryVectorIndex

logger = logging.getLogger(__name__)

CompleteChat = Callable[[str, str], Awaitable[str]]


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NAME_MATCH_WEIGHT = 3
CATEGORY_MATCH_WEIGHT = 2
ATTRIBUTE_MATCH_WEIGHT = 1
FAMILY_MATCH_BONUS = 5

STRUCTURED_BASE = 0.4
STRUCTURED_PER_RECORD = 0.1
STRUCTURED_BASE_CAP = 0.8
STRUCTURED_SPECIFIC_BONUS = 0.2
STRUCTURED_RANKING_BONUS = 0.1
STRUCTURED_CAP = 0.95

DOCUMENT_BASE = 0.4
DOCUMENT_PER_CHUNK = 0.1
DOCUMENT_CAP = 0.7


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class TierStrategy(Protocol):
    """One evidence source in the cascade."""

    name: TierName

    async def attempt(
        self, query: str, context: QueryContext
    ) -> CandidateAnswer | None: ...


# ---------------------------------------------------------------------------
# Shared Retrieval
# ---------------------------------------------------------------------------


class _IndexTier:
    """Embeds the query (with timeout) and searches one collection."""

    collection: str

    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: InMemoryVectorIndex,
        settings: Settings,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._settings = settings

    async def _search(self, query: str) -> list[SearchHit]:
        vector = await embed_async(
            self._embedder, query, self._settings.embedding_timeout_seconds
        )
        return self._index.search(
            self.collection, vector, self._settings.retrieval_top_k
        )


# ---------------------------------------------------------------------------
# Tier 1: Structured Product Records
# ---------------------------------------------------------------------------


class StructuredTier(_IndexTier):
    """
    Recommends catalog products.

    Returned records are re-scored against the query's keyword cues; the
    set is used only if its mean normalised score clears
    `structured_relevance_gate`.
    """

    name = TierName.STRUCTURED
    collection = STRUCTURED

    async def attempt(
        self, query: str, context: QueryContext
    ) -> CandidateAnswer | None:
        analysis = analyze_query(query)
        if not analysis.is_domain_query:
            logger.debug("Structured tier: not a card query, skipping")
            return None

        hits = [h for h in await self._search(query)
                if isinstance(h.metadata, StructuredMetadata)]
        if not hits:
            return None

        max_possible = max_possible_score(analysis)
        scores = [score_record(analysis, h.metadata) for h in hits]
        aggregate = sum(s / max_possible for s in scores) / len(scores)

        if aggregate < self._settings.structured_relevance_gate:
            logger.info(
                "Structured tier: relevance %.2f below gate %.2f (%d records)",
                aggregate, self._settings.structured_relevance_gate, len(hits),
            )
            return None

        # Highest keyword score first; vector rank breaks ties (stable sort)
        matched = sorted(
            ((h, s) for h, s in zip(hits, scores) if s > 0),
            key=lambda pair: pair[1],
            reverse=True,
        )
        if not matched:
            return None

        limit = analysis.requested_count or self._settings.default_summary_count
        listed = matched[:limit]
        products = [_product_of(h.metadata) for h, _ in matched]

        confidence = min(STRUCTURED_BASE_CAP, STRUCTURED_BASE + STRUCTURED_PER_RECORD * len(listed))
        if _is_specific(analysis, [h.metadata for h, _ in matched]):
            confidence += STRUCTURED_SPECIFIC_BONUS
        if analysis.is_ranking:
            confidence += STRUCTURED_RANKING_BONUS
        confidence = min(STRUCTURED_CAP, confidence)

        return CandidateAnswer(
            text=format_product_summary(query, products, limit),
            confidence=round(confidence, 4),
            tier=self.name,
            evidence=[
                EvidenceRef(
                    collection=STRUCTURED,
                    record_id=h.id,
                    similarity=round(h.similarity, 4),
                    label=h.metadata.name,
                )
                for h, _ in listed
            ],
            products=products[:limit],
        )


def max_possible_score(analysis: QueryAnalysis) -> int:
    """Name + category + one per query attribute + family bonus if a bank is named."""
    return (
        NAME_MATCH_WEIGHT
        + CATEGORY_MATCH_WEIGHT
        + ATTRIBUTE_MATCH_WEIGHT * len(analysis.attributes)
        + (FAMILY_MATCH_BONUS if analysis.mentions_bank else 0)
    )


def score_record(analysis: QueryAnalysis, metadata: StructuredMetadata) -> int:
    """Keyword relevance of one product record to the query."""
    name_tokens = set(tokenize(metadata.name))
    category = metadata.category.lower()
    product = metadata.product
    attribute_text = " ".join(
        str(product.get(key, "")) for key in ("rewards", "benefits", "features")
    ).lower()
    family_text = f"{metadata.bank_name} {metadata.name}".lower()

    score = 0
    if any(token in name_tokens for token in analysis.significant_tokens):
        score += NAME_MATCH_WEIGHT
    if category and any(c in category for c in analysis.categories):
        score += CATEGORY_MATCH_WEIGHT
    for attribute in analysis.attributes:
        if re.search(rf"\b{re.escape(attribute)}\b", attribute_text):
            score += ATTRIBUTE_MATCH_WEIGHT
    if any(re.search(rf"\b{re.escape(bank)}\b", family_text) for bank in analysis.banks):
        score += FAMILY_MATCH_BONUS
    return score


def format_product_summary(query: str, products: list[dict], limit: int) -> str:
    """Numbered '**Name** (Bank)' list with fee, rewards and benefits."""
    lines = [f'Based on your query "{query}", here are some relevant credit cards:', ""]

    for i, product in enumerate(products[:limit], 1):
        bank = product.get("bank_name")
        lines.append(f"{i}. **{product['name']}**" + (f" ({bank})" if bank else ""))
        for key, label in (
            ("annual_fee", "Annual Fee"),
            ("rewards", "Rewards"),
            ("benefits", "Benefits"),
        ):
            if product.get(key):
                lines.append(f"   {label}: {product[key]}")
        lines.append("")

    if len(products) > limit:
        lines.append(f"... and {len(products) - limit} more cards available.")
        lines.append("")

    lines.append(
        "For detailed information and to apply, please visit the respective "
        "bank's website or contact them directly."
    )
    return "\n".join(lines)


def _is_specific(analysis: QueryAnalysis, records: list[StructuredMetadata]) -> bool:
    """A bank (product family) or an exact product name is named in the query."""
    if analysis.mentions_bank:
        return True
    lowered = analysis.query.lower()
    return any(r.name and r.name.lower() in lowered for r in records)


def _product_of(metadata: StructuredMetadata) -> dict:
    if metadata.product:
        return dict(metadata.product)
    return {
        "id": metadata.product_id,
        "name": metadata.name,
        "bank_name": metadata.bank_name,
        "category": metadata.category,
    }


# ---------------------------------------------------------------------------
# Tier 2: Policy Document Chunks
# ---------------------------------------------------------------------------


class DocumentTier(_IndexTier):
    """Answers from MITC terms; confidence grows with supporting chunks, capped at 0.7."""

    name = TierName.DOCUMENT
    collection = DOCUMENT_CHUNK

    async def attempt(
        self, query: str, context: QueryContext
    ) -> CandidateAnswer | None:
        if not analyze_query(query).is_domain_query:
            logger.debug("Document tier: not a card query, skipping")
            return None

        hits = [
            h for h in await self._search(query)
            if isinstance(h.metadata, ChunkMetadata) and h.similarity > 0
        ]
        if not hits:
            return None

        confidence = min(DOCUMENT_CAP, DOCUMENT_BASE + DOCUMENT_PER_CHUNK * len(hits))

        return CandidateAnswer(
            text=format_document_answer(query, hits),
            confidence=round(confidence, 4),
            tier=self.name,
            evidence=[
                EvidenceRef(
                    collection=DOCUMENT_CHUNK,
                    record_id=h.id,
                    similarity=round(h.similarity, 4),
                    label=h.metadata.source_id,
                )
                for h in hits
            ],
        )


def format_document_answer(query: str, hits: list[SearchHit]) -> str:
    """Lead sentence, numbered chunk excerpts by card, closing caveat."""
    sections = [
        "Based on the MITC documents, here are the key terms and conditions "
        f'related to your query: "{query}".'
    ]
    for i, hit in enumerate(hits, 1):
        metadata = hit.metadata
        sections.append(f"[{i}] {metadata.source_id}:\n{metadata.text}")
    sections.append(
        "Please note that specific terms may vary by card and are subject to "
        "change. For the most current information, please refer to the official "
        "bank documents or contact the bank directly."
    )
    return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# Tier 3: Generative (LLM)
# ---------------------------------------------------------------------------


class GenerativeTier:
    """
    Delegates to `complete_chat(query, context_string)`.

    No internal gate: any non-empty completion is a candidate, scored by
    RelevanceScorer.confidence with the neutral external similarity.
    """

    name = TierName.GENERATIVE

    def __init__(
        self,
        complete_chat: CompleteChat,
        scorer: RelevanceScorer,
        settings: Settings,
    ) -> None:
        self._complete_chat = complete_chat
        self._scorer = scorer
        self._timeout = settings.llm_timeout_seconds

    async def attempt(
        self, query: str, context: QueryContext
    ) -> CandidateAnswer | None:
        context_string = build_generative_context(query, context)

        try:
            text = await asyncio.wait_for(
                self._complete_chat(query, context_string),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            raise CollaboratorUnavailable(
                "llm", f"timed out after {self._timeout:.1f}s"
            ) from e
        except CollaboratorUnavailable:
            raise
        except Exception as e:
            raise CollaboratorUnavailable("llm", str(e)) from e

        text = (text or "").strip()
        if not text:
            logger.info("Generative tier: empty completion")
            return None

        return CandidateAnswer(
            text=text,
            confidence=round(
                self._scorer.confidence(query, text, self.name, NEUTRAL_SIMILARITY), 4
            ),
            tier=self.name,
        )
