# =============================================================================
# Retrieval Service — Session Orchestration and Entry Point
# =============================================================================
#
# The top-level object a request handler talks to:
#
#   answer(query, user_id)   — initialise if needed, attach the user's
#                              recent turns, run the cascade, record the turn
#   record_feedback(...)     — forward a rating to the scorer
#   refresh()                — clear the index and reload both collections
#   stats()                  — index, scorer, cascade and session counters
#
# DESIGN DECISION: Injectable instance, not a module singleton.
# Every stateful piece (index, scorer, cascade, histories) hangs off one
# RetrievalService, so tests build isolated services with stub
# collaborators via build_retrieval_service(...).
#
# DESIGN DECISION: Per-user asyncio.Lock held across the whole turn.
# Two queries from the same user are answered in order and see each
# other's history; queries from different users never wait on each other.
# No lock is shared across users while a network call is in flight. Locks
# are held weakly: a user with no turn running or waiting has no entry.
#
# DESIGN DECISION: Never start empty.
# If the catalog fetch or document extraction fails (or returns nothing),
# the built-in sample products / documents are loaded instead, so the
# structured and document tiers always have something to search.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import random
import weakref
from collections import deque
from collections.abc import Awaitable, Callable

from cardwise.agents.cascade import CascadeController
from cardwise.agents.query_analysis import extract_preferences
from cardwise.agents.tiers import CompleteChat, DocumentTier, GenerativeTier, StructuredTier
from cardwise.config import Settings, get_settings
from cardwise.exceptions import CollaboratorUnavailable, DimensionMismatch
from cardwise.models.conversation import ConversationTurn, FeedbackRecord, QueryContext
from cardwise.models.records import (
    DOCUMENT_CHUNK,
    STRUCTURED,
    ChunkMetadata,
    SearchHit,
    SourceDocument,
    StructuredMetadata,
)
from cardwise.models.responses import RAGResponse, TierName
from cardwise.services.catalog import SAMPLE_PRODUCTS, CatalogClient, product_to_text
from cardwise.services.chunker import chunk_text
from cardwise.services.documents import SAMPLE_DOCUMENTS, DocumentLibrary
from cardwise.services.embedder import EmbeddingProvider, build_embedder, embed_async
from cardwise.services.llm import ChatCompleter
from cardwise.services.parser import extract_document_text
from cardwise.services.scoring import RelevanceScorer
from cardwise.services.vectorstore import InMemoryVectorIndex

logger = logging.getLogger(__name__)

CatalogSource = Callable[[], Awaitable[list[dict]]]
DocumentSource = Callable[[], list[SourceDocument]]

ERROR_ANSWER = (
    "I apologize, but I'm experiencing technical difficulties. "
    "Please try again in a moment."
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class RetrievalService:
    """
    Owns conversation history and the data lifecycle of one index.

    Use build_retrieval_service() for the default wiring.
    """

    def __init__(
        self,
        settings: Settings,
        embedder: EmbeddingProvider,
        index: InMemoryVectorIndex,
        scorer: RelevanceScorer,
        cascade: CascadeController,
        catalog_source: CatalogSource,
        document_source: DocumentSource,
    ) -> None:
        if embedder.dimensions != index.dimensions:
            raise DimensionMismatch(index.dimensions, embedder.dimensions)

        self._settings = settings
        self._embedder = embedder
        self._index = index
        self._scorer = scorer
        self._cascade = cascade
        self._catalog_source = catalog_source
        self._document_source = document_source

        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._histories: dict[str, deque[ConversationTurn]] = {}
        self._user_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def scorer(self) -> RelevanceScorer:
        return self._scorer

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load both collections once. Concurrent callers wait for the first."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            await self._load_all()
            self._initialized = True

    async def refresh(self) -> None:
        """Drop every indexed record and re-run both data loads."""
        async with self._init_lock:
            logger.info("Refreshing retrieval data")
            self._initialized = False
            self._index.clear_all()
            await self._load_all()
            self._initialized = True

    # -----------------------------------------------------------------------
    # Query Entry Point
    # -----------------------------------------------------------------------

    async def answer(
        self,
        query: str,
        user_id: str = "default",
        context: dict | None = None,
    ) -> RAGResponse:
        """
        Answer one query for one user.

        Always returns a RAGResponse: any unexpected error becomes the
        "error" tier with confidence 0. Cancellation propagates.
        """
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        async with lock:
            try:
                await self.initialize()
                query_context = self.get_conversation_context(user_id, extra=context)
                response = await self._cascade.run(query, query_context)
            except Exception:
                logger.exception("Failed to answer query for user '%s'", user_id)
                return error_response()

            self._append_turn(user_id, query, response)
            return response

    def record_feedback(
        self,
        query: str,
        answer_text: str,
        tier: TierName | str,
        rating: float,
        comment: str = "",
    ) -> FeedbackRecord:
        return self._scorer.record_feedback(query, answer_text, tier, rating, comment)

    async def search_collections(
        self,
        query: str,
        k: int | None = None,
    ) -> dict[str, list[SearchHit]]:
        """Raw top-k hits from both collections (diagnostics, no scoring)."""
        await self.initialize()
        vector = await embed_async(
            self._embedder, query, self._settings.embedding_timeout_seconds
        )
        limit = k or self._settings.retrieval_top_k
        return {
            STRUCTURED: self._index.search(STRUCTURED, vector, limit),
            DOCUMENT_CHUNK: self._index.search(DOCUMENT_CHUNK, vector, limit),
        }

    # -----------------------------------------------------------------------
    # Conversation History
    # -----------------------------------------------------------------------

    def get_history(self, user_id: str) -> list[ConversationTurn]:
        return list(self._histories.get(user_id, ()))

    def get_conversation_context(
        self,
        user_id: str,
        extra: dict | None = None,
    ) -> QueryContext:
        history = self._histories.get(user_id, ())
        n = self._settings.history_context_turns
        recent = tuple(history)[-n:] if n else ()
        return QueryContext(
            user_id=user_id,
            recent_turns=recent,
            preferences=extract_preferences(turn.query for turn in history),
            extra=dict(extra or {}),
        )

    def clear_history(self, user_id: str) -> bool:
        """Forget one user's turns. Returns False if there were none."""
        return self._histories.pop(user_id, None) is not None

    def clear_all_history(self) -> None:
        self._histories.clear()

    def _append_turn(self, user_id: str, query: str, response: RAGResponse) -> None:
        history = self._histories.get(user_id)
        if history is None:
            history = deque(maxlen=self._settings.history_capacity)
            self._histories[user_id] = history
        history.append(ConversationTurn(
            query=query,
            answer_text=response.answer,
            tier=response.tier,
            confidence=response.confidence,
            timestamp=response.timestamp,
        ))

    # -----------------------------------------------------------------------
    # Statistics
    # -----------------------------------------------------------------------

    def stats(self) -> dict:
        return {
            "initialized": self._initialized,
            "index": self._index.stats(),
            "scoring": self._scorer.stats(),
            "cascade": self._cascade.stats(),
            "active_users": sum(1 for h in self._histories.values() if h),
            "total_turns": sum(len(h) for h in self._histories.values()),
        }

    # -----------------------------------------------------------------------
    # Data Loading
    # -----------------------------------------------------------------------

    async def _load_all(self) -> None:
        documents = await self._fetch_documents()
        chunk_count = await self._ingest_documents(documents)

        products = await self._fetch_products()
        product_count = await self._ingest_products(products)

        logger.info(
            "Retrieval data loaded: %d products, %d document chunks from %d documents",
            product_count, chunk_count, len(documents),
        )

    async def _fetch_documents(self) -> list[SourceDocument]:
        try:
            documents = await asyncio.to_thread(self._document_source)
        except Exception as e:
            logger.warning("Document load failed: %s", e)
            documents = []
        if not documents:
            logger.warning("No MITC documents loaded; using built-in samples")
            documents = list(SAMPLE_DOCUMENTS)
        return documents

    async def _fetch_products(self) -> list[dict]:
        try:
            products = await self._catalog_source()
        except Exception as e:
            logger.warning("Catalog fetch failed: %s", e)
            products = []
        if not products:
            logger.warning("No catalog products loaded; using built-in samples")
            products = [dict(p) for p in SAMPLE_PRODUCTS]
        return products

    async def _ingest_documents(self, documents: list[SourceDocument]) -> int:
        items = []
        for document in documents:
            for chunk in chunk_text(
                document.text, document.source_id, self._settings.chunk_size_chars
            ):
                vector = await self._embed_for_ingestion(chunk.text, chunk.record_id)
                if vector is None:
                    continue
                items.append((
                    chunk.record_id,
                    vector,
                    ChunkMetadata(
                        source_id=chunk.source_id,
                        chunk_index=chunk.chunk_index,
                        text=chunk.text,
                        file_path=document.file_path,
                    ),
                ))
        return self._index.upsert_many(DOCUMENT_CHUNK, items)

    async def _ingest_products(self, products: list[dict]) -> int:
        items = []
        for product in products:
            name = str(product.get("name") or "").strip()
            if not name:
                continue
            product_id = str(product.get("id") or name)
            text = product_to_text(product)
            vector = await self._embed_for_ingestion(text, product_id)
            if vector is None:
                continue
            items.append((
                product_id,
                vector,
                StructuredMetadata(
                    product_id=product_id,
                    name=name,
                    text=text,
                    bank_name=str(product.get("bank_name") or ""),
                    category=str(product.get("category") or ""),
                    product=dict(product),
                ),
            ))
        return self._index.upsert_many(STRUCTURED, items)

    async def _embed_for_ingestion(self, text: str, record_id: str) -> list[float] | None:
        try:
            return await embed_async(
                self._embedder, text, self._settings.embedding_timeout_seconds
            )
        except CollaboratorUnavailable as e:
            logger.warning("Skipping record '%s': %s", record_id, e)
            return None


def error_response() -> RAGResponse:
    return RAGResponse(
        answer=ERROR_ANSWER,
        tier=TierName.ERROR,
        confidence=0.0,
    )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def build_retrieval_service(
    settings: Settings | None = None,
    *,
    embedder: EmbeddingProvider | None = None,
    complete_chat: CompleteChat | None = None,
    catalog_source: CatalogSource | None = None,
    document_source: DocumentSource | None = None,
    rng: random.Random | None = None,
) -> RetrievalService:
    """
    Wire a RetrievalService with default collaborators.

    Every collaborator can be overridden; tests typically pass a hash
    embedder, an AsyncMock completer and in-memory sources.
    """
    settings = settings or get_settings()
    embedder = embedder or build_embedder(settings)
    index = InMemoryVectorIndex(settings.embedding_dimensions)
    scorer = RelevanceScorer(settings)

    tiers = [
        StructuredTier(embedder, index, settings),
        DocumentTier(embedder, index, settings),
        GenerativeTier(complete_chat or ChatCompleter(settings), scorer, settings),
    ]
    cascade = CascadeController(tiers, scorer, rng=rng)

    if catalog_source is None:
        catalog_source = CatalogClient(settings).fetch_cards
    if document_source is None:
        document_source = DocumentLibrary(settings.documents_path, extract_document_text).load

    return RetrievalService(
        settings=settings,
        embedder=embedder,
        index=index,
        scorer=scorer,
        cascade=cascade,
        catalog_source=catalog_source,
        document_source=document_source,
    )
