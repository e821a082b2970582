# =============================================================================
# Embedding Service — OpenAI-Compatible with Deterministic Hash Fallback
# =============================================================================
#
# The retrieval core treats embedding as a pluggable function with one hard
# contract: `embed(text)` always returns exactly D floats. How the vector is
# produced (neural model or token hashing) is not its concern.
#
# DESIGN DECISION: OpenAI SDK with configurable base_url.
# Any provider exposing the OpenAI embeddings endpoint works with zero code
# changes (OpenAI, DashScope, local gateways). The `dimensions` argument is
# always sent so the API returns D components.
#
# DESIGN DECISION: Degrade, never fail.
# FallbackEmbedder tries each provider in order; a provider that raises or
# returns the wrong length is skipped with a warning. HashEmbedder is always
# last and cannot fail, so ingestion and queries keep working (with lower
# recall) when the API key is missing or the network is down. A network
# provider gets half of `embedding_timeout_seconds`, so a hung endpoint still
# leaves time for the hash step before the caller's deadline.
#
# DESIGN DECISION: Sync interface.
# Callers on the event loop wrap `embed()` in asyncio.to_thread() with a
# timeout, so a slow embedding call never blocks other users' queries.
#
# ARCHITECTURE:
#   EmbeddingProvider (Protocol)
#   ├── OpenAIEmbedder    — OpenAI-compatible embeddings API
#   ├── HashEmbedder      — blake2b token hashing, L2-normalised
#   ├── FallbackEmbedder  — ordered chain, hash last
#   └── build_embedder()  — factory, reads from Settings
# =============================================================================

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
from collections import Counter
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Protocol

from cardwise.config import Settings
from cardwise.exceptions import CollaboratorUnavailable
from cardwise.services.scoring import tokenize

if TYPE_CHECKING:
    from openai import OpenAI

logger = logging.getLogger(__name__)

# Share of `embedding_timeout_seconds` a network provider may use, leaving
# the rest for the hash fallback inside the same deadline.
PROVIDER_TIMEOUT_SHARE = 0.5


def provider_timeout(settings: Settings) -> float:
    return settings.embedding_timeout_seconds * PROVIDER_TIMEOUT_SHARE


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class EmbeddingProvider(Protocol):
    """Maps text to a vector of exactly `dimensions` floats."""

    @property
    def dimensions(self) -> int: ...

    def embed(self, text: str) -> list[float]: ...


# ---------------------------------------------------------------------------
# Implementation 1: OpenAI-Compatible API
# ---------------------------------------------------------------------------


class OpenAIEmbedder:
    """
    Embeddings from any OpenAI-compatible endpoint.

    API key resolution order:
      1. OPENAI_API_KEY (explicit embedding key)
      2. LLM_API_KEY (shared key, e.g. one DashScope key for both)
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._client: OpenAI | None = None

    @property
    def dimensions(self) -> int:
        return self._settings.embedding_dimensions

    def _get_client(self) -> OpenAI:
        """Lazily initialize and cache the embedding client."""
        if self._client is None:
            from openai import OpenAI

            resolved_key = self._settings.openai_api_key or self._settings.llm_api_key
            if not resolved_key:
                raise ValueError(
                    "No API key configured for embeddings. "
                    "Set OPENAI_API_KEY or LLM_API_KEY in .env"
                )

            client_kwargs: dict = {
                "api_key": resolved_key,
                "timeout": provider_timeout(self._settings),
                # Retries are the caller's decision; the core never retries
                "max_retries": 0,
            }
            if self._settings.embedding_base_url:
                client_kwargs["base_url"] = self._settings.embedding_base_url

            self._client = OpenAI(**client_kwargs)

            logger.info(
                "Initialized embedding client (model=%s, base_url=%s)",
                self._settings.embedding_model,
                self._settings.embedding_base_url or "https://api.openai.com/v1",
            )
        return self._client

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed several texts in one API call, preserving input order.

        Raises:
            ValueError: If no API key is configured.
            openai.APIError: If the API call fails.
        """
        if not texts:
            return []

        response = self._get_client().embeddings.create(
            model=self._settings.embedding_model,
            input=list(texts),
            dimensions=self.dimensions,
        )

        embeddings: list[list[float]] = [[] for _ in texts]
        for item in sorted(response.data, key=lambda x: x.index):
            embeddings[item.index] = list(item.embedding)
        return embeddings

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]


# ---------------------------------------------------------------------------
# Implementation 2: Deterministic Token Hashing
# ---------------------------------------------------------------------------


class HashEmbedder:
    """
    Bag-of-words vector with tokens hashed into D buckets.

    Each token (lowercase, punctuation-stripped, length > 2) adds its term
    frequency to bucket blake2b(token) mod D. The vector is L2-normalised,
    so texts sharing vocabulary have positive cosine similarity. Text with
    no usable tokens maps to the zero vector.

    blake2b rather than hash(): Python's str hash is salted per process,
    and vectors must be identical across runs.
    """

    def __init__(self, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be positive, got {dimensions}")
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self._dimensions
        tokens = tokenize(text)
        if not tokens:
            return vector

        total = len(tokens)
        for token, count in Counter(tokens).items():
            vector[self._bucket(token)] += count / total

        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector] if norm > 0 else vector

    def _bucket(self, token: str) -> int:
        digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
        return int.from_bytes(digest, "big") % self._dimensions


# ---------------------------------------------------------------------------
# Fallback Chain
# ---------------------------------------------------------------------------


class FallbackEmbedder:
    """
    Try providers in order; the first that returns a D-length vector wins.

    The final provider must not fail; construction appends a HashEmbedder
    when the chain does not already end with one.

    Args:
        providers: Embedders to try, most preferred first.
        dimensions: Required vector length.
        provider_timeout_seconds: Per-provider deadline. A provider that
            has not answered by then is skipped like one that raised.
            None waits indefinitely.
    """

    def __init__(
        self,
        providers: Sequence[EmbeddingProvider],
        dimensions: int,
        provider_timeout_seconds: float | None = None,
    ) -> None:
        chain = list(providers)
        if not chain or not isinstance(chain[-1], HashEmbedder):
            chain.append(HashEmbedder(dimensions))
        self._providers = chain
        self._dimensions = dimensions
        self._provider_timeout = provider_timeout_seconds
        self._executor = (
            ThreadPoolExecutor(thread_name_prefix="embed")
            if provider_timeout_seconds is not None
            else None
        )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> list[float]:
        for provider in self._providers[:-1]:
            try:
                vector = self._call(provider, text)
            except TimeoutError:
                logger.warning(
                    "Embedding provider %s timed out after %.1fs. Falling back.",
                    type(provider).__name__, self._provider_timeout,
                )
                continue
            except Exception as e:
                logger.warning(
                    "Embedding provider %s failed: %s. Falling back.",
                    type(provider).__name__, e,
                )
                continue
            if len(vector) == self._dimensions:
                return vector
            logger.warning(
                "Embedding provider %s returned %d dimensions (expected %d). "
                "Falling back.",
                type(provider).__name__, len(vector), self._dimensions,
            )
        return self.last_resort(text)

    def last_resort(self, text: str) -> list[float]:
        """Embed with the final provider only. Never fails."""
        return self._providers[-1].embed(text)

    def _call(self, provider: EmbeddingProvider, text: str) -> list[float]:
        if self._executor is None:
            return provider.embed(text)
        # A timed-out call keeps running in its worker; the result is dropped
        future = self._executor.submit(provider.embed, text)
        return future.result(timeout=self._provider_timeout)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def build_embedder(settings: Settings) -> EmbeddingProvider:
    """
    Build the configured embedding provider.

    - "hash" → HashEmbedder
    - "openai" with a key → FallbackEmbedder(OpenAIEmbedder, HashEmbedder)
    - "openai" without a key → HashEmbedder (logged)
    """
    dimensions = settings.embedding_dimensions

    if settings.embedding_provider == "hash":
        logger.info("Using hash embeddings (dimensions=%d)", dimensions)
        return HashEmbedder(dimensions)

    if not (settings.openai_api_key or settings.llm_api_key):
        logger.warning(
            "No embedding API key configured; using hash embeddings "
            "(dimensions=%d)", dimensions,
        )
        return HashEmbedder(dimensions)

    return FallbackEmbedder(
        [OpenAIEmbedder(settings)],
        dimensions,
        provider_timeout_seconds=provider_timeout(settings),
    )


# ---------------------------------------------------------------------------
# Async Wrapper
# ---------------------------------------------------------------------------


async def embed_async(
    embedder: EmbeddingProvider,
    text: str,
    timeout_seconds: float,
) -> list[float]:
    """
    Run `embedder.embed(text)` in a worker thread with a timeout.

    The event loop stays free for other users' queries while a network
    embedding call is in flight. A FallbackEmbedder that misses the
    deadline answers from its last-resort provider instead.

    Raises:
        CollaboratorUnavailable: If any other embedder does not finish in
            time. The worker thread is left to finish on its own; its
            result is discarded.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(embedder.embed, text),
            timeout=timeout_seconds,
        )
    except TimeoutError as e:
        if isinstance(embedder, FallbackEmbedder):
            logger.warning(
                "Embedding timed out after %.1fs; using last-resort provider",
                timeout_seconds,
            )
            return embedder.last_resort(text)
        raise CollaboratorUnavailable(
            "embedder", f"timed out after {timeout_seconds:.1f}s"
        ) from e
