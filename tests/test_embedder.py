# =============================================================================
# Unit Tests — Embedding Providers
# =============================================================================
#
# Hash embedder determinism, the fallback chain and the factory. The
# OpenAI client is replaced with a MagicMock; no network access.
# =============================================================================

from __future__ import annotations

import asyncio
import math
import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from cardwise.config import Settings
from cardwise.exceptions import CollaboratorUnavailable
from cardwise.services.embedder import (
    FallbackEmbedder,
    HashEmbedder,
    OpenAIEmbedder,
    build_embedder,
    embed_async,
)
from cardwise.services.vectorstore import cosine_similarity


def _settings(**overrides) -> Settings:
    values = {
        "_env_file": None,
        "embedding_dimensions": 32,
        "openai_api_key": "",
        "llm_api_key": None,
    }
    values.update(overrides)
    return Settings(**values)


class StaticEmbedder:
    def __init__(self, vector=None, error=None):
        self.vector = vector
        self.error = error
        self.dimensions = len(vector) if vector else 0

    def embed(self, text):
        if self.error:
            raise self.error
        return list(self.vector)


class SlowEmbedder:
    """Answers correctly, but only after `delay` seconds."""

    def __init__(self, dimensions, delay=0.3):
        self.dimensions = dimensions
        self.delay = delay

    def embed(self, text):
        time.sleep(self.delay)
        return [1.0] * self.dimensions


# ---------------------------------------------------------------------------
# Test: Hash Embedder
# ---------------------------------------------------------------------------


class TestHashEmbedder:
    """Tests for HashEmbedder."""

    def test_length_and_unit_norm(self):
        vector = HashEmbedder(64).embed("Annual fee waived on spends above Rs 3 lakh")
        assert len(vector) == 64
        assert math.sqrt(sum(v * v for v in vector)) == pytest.approx(1.0)

    def test_deterministic_across_instances(self):
        text = "Lounge access and travel insurance"
        assert HashEmbedder(128).embed(text) == HashEmbedder(128).embed(text)

    def test_no_tokens_gives_zero_vector(self):
        assert HashEmbedder(16).embed("?! a b") == [0.0] * 16

    def test_shared_vocabulary_is_similar(self):
        embedder = HashEmbedder(512)
        a = embedder.embed("travel card with lounge access")
        b = embedder.embed("lounge access for travel")
        assert cosine_similarity(a, b) > 0.5

    def test_invalid_dimensions(self):
        with pytest.raises(ValueError):
            HashEmbedder(0)


# ---------------------------------------------------------------------------
# Test: Fallback Chain
# ---------------------------------------------------------------------------


class TestFallbackEmbedder:
    """Tests for FallbackEmbedder."""

    def test_first_provider_wins(self):
        chain = FallbackEmbedder([StaticEmbedder([1.0, 0.0, 0.0])], dimensions=3)
        assert chain.embed("text") == [1.0, 0.0, 0.0]

    def test_failing_provider_falls_back_to_hash(self):
        chain = FallbackEmbedder(
            [StaticEmbedder(error=RuntimeError("network down"))], dimensions=8
        )
        assert chain.embed("annual fee") == HashEmbedder(8).embed("annual fee")

    def test_wrong_length_falls_back(self):
        chain = FallbackEmbedder([StaticEmbedder([1.0, 0.0])], dimensions=8)
        assert len(chain.embed("annual fee")) == 8

    def test_hash_not_appended_twice(self):
        chain = FallbackEmbedder([HashEmbedder(8)], dimensions=8)
        assert len(chain._providers) == 1

    def test_slow_provider_skipped_after_deadline(self):
        chain = FallbackEmbedder(
            [SlowEmbedder(8)], dimensions=8, provider_timeout_seconds=0.05
        )
        assert chain.embed("annual fee") == HashEmbedder(8).embed("annual fee")

    def test_provider_within_deadline_wins(self):
        chain = FallbackEmbedder(
            [SlowEmbedder(8, delay=0.0)], dimensions=8, provider_timeout_seconds=5.0
        )
        assert chain.embed("annual fee") == [1.0] * 8


# ---------------------------------------------------------------------------
# Test: OpenAI Embedder
# ---------------------------------------------------------------------------


class TestOpenAIEmbedder:
    """OpenAIEmbedder with a mocked client."""

    def test_batch_preserves_input_order(self):
        embedder = OpenAIEmbedder(_settings(openai_api_key="sk-test", embedding_dimensions=2))
        client = MagicMock()
        client.embeddings.create.return_value = SimpleNamespace(data=[
            SimpleNamespace(index=1, embedding=[0.0, 1.0]),
            SimpleNamespace(index=0, embedding=[1.0, 0.0]),
        ])
        embedder._client = client

        assert embedder.embed_batch(["first", "second"]) == [[1.0, 0.0], [0.0, 1.0]]
        kwargs = client.embeddings.create.call_args.kwargs
        assert kwargs["dimensions"] == 2
        assert kwargs["model"] == "text-embedding-3-small"

    def test_missing_key(self):
        with pytest.raises(ValueError, match="No API key"):
            OpenAIEmbedder(_settings()).embed("text")


# ---------------------------------------------------------------------------
# Test: Factory and Async Wrapper
# ---------------------------------------------------------------------------


class TestBuildEmbedder:
    """Tests for build_embedder()."""

    def test_hash_provider(self):
        embedder = build_embedder(_settings(embedding_provider="hash"))
        assert isinstance(embedder, HashEmbedder)
        assert embedder.dimensions == 32

    def test_openai_without_key_degrades_to_hash(self):
        assert isinstance(build_embedder(_settings()), HashEmbedder)

    def test_openai_with_key_uses_chain(self):
        embedder = build_embedder(_settings(openai_api_key="sk-test"))
        assert isinstance(embedder, FallbackEmbedder)
        assert embedder.dimensions == 32

    def test_provider_gets_half_the_deadline(self):
        settings = _settings(openai_api_key="sk-test", embedding_timeout_seconds=4.0)
        assert build_embedder(settings)._provider_timeout == 2.0

        with patch("openai.OpenAI") as client_cls:
            OpenAIEmbedder(settings)._get_client()
        assert client_cls.call_args.kwargs["timeout"] == 2.0


class TestEmbedAsync:
    """Tests for embed_async()."""

    def test_returns_vector(self):
        vector = asyncio.run(embed_async(HashEmbedder(8), "annual fee", 5.0))
        assert len(vector) == 8

    def test_timeout(self):
        class Slow(HashEmbedder):
            def embed(self, text):
                time.sleep(0.5)
                return super().embed(text)

        with pytest.raises(CollaboratorUnavailable) as exc_info:
            asyncio.run(embed_async(Slow(8), "annual fee", 0.05))
        assert exc_info.value.collaborator == "embedder"

    def test_fallback_chain_answers_past_outer_deadline(self):
        chain = FallbackEmbedder([SlowEmbedder(64)], dimensions=64)
        vector = asyncio.run(embed_async(chain, "hdfc card", 0.05))
        assert vector == HashEmbedder(64).embed("hdfc card")
