# =============================================================================
# Unit Tests — Settings
# =============================================================================

import pytest
from pydantic import ValidationError

from cardwise.config import Settings


class TestSettings:
    """Defaults, environment overrides and cross-field validation."""

    def test_defaults(self, monkeypatch):
        for name in ("CONFIDENCE_THRESHOLD", "EMBEDDING_DIMENSIONS", "RETRIEVAL_TOP_K"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)
        assert settings.confidence_threshold == 0.3
        assert settings.embedding_dimensions == 1536
        assert settings.retrieval_top_k == 5
        assert settings.chunk_size_chars == 1000

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("CONFIDENCE_THRESHOLD", "0.45")
        monkeypatch.setenv("EMBEDDING_PROVIDER", "hash")
        settings = Settings(_env_file=None)
        assert settings.confidence_threshold == 0.45
        assert settings.embedding_provider == "hash"

    def test_frozen(self):
        settings = Settings(_env_file=None)
        with pytest.raises(ValidationError):
            settings.retrieval_top_k = 10

    @pytest.mark.parametrize(
        "overrides",
        [
            {"confidence_threshold": 1.5},
            {"embedding_dimensions": 0},
            {"history_capacity": 3, "history_context_turns": 5},
            {"feedback_capacity": 5, "feedback_min_records": 10},
            {"embedding_provider": "word2vec"},
            {"llm_provider": "cohere"},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)
