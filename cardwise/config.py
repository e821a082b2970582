# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# DESIGN DECISION: Pydantic V2 `BaseSettings`, frozen.
# Every service (index, scorer, tiers, cascade, orchestrator) receives the
# same Settings object at construction time and never mutates it. Runtime
# adjustments (the acceptance threshold, the adaptive tier weights) live on
# the RelevanceScorer, not here.
#
# HOW IT WORKS:
# Pydantic Settings loads values in this priority order (highest first):
#   1. Environment variables (e.g., `CONFIDENCE_THRESHOLD=0.4`)
#   2. Values from the .env file
#   3. Default values defined below
#
# USAGE:
#   from cardwise.config import get_settings
#   settings = get_settings()
#
# In tests, construct isolated instances directly:
#   Settings(embedding_provider="hash", embedding_dimensions=64)
# =============================================================================

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Immutable configuration for the retrieval-and-scoring core.

    All settings have defaults suitable for local development. Only the API
    keys need to be supplied for the OpenAI embedder and the generative tier;
    without them the embedder degrades to hashing and the generative tier
    reports itself unavailable.
    """

    # -------------------------------------------------------------------------
    # API Keys — External Services
    # -------------------------------------------------------------------------
    # OPENAI_API_KEY: embeddings (and the OpenAI-compatible LLM if LLM_API_KEY
    #   is unset)
    # ANTHROPIC_API_KEY: generative tier when LLM_PROVIDER=anthropic
    # -------------------------------------------------------------------------
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # -------------------------------------------------------------------------
    # Embedding Configuration
    # -------------------------------------------------------------------------
    # DESIGN DECISION: The dimension D is fixed process-wide. Every vector
    # upserted into the index and every query vector must have exactly D
    # components. 1536 matches text-embedding-3-small.
    #
    # embedding_provider:
    #   - "openai": OpenAI-compatible API, with the hash embedder as fallback
    #   - "hash": deterministic token hashing only (offline, tests)
    # -------------------------------------------------------------------------
    embedding_provider: str = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = Field(default=1536, ge=1)
    embedding_base_url: str | None = None
    embedding_timeout_seconds: float = Field(default=10.0, gt=0)

    # -------------------------------------------------------------------------
    # LLM Configuration — Generative Tier
    # -------------------------------------------------------------------------
    #   - "openai_compatible": OpenAI or any compatible API (set LLM_BASE_URL)
    #   - "anthropic": Claude via native Anthropic SDK
    # -------------------------------------------------------------------------
    llm_provider: str = "openai_compatible"
    llm_base_url: str | None = None
    llm_api_key: str | None = None
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=1000, ge=1)
    llm_timeout_seconds: float = Field(default=30.0, gt=0)

    # -------------------------------------------------------------------------
    # Retrieval Configuration
    # -------------------------------------------------------------------------
    # confidence_threshold: answer-acceptance gate applied by the cascade.
    # structured_relevance_gate: evidence-quality gate inside the structured
    #   tier (average keyword score across returned records).
    # The two start at the same value but mean different things, so they are
    # configured independently.
    # -------------------------------------------------------------------------
    retrieval_top_k: int = Field(default=5, ge=1)
    confidence_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    structured_relevance_gate: float = Field(default=0.3, ge=0.0, le=1.0)
    default_summary_count: int = Field(default=3, ge=1)
    chunk_size_chars: int = Field(default=1000, ge=50)

    # -------------------------------------------------------------------------
    # Scoring Configuration — Adaptive Tier Weights
    # -------------------------------------------------------------------------
    weight_structured: float = Field(default=0.4, ge=0.0, le=1.0)
    weight_document: float = Field(default=0.35, ge=0.0, le=1.0)
    weight_generative: float = Field(default=0.25, ge=0.0, le=1.0)
    learning_rate: float = Field(default=0.1, gt=0.0, le=1.0)
    feedback_capacity: int = Field(default=100, ge=1)
    feedback_min_records: int = Field(default=10, ge=1)

    # -------------------------------------------------------------------------
    # Conversation History
    # -------------------------------------------------------------------------
    history_capacity: int = Field(default=20, ge=1)
    history_context_turns: int = Field(default=5, ge=0)

    # -------------------------------------------------------------------------
    # Data Sources
    # -------------------------------------------------------------------------
    # catalog_api_base: product catalog API (POST {base}/cards)
    # documents_path: MITC PDFs laid out as <root>/<Card Name>/*.pdf
    # -------------------------------------------------------------------------
    catalog_api_base: str = "https://bk-api.bankkaro.com/sp/api"
    catalog_timeout_seconds: float = Field(default=10.0, gt=0)
    documents_path: str = "./card-mitc-documents"

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        # Settings are shared by every service; mutation would be a bug
        frozen=True,
    )

    @model_validator(mode="after")
    def _check_capacities(self) -> Settings:
        if self.history_context_turns > self.history_capacity:
            raise ValueError(
                "history_context_turns cannot exceed history_capacity "
                f"({self.history_context_turns} > {self.history_capacity})"
            )
        if self.feedback_min_records > self.feedback_capacity:
            raise ValueError(
                "feedback_min_records cannot exceed feedback_capacity "
                f"({self.feedback_min_records} > {self.feedback_capacity})"
            )
        if self.embedding_provider not in {"openai", "hash"}:
            raise ValueError(
                f"Unknown embedding_provider '{self.embedding_provider}'. "
                "Supported: 'openai', 'hash'"
            )
        if self.llm_provider not in {"openai_compatible", "anthropic"}:
            raise ValueError(
                f"Unknown llm_provider '{self.llm_provider}'. "
                "Supported: 'openai_compatible', 'anthropic'"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    DESIGN DECISION: @lru_cache keeps a single Settings per process for the
    default wiring (`build_retrieval_service()`), while tests construct
    their own Settings and pass them explicitly.
    """
    return Settings()
