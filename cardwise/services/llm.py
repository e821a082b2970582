# =============================================================================
# Multi-Provider LLM Abstraction — Generative Tier Backend
# =============================================================================
#
# Provides a common interface for chat completions, with implementations
# for Anthropic (Claude) and OpenAI-compatible APIs (OpenAI, DeepSeek,
# Qwen, any gateway speaking the OpenAI protocol).
#
# The retrieval core sees only `complete_chat(query, context) -> str`
# (ChatCompleter below); everything provider-specific stays here.
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Matches EmbeddingProvider in embedder.py. Any class with the right
# `complete()` method works, including AsyncMock in tests.
#
# DESIGN DECISION: Native SDKs over LangChain wrappers.
# Using the anthropic and openai SDKs directly keeps request parameters
# explicit and avoids wrapper translation layers.
#
# DESIGN DECISION: Provider built lazily, on first completion.
# A missing API key must not prevent the service from starting; it only
# makes the generative tier unavailable, which the cascade already handles.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider — system prompt as message role
#   ├── build_llm_provider()     — factory, reads from Settings
#   └── ChatCompleter            — complete_chat(query, context) adapter
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from cardwise.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier (e.g., "gpt-4o-mini")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """LLM provider interface: one async request/response call."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation messages as dicts with "role" and "content".
                Roles: "user", "assistant" (no "system"; use the system param).
            system: System prompt. Anthropic takes it as a top-level kwarg,
                OpenAI as a leading {"role": "system"} message.
            temperature: Override sampling temperature.
            max_tokens: Override max output tokens.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system".
    """

    def __init__(self, settings: Settings) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key, max_retries=0)
        self._model = settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI-compatible provider for any API that follows the OpenAI spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_API_KEY=your-key
        LLM_MODEL=deepseek-chat
    """

    def __init__(self, settings: Settings) -> None:
        from openai import AsyncOpenAI

        resolved_key = settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY or OPENAI_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key, "max_retries": 0}
        if settings.llm_base_url:
            client_kwargs["base_url"] = settings.llm_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            settings.llm_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=all_messages,
            max_tokens=max_tokens or self._max_tokens,
            temperature=self._temperature if temperature is None else temperature,
        )

        content = response.choices[0].message.content or ""

        usage = response.usage
        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def build_llm_provider(settings: Settings) -> LLMProvider:
    """
    Build the configured provider.

    - "openai_compatible" → OpenAICompatibleProvider
    - "anthropic" → AnthropicProvider

    Raises:
        ValueError: If the selected provider has no API key.
    """
    if settings.llm_provider == "anthropic":
        return AnthropicProvider(settings)
    return OpenAICompatibleProvider(settings)


# ---------------------------------------------------------------------------
# complete_chat Adapter
# ---------------------------------------------------------------------------


class ChatCompleter:
    """
    `await completer(query, context)` → answer text.

    The context string becomes the system prompt and the query the single
    user message. Timeouts are applied by the caller (the generative tier),
    which also maps failures to CollaboratorUnavailable.
    """

    def __init__(
        self,
        settings: Settings,
        provider: LLMProvider | None = None,
    ) -> None:
        self._settings = settings
        self._provider = provider

    def _get_provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = build_llm_provider(self._settings)
        return self._provider

    async def __call__(self, query: str, context: str) -> str:
        response = await self._get_provider().complete(
            messages=[{"role": "user", "content": query}],
            system=context or None,
        )
        logger.info(
            "Chat completion (model=%s, tokens in=%d out=%d)",
            response.model, response.input_tokens, response.output_tokens,
        )
        return response.content
