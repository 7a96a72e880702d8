# =============================================================================
# LLM Providers — Answer Generation Backend
# =============================================================================
#
# The query orchestrator sees one method:
#
#   await provider.complete(messages, system=...) -> LLMResponse
#
# messages are {"role": "user" | "assistant", "content": str} dicts in
# conversation order. The system instruction is passed separately because
# the two SDKs place it differently:
#   - Anthropic: top-level `system=` kwarg
#   - OpenAI-compatible: first message with role "system"
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — native Anthropic SDK (AsyncAnthropic)
#   ├── OpenAICompatibleProvider — OpenAI SDK with configurable base_url
#   └── get_llm_provider()       — lazy singleton chosen by LLM_PROVIDER
#
# DESIGN DECISION: Protocol (structural typing) over ABC. Tests hand the
# orchestrator any object with an async complete() method.
#
# DESIGN DECISION: Providers keep no conversation state. History is
# replayed from the database on every call, so any API worker can serve any
# conversation.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from docrag.config import settings

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Generated text plus usage, normalised across providers."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


class LLMProvider(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a reply to the conversation.

        Args:
            messages: Turns with "role" ("user"/"assistant") and "content".
            system: System instruction.
            temperature: Overrides settings.llm_temperature.
            max_tokens: Overrides settings.llm_max_tokens.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider:
    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or settings.llm_model
        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or settings.llm_max_tokens,
            "temperature": (
                temperature if temperature is not None else settings.llm_temperature
            ),
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        content = "".join(
            block.text for block in response.content if block.type == "text"
        )
        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-compatible
# ---------------------------------------------------------------------------
# Switching vendors is configuration only:
#   LLM_PROVIDER=openai_compatible
#   LLM_BASE_URL=https://api.deepseek.com/v1
#   LLM_API_KEY=...
#   LLM_MODEL=deepseek-chat
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model, resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=all_messages,
            max_tokens=max_tokens or settings.llm_max_tokens,
            temperature=(
                temperature if temperature is not None else settings.llm_temperature
            ),
        )

        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """Return the provider selected by settings.llm_provider, created once."""
    global _provider
    if _provider is None:
        if settings.llm_provider == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        else:
            _provider = AnthropicProvider()
    return _provider
