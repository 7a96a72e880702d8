# =============================================================================
# Unit Tests — LLM Providers
# =============================================================================
#
# SDK clients are replaced with mocks after construction; no API calls.
# =============================================================================

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from docrag.services import llm
from docrag.services.llm import AnthropicProvider, OpenAICompatibleProvider


def _run(coro):
    return asyncio.run(coro)


TURNS = [
    {"role": "user", "content": "Earlier question"},
    {"role": "assistant", "content": "Earlier answer"},
    {"role": "user", "content": "Context + new question"},
]


class TestAnthropicProvider:
    def _provider(self) -> AnthropicProvider:
        provider = AnthropicProvider(api_key="test-key", model="claude-test")
        provider._client = MagicMock()
        provider._client.messages.create = AsyncMock(return_value=SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Part one. "),
                SimpleNamespace(type="tool_use", text="ignored"),
                SimpleNamespace(type="text", text="Part two."),
            ],
            model="claude-test",
            usage=SimpleNamespace(input_tokens=120, output_tokens=30),
        ))
        return provider

    def test_system_prompt_is_a_top_level_argument(self):
        provider = self._provider()

        _run(provider.complete(TURNS, system="Be precise."))

        kwargs = provider._client.messages.create.await_args.kwargs
        assert kwargs["system"] == "Be precise."
        assert kwargs["messages"] == TURNS
        assert kwargs["model"] == "claude-test"

    def test_text_blocks_are_concatenated(self):
        response = _run(self._provider().complete(TURNS))
        assert response.content == "Part one. Part two."
        assert (response.input_tokens, response.output_tokens) == (120, 30)

    def test_zero_temperature_is_passed_through(self):
        provider = self._provider()
        _run(provider.complete(TURNS, temperature=0.0))
        assert provider._client.messages.create.await_args.kwargs["temperature"] == 0.0

    def test_missing_key_is_rejected(self, monkeypatch):
        monkeypatch.setattr(llm.settings, "llm_api_key", None)
        monkeypatch.setattr(llm.settings, "anthropic_api_key", "")
        with pytest.raises(ValueError):
            AnthropicProvider()


class TestOpenAICompatibleProvider:
    def _provider(self, content="Answer.") -> OpenAICompatibleProvider:
        provider = OpenAICompatibleProvider(
            api_key="test-key", model="deepseek-chat", base_url="https://example.invalid/v1",
        )
        provider._client = MagicMock()
        provider._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            model="deepseek-chat",
            usage=SimpleNamespace(prompt_tokens=50, completion_tokens=5),
        ))
        return provider

    def test_system_prompt_is_the_first_message(self):
        provider = self._provider()

        _run(provider.complete(TURNS, system="Be precise."))

        messages = provider._client.chat.completions.create.await_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "Be precise."}
        assert messages[1:] == TURNS

    def test_no_system_message_without_prompt(self):
        provider = self._provider()
        _run(provider.complete(TURNS))
        messages = provider._client.chat.completions.create.await_args.kwargs["messages"]
        assert messages == TURNS

    def test_empty_content_becomes_empty_string(self):
        response = _run(self._provider(content=None).complete(TURNS))
        assert response.content == ""
        assert response.output_tokens == 5


class TestGetLLMProvider:
    def test_provider_follows_settings(self, monkeypatch):
        monkeypatch.setattr(llm, "_provider", None)
        monkeypatch.setattr(llm.settings, "llm_provider", "openai_compatible")
        monkeypatch.setattr(llm.settings, "llm_api_key", "test-key")

        provider = llm.get_llm_provider()

        assert isinstance(provider, OpenAICompatibleProvider)
        assert llm.get_llm_provider() is provider
