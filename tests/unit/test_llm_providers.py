"""Unit tests for the Anthropic and OpenAI extraction model adapters."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import openai
import pytest

from trainkb.config.settings import Settings
from trainkb.providers.llm.anthropic_provider import AnthropicLLMProvider
from trainkb.providers.llm.openai_provider import OpenAILLMProvider
from trainkb.utils.errors import LLMError

_ANTHROPIC_CLIENT = "trainkb.providers.llm.anthropic_provider.anthropic.AsyncAnthropic"
_OPENAI_CLIENT = "trainkb.providers.llm.openai_provider.openai.AsyncOpenAI"


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_text_model": "",
        "anthropic_api_key": "test-anthropic",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _request() -> httpx.Request:
    return httpx.Request("POST", "https://api.example.test/v1")


def _claude_client(*blocks: MagicMock, stop_reason: str = "end_turn") -> MagicMock:
    response = MagicMock(content=list(blocks), stop_reason=stop_reason)
    response.usage.input_tokens = 120
    response.usage.output_tokens = 40
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=response)
    return client


def _chat_client(content: str | None, finish_reason: str = "stop") -> MagicMock:
    choice = MagicMock(finish_reason=finish_reason)
    choice.message.content = content
    response = MagicMock(choices=[choice])
    response.usage.total_tokens = 160
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


# ======================================================================
# Anthropic
# ======================================================================


class TestAnthropicLLMProvider:
    def test_availability_follows_api_key(self) -> None:
        assert AnthropicLLMProvider(_settings()).is_available() is True
        assert AnthropicLLMProvider(_settings(anthropic_api_key="")).is_available() is False
        assert AnthropicLLMProvider(_settings()).get_provider_name() == "anthropic"

    @pytest.mark.asyncio
    async def test_keeps_only_text_blocks(self) -> None:
        client = _claude_client(
            MagicMock(type="text", text='{"packages": []}'),
            MagicMock(type="tool_use"),
        )
        with patch(_ANTHROPIC_CLIENT, return_value=client):
            result = await AnthropicLLMProvider(_settings()).complete(
                "extract", "Silver Plan", temperature=0.1, max_tokens=100
            )

        assert result == '{"packages": []}'
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "extract"
        assert kwargs["messages"] == [{"role": "user", "content": "Silver Plan"}]
        assert kwargs["max_tokens"] == 100

    @pytest.mark.asyncio
    async def test_json_output_prefills_brace(self) -> None:
        client = _claude_client(MagicMock(type="text", text='"packages": []}'))
        with patch(_ANTHROPIC_CLIENT, return_value=client):
            result = await AnthropicLLMProvider(_settings()).complete(
                "extract", "Silver Plan", json_output=True
            )

        assert result == '{"packages": []}'
        messages = client.messages.create.call_args.kwargs["messages"]
        assert messages[-1] == {"role": "assistant", "content": "{"}

    @pytest.mark.asyncio
    async def test_truncated_response_raises(self) -> None:
        client = _claude_client(
            MagicMock(type="text", text='{"packages": [{"name": "Sil'),
            stop_reason="max_tokens",
        )
        with patch(_ANTHROPIC_CLIENT, return_value=client):
            with pytest.raises(LLMError, match="truncated at 50 tokens"):
                await AnthropicLLMProvider(_settings()).complete("s", "u", max_tokens=50)

    @pytest.mark.asyncio
    async def test_no_text_blocks_raises(self) -> None:
        with patch(_ANTHROPIC_CLIENT, return_value=_claude_client()):
            with pytest.raises(LLMError, match="no text content"):
                await AnthropicLLMProvider(_settings()).complete("s", "u")

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self) -> None:
        client = MagicMock()
        client.messages.create = AsyncMock(
            side_effect=anthropic.APIConnectionError(request=_request())
        )
        with patch(_ANTHROPIC_CLIENT, return_value=client):
            with pytest.raises(LLMError) as exc_info:
                await AnthropicLLMProvider(_settings()).complete("s", "u")

        assert exc_info.value.provider_name == "anthropic"


# ======================================================================
# OpenAI
# ======================================================================


class TestOpenAILLMProvider:
    def test_label_reflects_base_url(self) -> None:
        assert OpenAILLMProvider(_settings()).get_provider_name() == "openai"
        compatible = OpenAILLMProvider(_settings(openai_base_url="https://api.together.xyz/v1"))
        assert compatible.get_provider_name() == "openai-compatible"

    def test_availability(self) -> None:
        assert OpenAILLMProvider(_settings()).is_available() is True
        assert OpenAILLMProvider(_settings(openai_api_key="")).is_available() is False

    @pytest.mark.asyncio
    async def test_default_model_and_messages(self) -> None:
        client = _chat_client("hello")
        with patch(_OPENAI_CLIENT, return_value=client):
            result = await OpenAILLMProvider(_settings()).complete("extract", "Silver Plan")

        assert result == "hello"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"][0] == {"role": "system", "content": "extract"}
        assert "response_format" not in kwargs

    @pytest.mark.asyncio
    async def test_json_output_sets_response_format(self) -> None:
        client = _chat_client('{"packages": []}')
        with patch(_OPENAI_CLIENT, return_value=client):
            provider = OpenAILLMProvider(_settings(openai_text_model="gpt-test"))
            await provider.complete("extract", "Silver Plan", json_output=True)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_truncated_response_raises(self) -> None:
        with patch(_OPENAI_CLIENT, return_value=_chat_client('{"pack', finish_reason="length")):
            with pytest.raises(LLMError, match="truncated"):
                await OpenAILLMProvider(_settings()).complete("s", "u")

    @pytest.mark.asyncio
    async def test_empty_content_raises(self) -> None:
        with patch(_OPENAI_CLIENT, return_value=_chat_client(None)):
            with pytest.raises(LLMError, match="empty response"):
                await OpenAILLMProvider(_settings()).complete("s", "u")

    @pytest.mark.asyncio
    async def test_timeout_wrapped(self) -> None:
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            side_effect=openai.APITimeoutError(request=_request())
        )
        with patch(_OPENAI_CLIENT, return_value=client):
            with pytest.raises(LLMError, match="timed out"):
                await OpenAILLMProvider(_settings()).complete("s", "u")
