"""OpenAI chat-completions adapter for chunk extraction.

Also serves OpenAI-compatible hosts (TogetherAI, Groq, ...) when
``OPENAI_BASE_URL`` is set; the provider label then changes to
``openai-compatible`` so logs and the health check show which one is in use.
JSON output uses the ``json_object`` response format.
"""

from __future__ import annotations

from typing import Any

import openai
import structlog

from trainkb.config.settings import Settings
from trainkb.interfaces.llm_provider import ILLMProvider
from trainkb.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAILLMProvider(ILLMProvider):
    """Extraction model served by an OpenAI-compatible endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        self._model = settings.openai_text_model or DEFAULT_MODEL
        self._label = "openai-compatible" if settings.openai_base_url else "openai"
        self._client = openai.AsyncOpenAI(
            api_key=self._api_key,
            base_url=settings.openai_base_url or None,
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        json_output: bool = False,
    ) -> str:
        request: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_output:
            request["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**request)
        except openai.APITimeoutError as exc:
            raise LLMError(
                message=f"{self._label} request timed out",
                provider_name=self._label,
            ) from exc
        except openai.APIError as exc:
            raise LLMError(
                message=f"{self._label} request failed: {exc}",
                provider_name=self._label,
            ) from exc

        choice = response.choices[0]
        if choice.finish_reason == "length":
            raise LLMError(
                message=f"{self._label} response truncated at {max_tokens} tokens",
                provider_name=self._label,
            )
        if not choice.message.content:
            raise LLMError(
                message=f"{self._label} returned an empty response",
                provider_name=self._label,
            )

        logger.debug(
            "llm_call_finished",
            provider=self._label,
            model=self._model,
            total_tokens=response.usage.total_tokens if response.usage else None,
        )
        return choice.message.content

    def is_available(self) -> bool:
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return self._label
