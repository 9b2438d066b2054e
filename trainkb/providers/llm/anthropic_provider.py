"""Claude adapter for chunk extraction.

The Messages API takes the system prompt as a top-level field and returns
a list of content blocks; only text blocks are kept.  JSON output is
requested by prefilling the assistant turn with ``{``, which the API then
continues, so the prefill is put back in front of the returned text.
"""

from __future__ import annotations

import anthropic
import structlog

from trainkb.config.settings import Settings
from trainkb.interfaces.llm_provider import ILLMProvider
from trainkb.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)

_JSON_PREFILL = "{"


class AnthropicLLMProvider(ILLMProvider):
    """Extraction model served by the Anthropic API.

    Constructed even without an API key so that the app can start; it then
    reports itself unavailable and every call fails with :class:`LLMError`.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.anthropic_api_key
        self._model = settings.anthropic_model
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        json_output: bool = False,
    ) -> str:
        messages = [{"role": "user", "content": user_prompt}]
        if json_output:
            messages.append({"role": "assistant", "content": _JSON_PREFILL})

        try:
            response = await self._client.messages.create(
                model=self._model,
                system=system_prompt,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except anthropic.APIError as exc:
            raise LLMError(
                message=f"Claude request failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if response.stop_reason == "max_tokens":
            raise LLMError(
                message=f"Claude response truncated at {max_tokens} tokens",
                provider_name=self.get_provider_name(),
            )
        text = "".join(block.text for block in response.content if block.type == "text")
        if not text:
            raise LLMError(
                message="Claude returned no text content",
                provider_name=self.get_provider_name(),
            )

        logger.debug(
            "llm_call_finished",
            provider=self.get_provider_name(),
            model=self._model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return _JSON_PREFILL + text if json_output else text

    def is_available(self) -> bool:
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return "anthropic"
