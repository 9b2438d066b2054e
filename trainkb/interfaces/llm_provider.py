"""Abstract base class for the language models behind chunk extraction.

The extraction engine sends one chunk of company text per call and expects
a single JSON object back.  Providers therefore expose a ``json_output``
switch that asks the backend for JSON-only output where its API supports
it, and they treat a response cut off at ``max_tokens`` as a failure: a
truncated extraction cannot be parsed and must be retried, not merged.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Implemented by AnthropicLLMProvider and OpenAILLMProvider
# (trainkb/providers/llm/).
class ILLMProvider(ABC):
    """Contract for one completion request against a hosted model."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        json_output: bool = False,
    ) -> str:
        """Send one prompt pair and return the model's text.

        Parameters
        ----------
        system_prompt:
            Extraction instructions and the expected JSON shape.
        user_prompt:
            The chunk text, prefixed with its position in the document.
        temperature:
            Sampling temperature; extraction runs close to zero.
        max_tokens:
            Response budget.  Hitting it is reported as an error.
        json_output:
            Ask the backend to answer with a bare JSON object.

        Returns
        -------
        str
            The response text.

        Raises
        ------
        trainkb.utils.errors.LLMError
            On API failure, an empty response, or a response truncated at
            ``max_tokens``.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return the label used in logs and the health check."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` when credentials are configured."""
