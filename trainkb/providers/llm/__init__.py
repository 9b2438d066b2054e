"""LLM provider adapters.

Two concrete implementations of ILLMProvider (trainkb/interfaces/llm_provider.py):
    - AnthropicLLMProvider — Claude Sonnet via the Messages API
    - OpenAILLMProvider    — gpt-4o-mini or any OpenAI-compatible endpoint

main.py picks the first provider with a configured API key (Anthropic first).
"""

from trainkb.providers.llm.anthropic_provider import AnthropicLLMProvider
from trainkb.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["AnthropicLLMProvider", "OpenAILLMProvider"]
