"""LLM backend abstraction for AlertSynth."""

from alertsynth.llm.base import BaseLLMProvider, LLMResponse
from alertsynth.llm.exceptions import BackendTransientError, BackendUnavailableError, LLMError, RateLimitError
from alertsynth.llm.prompts import PromptContext

__all__ = [
    "BackendTransientError",
    "BackendUnavailableError",
    "BaseLLMProvider",
    "LLMError",
    "LLMResponse",
    "PromptContext",
    "RateLimitError",
]
