"""Base LLM provider interface for AlertSynth."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from alertsynth.llm.exceptions import BackendTransientError
from alertsynth.llm.prompts import PromptContext

logger = logging.getLogger(__name__)


class LLMResponse:
    """Response from LLM provider with metadata."""

    def __init__(
        self,
        content: str,
        provider: str = "unknown",
        model: str = "unknown",
        tokens_used: int = 0,
        timestamp: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.content = content
        self.provider = provider
        self.model = model
        self.tokens_used = tokens_used
        self.timestamp = timestamp or datetime.now(timezone.utc)
        self.error: Optional[str] = None
        self.metadata: Dict[str, Any] = metadata or {}

    def __str__(self) -> str:
        return f"LLMResponse(provider={self.provider}, model={self.model}, length={len(self.content or '')})"


class BaseLLMProvider(ABC):
    """Abstract base class for LLM providers.

    The orchestrator only ever calls ``complete``; providers implement
    ``generate_content`` and hide authentication and request shaping there.
    """

    name = "base"

    def __init__(self, config: Dict[str, Any]):
        """Initialize the provider with configuration."""
        self.config = config
        self.api_key = config.get('api_key')
        self.model = config.get('model') or 'default-model'
        self.base_url = config.get('base_url')
        self.timeout_seconds = config.get('timeout_seconds', 60)

    @abstractmethod
    async def generate_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> LLMResponse:
        """Generate content from prompt.

        Args:
            prompt: The input prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            **kwargs: ``system_message`` and ``json_mode`` plus provider-specific parameters

        Returns:
            LLMResponse with generated content
        """
        pass

    async def complete(self, context: PromptContext) -> str:
        """Run one completion for ``context`` and return the raw text."""
        response = await self.generate_content(
            context.user_prompt,
            max_tokens=context.max_tokens,
            temperature=context.temperature,
            system_message=context.system_prompt,
            json_mode=context.json_mode,
        )
        if response.error:
            raise BackendTransientError(response.error, provider=self.name)
        return response.content or ""

    def is_available(self) -> bool:
        """Check if provider is properly configured and available."""
        return bool(self.api_key)

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the configured model."""
        return {
            "provider": self.name,
            "model": self.model,
            "available": self.is_available()
        }
