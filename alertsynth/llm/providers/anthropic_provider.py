"""Anthropic provider implementation for AlertSynth."""

import asyncio
import logging
from typing import Any, Dict

from alertsynth.llm.base import BaseLLMProvider, LLMResponse
from alertsynth.llm.exceptions import BackendUnavailableError
from alertsynth.llm.providers.errors import translate_sdk_error

logger = logging.getLogger(__name__)


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Claude LLM provider implementation."""

    name = "anthropic"

    def __init__(self, config: Dict[str, Any]):
        """Initialize Anthropic provider.

        Args:
            config: Configuration dictionary with Anthropic settings
        """
        super().__init__(config)
        self.model = config.get('model') or 'claude-3-5-sonnet-20241022'
        self._client = None

    def _get_client(self):
        """Get or create Anthropic client."""
        if self._client is None:
            if not self.api_key:
                raise BackendUnavailableError("Anthropic API key is required", provider=self.name)
            try:
                import anthropic
            except ImportError:
                raise BackendUnavailableError(
                    "Anthropic SDK not installed. Install with: pip install anthropic",
                    provider=self.name,
                )
            client_kwargs: Dict[str, Any] = {
                "api_key": self.api_key,
                "timeout": self.timeout_seconds,
                "max_retries": 0,
            }
            if self.base_url:
                client_kwargs["base_url"] = self.base_url
            self._client = anthropic.Anthropic(**client_kwargs)
        return self._client

    async def generate_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> LLMResponse:
        """Generate content using Anthropic API.

        ``json_mode`` has no API counterpart; the system prompt already asks
        for JSON only.
        """
        client = self._get_client()
        import anthropic

        system_message = kwargs.pop('system_message', "You are a security alert generator.")
        kwargs.pop('json_mode', None)

        try:
            # Sync client, run off the event loop
            response = await asyncio.to_thread(
                client.messages.create,
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_message,
                messages=[{"role": "user", "content": prompt}],
                **kwargs
            )
        except anthropic.APIError as e:
            logger.warning(f"Anthropic content generation failed: {e}")
            raise translate_sdk_error(e, anthropic, self.name) from e

        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = response.usage
        llm_response = LLMResponse(
            content=content,
            provider=self.name,
            model=self.model,
            tokens_used=(usage.input_tokens + usage.output_tokens) if usage else 0,
            metadata={
                "stop_reason": response.stop_reason,
                "input_tokens": usage.input_tokens if usage else 0,
                "output_tokens": usage.output_tokens if usage else 0,
            }
        )
        logger.debug(f"Anthropic API response received: {len(content)} chars, {llm_response.tokens_used} tokens")
        return llm_response

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model."""
        return {
            "provider": self.name,
            "model": self.model,
            "configured": bool(self.api_key)
        }
