"""OpenAI and Azure OpenAI provider implementation for AlertSynth."""

import logging
from typing import Any, Dict

from alertsynth.llm.base import BaseLLMProvider, LLMResponse
from alertsynth.llm.exceptions import BackendUnavailableError
from alertsynth.llm.providers.errors import translate_sdk_error

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseLLMProvider):
    """OpenAI LLM provider implementation.

    With ``azure_endpoint`` set the provider talks to an Azure OpenAI
    deployment instead; the deployment name is used as the model.
    """

    name = "openai"

    def __init__(self, config: Dict[str, Any]):
        """Initialize OpenAI provider.

        Args:
            config: Configuration dictionary with OpenAI settings
        """
        super().__init__(config)
        self.azure_endpoint = config.get('azure_endpoint')
        self.azure_deployment = config.get('azure_deployment')
        self.azure_api_version = config.get('azure_api_version', '2023-05-15')
        if self.azure_endpoint:
            self.name = "azure_openai"
            self.model = self.azure_deployment or config.get('model') or 'gpt-4o'
        else:
            self.model = config.get('model') or 'gpt-4o'
        self._client = None

    def _get_client(self):
        """Get or create OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise BackendUnavailableError(f"{self.name} API key is required", provider=self.name)
            try:
                import openai
            except ImportError:
                raise BackendUnavailableError(
                    "OpenAI SDK not installed. Install with: pip install openai",
                    provider=self.name,
                )
            if self.azure_endpoint:
                self._client = openai.AsyncAzureOpenAI(
                    api_key=self.api_key,
                    azure_endpoint=self.azure_endpoint,
                    api_version=self.azure_api_version,
                    timeout=self.timeout_seconds,
                    max_retries=0,
                )
            else:
                self._client = openai.AsyncOpenAI(
                    api_key=self.api_key,
                    base_url=self.base_url,
                    timeout=self.timeout_seconds,
                    max_retries=0,
                )
        return self._client

    async def generate_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> LLMResponse:
        """Generate content using the OpenAI chat completions API.

        Args:
            prompt: The prompt to send to OpenAI
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            **kwargs: ``system_message``, ``json_mode`` and extra request parameters

        Returns:
            LLMResponse with generated content
        """
        client = self._get_client()
        import openai

        system_message = kwargs.pop('system_message', "You are a security alert generator.")
        json_mode = kwargs.pop('json_mode', False)
        if json_mode:
            kwargs['response_format'] = {"type": "json_object"}

        messages = [
            {"role": "system", "content": system_message},
            {"role": "user", "content": prompt}
        ]

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                **kwargs
            )
        except openai.APIError as e:
            logger.warning(f"OpenAI content generation failed: {e}")
            raise translate_sdk_error(e, openai, self.name) from e

        content = response.choices[0].message.content or ""
        usage = response.usage
        llm_response = LLMResponse(
            content=content,
            provider=self.name,
            model=self.model,
            tokens_used=usage.total_tokens if usage else 0,
            metadata={
                "finish_reason": response.choices[0].finish_reason,
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "completion_tokens": usage.completion_tokens if usage else 0,
            }
        )
        logger.debug(f"OpenAI API response received: {len(content)} chars, {llm_response.tokens_used} tokens")
        return llm_response

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model."""
        return {
            "provider": self.name,
            "model": self.model,
            "base_url": self.azure_endpoint or self.base_url,
            "configured": bool(self.api_key)
        }
