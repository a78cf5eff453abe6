"""LLM providers package for AlertSynth."""

from typing import Any, Dict

from alertsynth.config.models import BackendConfig, BackendProvider
from alertsynth.core.exceptions import ConfigurationError
from alertsynth.llm.base import BaseLLMProvider
from alertsynth.llm.providers.anthropic_provider import AnthropicProvider
from alertsynth.llm.providers.openai_provider import OpenAIProvider


def provider_settings(config: BackendConfig) -> Dict[str, Any]:
    """Provider configuration dictionary for a ``BackendConfig``."""
    settings: Dict[str, Any] = {
        "api_key": config.api_key,
        "model": config.model,
        "base_url": config.base_url,
        "timeout_seconds": config.request_timeout,
    }
    if config.provider == BackendProvider.AZURE_OPENAI:
        settings.update({
            "azure_endpoint": config.azure_endpoint,
            "azure_deployment": config.azure_deployment,
            "azure_api_version": config.azure_api_version,
        })
    return settings


def create_provider(config: BackendConfig) -> BaseLLMProvider:
    """Create the backend selected by ``config.provider``."""
    settings = provider_settings(config)
    if config.provider == BackendProvider.ANTHROPIC:
        return AnthropicProvider(settings)
    if config.provider == BackendProvider.AZURE_OPENAI and not config.azure_endpoint:
        raise ConfigurationError("backend.azure_endpoint is required for the azure_openai provider")
    return OpenAIProvider(settings)


__all__ = [
    "AnthropicProvider",
    "OpenAIProvider",
    "create_provider",
    "provider_settings",
]
