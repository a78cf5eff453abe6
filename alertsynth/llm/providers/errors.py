"""Translation of SDK exceptions into the backend error taxonomy."""

from types import ModuleType
from typing import Optional

from alertsynth.llm.exceptions import BackendTransientError, BackendUnavailableError, LLMError, RateLimitError


def _retry_after(error: Exception) -> Optional[float]:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def translate_sdk_error(error: Exception, sdk: ModuleType, provider: str) -> LLMError:
    """Map an ``openai``/``anthropic`` SDK exception onto our taxonomy.

    Both SDKs share the same exception names. Authentication, permission and
    not-found errors mean the backend cannot be used at all; everything else
    is worth retrying.
    """
    message = f"{provider}: {error}"
    if isinstance(error, (sdk.AuthenticationError, sdk.PermissionDeniedError, sdk.NotFoundError)):
        return BackendUnavailableError(message, provider=provider)
    if isinstance(error, sdk.RateLimitError):
        return RateLimitError(message, provider=provider, retry_after=_retry_after(error))
    return BackendTransientError(message, provider=provider)
