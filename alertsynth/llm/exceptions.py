"""LLM backend exceptions."""

from typing import Optional


class LLMError(Exception):
    """Base LLM error."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class BackendUnavailableError(LLMError):
    """Backend cannot be used at all (missing credentials, SDK or auth failure)."""
    pass


class BackendTransientError(LLMError):
    """Backend failed in a way that may succeed on retry."""
    pass


class RateLimitError(BackendTransientError):
    """Rate limit error."""

    def __init__(self, message: str, provider: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, provider)
        self.retry_after = retry_after
