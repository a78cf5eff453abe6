"""Core exception classes for AlertSynth."""

from typing import Any, Optional


class AlertSynthError(Exception):
    """Base exception for all AlertSynth errors."""
    DEFAULT_CODE = "ALERTSYNTH_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.DEFAULT_CODE


class ConfigurationError(AlertSynthError):
    """Error in configuration loading or validation."""
    DEFAULT_CODE = "CONFIG_ERROR"

    def __init__(self, message: str, config_path: Optional[str] = None, error_code: Optional[str] = None):
        super().__init__(message, error_code or self.DEFAULT_CODE)
        self.config_path = config_path


class TechniqueDataError(AlertSynthError):
    """Error loading the technique/tactic table."""
    DEFAULT_CODE = "TECHNIQUE_DATA_ERROR"

    def __init__(self, message: str, source: Optional[str] = None, error_code: Optional[str] = None):
        super().__init__(message, error_code or self.DEFAULT_CODE)
        self.source = source


class StoreError(AlertSynthError):
    """Error writing to the downstream document store."""
    DEFAULT_CODE = "STORE_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[str] = None):
        super().__init__(message, error_code or self.DEFAULT_CODE)
        self.status_code = status_code


class StoreOverflowError(StoreError):
    """The store rejected a batch as too large or rate limited."""
    DEFAULT_CODE = "STORE_OVERFLOW"

    PAYLOAD_TOO_LARGE = "payload_too_large"
    RATE_LIMITED = "rate_limited"

    def __init__(
        self,
        message: str,
        reason: str = PAYLOAD_TOO_LARGE,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code, error_code=error_code or self.DEFAULT_CODE)
        self.reason = reason
        self.retry_after = retry_after


class StoreWriteError(StoreError):
    """A batch write failed for a reason other than overflow."""
    DEFAULT_CODE = "STORE_WRITE_ERROR"


class RunFailedError(AlertSynthError):
    """A generation run completed but must be reported as failed."""
    DEFAULT_CODE = "RUN_FAILED"

    def __init__(self, message: str, report: Any = None, error_code: Optional[str] = None):
        super().__init__(message, error_code or self.DEFAULT_CODE)
        self.report = report
