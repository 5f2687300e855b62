"""
Custom exception hierarchy for the research job engine.

All exceptions inherit from ERJobsError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import Any

from erjobs.types import ProviderErrorCategory


class ERJobsError(Exception):
    """Base exception for all research job errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(ERJobsError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(ERJobsError):
    """Raised when a job request fails validation.

    Context should include:
        - field: The field that failed validation
        - value: The invalid value
    """

    pass


class JobNotFoundError(ERJobsError):
    """Raised when a job id does not exist in the store."""

    pass


class InvalidTransitionError(ERJobsError):
    """Raised when a job status change would move backward.

    Context should include:
        - job_id: The job being updated
        - current: The current status
        - requested: The requested status
    """

    pass


class ProviderError(ERJobsError):
    """Raised by a data provider when a call fails.

    The category tells the caller whether a retry could help. Providers
    raise one of the subclasses below; the pool runner maps anything else
    to ``ProviderErrorCategory.UNKNOWN``.
    """

    category: ProviderErrorCategory = ProviderErrorCategory.UNKNOWN

    def __init__(
        self,
        provider: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context={"provider": provider, **(context or {})})
        self.provider = provider


class ProviderAuthenticationError(ProviderError):
    """API key missing, invalid or rejected."""

    category = ProviderErrorCategory.AUTHENTICATION


class ProviderRateLimitError(ProviderError):
    """Provider rate limit exceeded."""

    category = ProviderErrorCategory.RATE_LIMIT

    def __init__(
        self,
        provider: str,
        message: str,
        retry_after: float | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(provider, message, context)
        self.retry_after = retry_after


class ProviderDataError(ProviderError):
    """Provider returned malformed or unusable data."""

    category = ProviderErrorCategory.MALFORMED_DATA


class ProviderTimeoutError(ProviderError):
    """Provider call timed out."""

    category = ProviderErrorCategory.TIMEOUT


class LLMError(ERJobsError):
    """Raised when a text completion call fails.

    Context should include:
        - model: The model being used
        - error_type: The type of error (rate_limit, auth, etc.)
    """

    pass


class PipelineError(ERJobsError):
    """Raised when a pipeline stage fails in an unexpected way."""

    pass


class JobCancelledError(ERJobsError):
    """Raised when a job's cancel token fires during execution.

    Kept separate from PipelineError so callers can tell shutdown apart
    from an application failure.
    """

    pass
