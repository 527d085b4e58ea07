"""
Errors raised by completion providers.

Every error carries the provider, model and, where the upstream answered,
the HTTP status so callers can map it to a user-safe message.
"""

from typing import Any, Optional


class LLMError(Exception):
    """Base exception for completion-service failures."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.details = details or {}

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.model:
            parts.append(f"model={self.model}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        return " ".join(parts)


class LLMConnectionError(LLMError):
    """The service could not be reached or the body broke mid-read."""


class LLMAuthenticationError(LLMError):
    """The service rejected our credentials (401/403)."""


class LLMRateLimitError(LLMError):
    """Too many requests (429)."""

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class LLMTimeoutError(LLMError):
    """The request exceeded its timeout."""


class LLMResponseError(LLMError):
    """Non-success status or an unparseable body."""

    def __init__(
        self,
        message: str,
        *,
        response_body: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.response_body = response_body


class LLMModelNotFoundError(LLMError):
    """The endpoint or model does not exist (404)."""


class LLMModelUnavailableError(LLMError):
    """The model exists but cannot serve the request right now (406)."""


class LLMContextLengthError(LLMError):
    """The prompt exceeds the model's context window."""


class LLMContentFilterError(LLMError):
    """The provider refused the content."""


class LLMProviderNotFoundError(LLMError):
    """No provider is registered for the requested type."""


class LLMConfigurationError(LLMError):
    """The provider configuration is unusable."""
