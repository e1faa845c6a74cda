"""Exception taxonomy shared by providers, the cache and the orchestrator."""

from typing import Any


class SearchError(Exception):
    """Base class for every error raised by the search engine."""


class InvalidRequestError(SearchError):
    """A SearchRequest failed validation. Never retried, never falls back."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class CacheError(SearchError):
    """Durable cache tier read/write failure. Logged by the cache, never raised to callers."""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


class UnknownProviderError(SearchError):
    """Requested provider name is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown search provider: {name}")
        self.name = name


class SearchProviderError(SearchError):
    """
    Failure while talking to a search provider.

    ``code`` follows the normalized vocabulary used in logs and API payloads:
    auth, rate_limit, timeout, provider_error.
    """

    code = "provider_error"
    retryable = False

    def __init__(self, message: str, provider: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "provider": self.provider,
            "retryable": self.retryable,
            "details": self.details,
        }


class ProviderAuthError(SearchProviderError):
    code = "auth"

    def __init__(self, provider: str, reason: str | None = None, details: dict[str, Any] | None = None):
        message = f"Authentication failed for provider: {provider}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, provider, details)


class ProviderRateLimitError(SearchProviderError):
    code = "rate_limit"
    retryable = True

    def __init__(self, provider: str, reason: str | None = None, details: dict[str, Any] | None = None):
        message = f"Rate limit exceeded for provider: {provider}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, provider, details)


class ProviderTimeoutError(SearchProviderError):
    code = "timeout"
    retryable = True

    def __init__(self, provider: str, timeout_ms: int, details: dict[str, Any] | None = None):
        details = {"timeout_ms": timeout_ms, **(details or {})}
        super().__init__(
            f"Request timed out after {timeout_ms}ms for provider: {provider}", provider, details
        )
        self.timeout_ms = timeout_ms


class ProviderServerError(SearchProviderError):
    """5xx from the provider. Retried inside the provider call, never a fallback trigger."""

    retryable = True

    def __init__(self, provider: str, status_code: int, reason: str | None = None):
        message = f"{provider} server error: {status_code}"
        if reason:
            message = f"{message} {reason}"
        super().__init__(message, provider, {"status_code": status_code})
        self.status_code = status_code


FALLBACK_ELIGIBLE_ERRORS = (ProviderAuthError, ProviderRateLimitError, ProviderTimeoutError)
