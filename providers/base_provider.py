import asyncio
import os
import re
import time
from abc import ABC, abstractmethod

import httpx

from models.errors import (
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderServerError,
    ProviderTimeoutError,
    SearchProviderError,
)
from models.search_request import SearchOptions
from models.search_result import SearchResult
from utils.logger import get_logger, log_fields
from utils.retry import RetryError, RetryOptions, with_retry

logger = get_logger(__name__)

_AUTH_MESSAGE_RE = re.compile(
    r"\b40[13]\b|authenticat|unauthori[sz]ed|api[ _-]?key|permission denied|forbidden",
    re.IGNORECASE,
)
_RATE_LIMIT_MESSAGE_RE = re.compile(
    r"\b429\b|rate[ _-]?limit|quota|too many requests|resource[ _]exhausted",
    re.IGNORECASE,
)

SYSTEM_PROMPT = (
    "You are a helpful assistant that can search the web and provide accurate, "
    "up-to-date information with sources."
)


class BaseSearchProvider(ABC):
    """
    Abstract base class for search providers.

    Subclasses implement ``_search`` for a single attempt against their API. The
    base class owns credential lookup, the client-side deadline, transient-error
    retries and the mapping of transport failures onto the provider error
    taxonomy, so every variant fails the same way.

    Args:
        api_key: Explicit credential; falls back to the ``api_key_env`` variable
        default_model: Model used when the request does not name one
        api_key_env: Environment variable holding the credential
        retry_options: Retry policy for transient transport failures
    """

    name: str = "base"
    display_name: str = "Base"
    DEFAULT_MODEL: str = ""
    API_KEY_ENV: str = ""

    # Failures worth repeating within the same deadline
    transient_errors: tuple[type[BaseException], ...] = (httpx.TransportError, ProviderServerError)

    def __init__(
        self,
        api_key: str | None = None,
        default_model: str | None = None,
        api_key_env: str | None = None,
        retry_options: RetryOptions | None = None,
    ):
        self._explicit_api_key = api_key
        self.api_key_env = api_key_env or self.API_KEY_ENV
        self.default_model = default_model or self.DEFAULT_MODEL
        self.retry_options = retry_options or RetryOptions(
            max_attempts=3,
            initial_delay=500,
            max_delay=4000,
            retryable_types=self.transient_errors,
        )
        self.api_key: str | None = None
        self._warned_missing_key = False

    async def initialize(self) -> None:
        """Resolve the credential. Safe to call repeatedly; never raises for a missing key."""
        if self.api_key:
            return

        self.api_key = self._explicit_api_key or os.getenv(self.api_key_env) or None
        if not self.api_key and not self._warned_missing_key:
            logger.warning(
                f"{self.display_name} API key is not set. Web search functionality will be limited.",
                extra=log_fields(provider=self.name, api_key_env=self.api_key_env),
            )
            self._warned_missing_key = True

    async def is_available(self) -> bool:
        if not self.api_key:
            await self.initialize()
        return bool(self.api_key)

    async def search(self, query: str, options: SearchOptions | None = None) -> SearchResult:
        """
        Run one search against this provider.

        Raises:
            ProviderAuthError: no credential, or the provider rejected it
            ProviderRateLimitError: provider-side throttling
            ProviderTimeoutError: ``options.timeout_ms`` elapsed; the request is cancelled
            SearchProviderError: any other failure
        """
        options = options or SearchOptions()
        if not await self.is_available():
            raise ProviderAuthError(self.name, reason=f"{self.api_key_env} is not set")

        model = options.model or self.default_model
        start_time = time.time()

        logger.debug(
            f"Performing {self.display_name} search",
            extra=log_fields(provider=self.name, model=model, query=query[:100]),
        )

        try:
            result = await asyncio.wait_for(
                self._search_with_retry(query, options, model),
                timeout=options.timeout_s,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"{self.display_name} search timed out",
                extra=log_fields(provider=self.name, model=model, timeout_ms=options.timeout_ms),
            )
            raise ProviderTimeoutError(self.name, options.timeout_ms) from None
        except SearchProviderError as e:
            self._log_failure(e, model)
            raise
        except Exception as e:
            error = self._classify_error(e, options)
            self._log_failure(error, model)
            raise error from e

        logger.info(
            f"{self.display_name} search successful",
            extra=log_fields(
                provider=self.name,
                model=result.metadata.model,
                latency_ms=int((time.time() - start_time) * 1000),
                tokens=result.metadata.token_usage.total_tokens,
                sources=len(result.metadata.sources),
            ),
        )
        return result

    @abstractmethod
    async def _search(self, query: str, options: SearchOptions, model: str) -> SearchResult:
        """Single attempt. May raise transport exceptions; the caller classifies them."""

    async def _search_with_retry(self, query: str, options: SearchOptions, model: str) -> SearchResult:
        try:
            return await with_retry(lambda: self._search(query, options, model), self.retry_options)
        except RetryError as e:
            raise e.last_error

    def format_query(self, query: str, options: SearchOptions) -> str:
        """Prompt asking for an answer followed by a ``SOURCES:`` section of numbered links."""
        if options.detailed:
            return (
                "Please provide a detailed answer to the following question, with sources at the end. "
                "Include websites, articles, or papers that contain relevant information.\n\n"
                f"Question: {query}\n\n"
                "Your answer should be comprehensive and include specific details. After your answer, "
                'include a "SOURCES:" section with numbered links to relevant websites.'
            )
        return (
            "Please provide a concise answer to the following question, with sources at the end. "
            "Include websites, articles, or papers that contain relevant information.\n\n"
            f"Question: {query}\n\n"
            "Keep your answer brief and to the point. After your answer, "
            'include a "SOURCES:" section with numbered links to relevant websites.'
        )

    def raise_for_status(self, response: httpx.Response) -> None:
        """Map an HTTP error status onto the provider taxonomy."""
        status = response.status_code
        if status < 400:
            return
        details = {"status_code": status}
        if status in (401, 403):
            raise ProviderAuthError(self.name, reason=f"HTTP {status}", details=details)
        if status == 429:
            raise ProviderRateLimitError(self.name, reason=f"HTTP {status}", details=details)
        if status >= 500:
            raise ProviderServerError(self.name, status, response.reason_phrase)
        raise SearchProviderError(
            f"{self.display_name} search failed: HTTP {status} {_short_body(response)}",
            self.name,
            details,
        )

    def _classify_error(self, error: BaseException, options: SearchOptions) -> SearchProviderError:
        """Classify an SDK or transport exception by status code, then by message."""
        status = _status_code_of(error)
        message = str(error)
        details: dict = {"error_type": type(error).__name__}
        if status is not None:
            details["status_code"] = status

        if status in (401, 403) or (status is None and _AUTH_MESSAGE_RE.search(message)):
            return ProviderAuthError(self.name, reason=message[:200] or None, details=details)
        if status == 429 or (status is None and _RATE_LIMIT_MESSAGE_RE.search(message)):
            return ProviderRateLimitError(self.name, reason=message[:200] or None, details=details)
        if isinstance(error, (TimeoutError, httpx.TimeoutException)):
            return ProviderTimeoutError(self.name, options.timeout_ms, details=details)
        return SearchProviderError(f"{self.display_name} search failed: {message}", self.name, details)

    def _log_failure(self, error: SearchProviderError, model: str) -> None:
        logger.error(
            f"{self.display_name} search failed: {error.code}",
            extra=log_fields(
                provider=self.name,
                model=model,
                error_code=error.code,
                error_message=error.message,
                retryable=error.retryable,
            ),
        )


def _status_code_of(error: BaseException) -> int | None:
    # openai.APIStatusError.status_code, google.genai APIError.code, httpx.HTTPStatusError.response
    for attr in ("status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and 100 <= value < 600:
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def _short_body(response: httpx.Response) -> str:
    try:
        return response.text[:200]
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return ""
