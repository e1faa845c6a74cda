"""
SearchRequest - the single input accepted by the orchestrator.

Transports (HTTP, SSE, CLI) parse their own wire format and build one of these;
construction validates every field so a malformed request fails before any
cache or provider work starts.
"""

from dataclasses import dataclass
from typing import Any

from models.errors import InvalidRequestError

DEFAULT_MAX_TOKENS = 150
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT_MS = 30000


@dataclass(frozen=True)
class SearchOptions:
    """Per-call options handed to a provider's search()."""

    max_tokens: int = DEFAULT_MAX_TOKENS
    model: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    detailed: bool = False

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000


@dataclass(frozen=True)
class SearchRequest:
    """
    Immutable search request.

    Attributes:
        query: Text to search for (non-empty)
        provider_name: Requested provider; None selects the configured default
        model: Provider-specific model override
        max_tokens: Completion budget
        temperature: Sampling temperature in [0, 1]
        detailed: Ask the provider for a long-form answer
        timeout_ms: Client-side deadline for one provider call
        no_cache: Skip both cache lookup and cache write
    """

    query: str
    provider_name: str | None = None
    model: str | None = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    detailed: bool = False
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    no_cache: bool = False

    def __post_init__(self):
        if not isinstance(self.query, str) or not self.query.strip():
            raise InvalidRequestError("Search query cannot be empty", field="query")

        if self.provider_name is not None and not isinstance(self.provider_name, str):
            raise InvalidRequestError("provider_name must be a string", field="provider_name")

        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int) or self.max_tokens <= 0:
            raise InvalidRequestError("max_tokens must be a positive integer", field="max_tokens")

        if isinstance(self.temperature, bool) or not isinstance(self.temperature, (int, float)):
            raise InvalidRequestError("temperature must be a number", field="temperature")
        if not 0.0 <= float(self.temperature) <= 1.0:
            raise InvalidRequestError("temperature must be between 0 and 1", field="temperature")

        if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int) or self.timeout_ms <= 0:
            raise InvalidRequestError("timeout_ms must be a positive integer", field="timeout_ms")

    def to_options(self) -> SearchOptions:
        return SearchOptions(
            max_tokens=self.max_tokens,
            model=self.model,
            temperature=float(self.temperature),
            timeout_ms=self.timeout_ms,
            detailed=self.detailed,
        )

    def cache_key_fields(self) -> dict[str, Any]:
        """Fields that change a provider's output and therefore the cache key."""
        return {
            "provider": self.provider_name,
            "model": self.model,
            "detailed": self.detailed,
            "max_tokens": self.max_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchRequest":
        """Build from a parsed JSON payload; accepts camelCase or snake_case keys."""
        if not isinstance(data, dict):
            raise InvalidRequestError("Search request must be an object")

        def pick(*names: str, default: Any = None) -> Any:
            for name in names:
                if name in data and data[name] is not None:
                    return data[name]
            return default

        return cls(
            query=pick("query", default=""),
            provider_name=pick("provider_name", "providerName", "provider"),
            model=pick("model"),
            max_tokens=pick("max_tokens", "maxTokens", default=DEFAULT_MAX_TOKENS),
            temperature=pick("temperature", default=DEFAULT_TEMPERATURE),
            detailed=bool(pick("detailed", default=False)),
            timeout_ms=pick("timeout_ms", "timeoutMs", "timeout", default=DEFAULT_TIMEOUT_MS),
            no_cache=bool(pick("no_cache", "noCache", default=False)),
        )
