from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Source:
    title: str | None = None
    url: str | None = None
    snippet: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "url": self.url, "snippet": self.snippet}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Source":
        return cls(title=data.get("title"), url=data.get("url"), snippet=data.get("snippet"))


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        if self.total_tokens == 0 and (self.prompt_tokens > 0 or self.completion_tokens > 0):
            object.__setattr__(self, "total_tokens", self.prompt_tokens + self.completion_tokens)

    @classmethod
    def from_counts(
        cls,
        prompt_tokens: int | None,
        completion_tokens: int | None,
        total_tokens: int | None = None,
    ) -> "TokenUsage":
        return cls(
            prompt_tokens=prompt_tokens or 0,
            completion_tokens=completion_tokens or 0,
            total_tokens=total_tokens or 0,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TokenUsage":
        data = data or {}
        return cls.from_counts(
            data.get("promptTokens"), data.get("completionTokens"), data.get("totalTokens")
        )


@dataclass(frozen=True)
class SearchMetadata:
    model: str
    provider: str
    sources: tuple[Source, ...] = ()
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    timestamp: str = field(default_factory=_utc_timestamp)
    cached: bool = False

    query: str | None = None
    fallback_from: str | None = None  # originally requested provider when a fallback answered

    def __post_init__(self):
        # Providers hand over lists; keep citation order but make it immutable
        if not isinstance(self.sources, tuple):
            object.__setattr__(self, "sources", tuple(self.sources))


@dataclass(frozen=True)
class SearchResult:
    content: str
    metadata: SearchMetadata

    def with_cached_flag(self) -> "SearchResult":
        return replace(self, metadata=replace(self.metadata, cached=True))

    def with_fallback_from(self, provider: str) -> "SearchResult":
        return replace(self, metadata=replace(self.metadata, fallback_from=provider))

    def to_dict(self) -> dict[str, Any]:
        md = self.metadata
        return {
            "content": self.content,
            "metadata": {
                "model": md.model,
                "provider": md.provider,
                "sources": [s.to_dict() for s in md.sources],
                "tokenUsage": md.token_usage.to_dict(),
                "timestamp": md.timestamp,
                "cached": md.cached,
                "query": md.query,
                "fallbackFrom": md.fallback_from,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchResult":
        md = data.get("metadata") or {}
        return cls(
            content=data["content"],
            metadata=SearchMetadata(
                model=md.get("model", "unknown"),
                provider=md.get("provider", "unknown"),
                sources=tuple(Source.from_dict(s) for s in md.get("sources") or []),
                token_usage=TokenUsage.from_dict(md.get("tokenUsage")),
                timestamp=md.get("timestamp") or _utc_timestamp(),
                cached=bool(md.get("cached", False)),
                query=md.get("query"),
                fallback_from=md.get("fallbackFrom"),
            ),
        )
