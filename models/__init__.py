"""
Models package: search requests, results and the error taxonomy.
"""

from .errors import (
    CacheError,
    InvalidRequestError,
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderServerError,
    ProviderTimeoutError,
    SearchError,
    SearchProviderError,
    UnknownProviderError,
)
from .search_request import SearchOptions, SearchRequest
from .search_result import SearchMetadata, SearchResult, Source, TokenUsage

__all__ = [
    "CacheError",
    "InvalidRequestError",
    "ProviderAuthError",
    "ProviderRateLimitError",
    "ProviderServerError",
    "ProviderTimeoutError",
    "SearchError",
    "SearchMetadata",
    "SearchOptions",
    "SearchProviderError",
    "SearchRequest",
    "SearchResult",
    "Source",
    "TokenUsage",
    "UnknownProviderError",
]
