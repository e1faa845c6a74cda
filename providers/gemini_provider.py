from typing import Any, Callable

from google import genai
from google.genai import errors as genai_errors

from models.search_request import SearchOptions
from models.search_result import SearchMetadata, SearchResult, TokenUsage
from providers.base_provider import BaseSearchProvider
from providers.source_parser import clean_marked_content, extract_marked_sources


class GeminiProvider(BaseSearchProvider):
    """Google Gemini through the google-genai async client."""

    name = "gemini"
    display_name = "Gemini"
    DEFAULT_MODEL = "gemini-2.5-flash-lite"
    API_KEY_ENV = "GEMINI_API_KEY"

    transient_errors = BaseSearchProvider.transient_errors + (genai_errors.ServerError,)

    def __init__(self, *args, client_factory: Callable[[str], Any] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._client_factory = client_factory or (lambda api_key: genai.Client(api_key=api_key))

    async def _search(self, query: str, options: SearchOptions, model: str) -> SearchResult:
        # A fresh client per call; the SDK's async transport is bound to the running loop
        client = self._client_factory(self.api_key)
        try:
            response = await client.aio.models.generate_content(
                model=model,
                contents=self.format_query(query, options),
                config={
                    "temperature": options.temperature,
                    "max_output_tokens": options.max_tokens,
                },
            )
        finally:
            await client.aio.aclose()

        text = getattr(response, "text", None) or ""

        usage = None
        usage_metadata = getattr(response, "usage_metadata", None)
        if usage_metadata is not None:
            usage = TokenUsage.from_counts(
                getattr(usage_metadata, "prompt_token_count", 0),
                getattr(usage_metadata, "candidates_token_count", 0),
                getattr(usage_metadata, "total_token_count", 0),
            )

        return SearchResult(
            content=clean_marked_content(text),
            metadata=SearchMetadata(
                model=model,
                provider=self.name,
                sources=extract_marked_sources(text),
                token_usage=usage or TokenUsage(),
                query=query,
            ),
        )
