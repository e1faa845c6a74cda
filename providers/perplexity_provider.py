import httpx

from models.search_request import SearchOptions
from models.search_result import SearchMetadata, SearchResult, TokenUsage
from providers.base_provider import BaseSearchProvider
from providers.source_parser import (
    clean_marked_content,
    extract_marked_sources,
    sources_from_citations,
)

PERPLEXITY_API_URL = "https://api.perplexity.ai/chat/completions"


class PerplexityProvider(BaseSearchProvider):
    """
    Perplexity chat completions API over httpx.

    Perplexity answers with native ``citations``/``search_results``; when those are
    absent the ``SOURCES:`` section of the answer is parsed instead.
    """

    name = "perplexity"
    display_name = "Perplexity"
    DEFAULT_MODEL = "sonar"
    API_KEY_ENV = "PERPLEXITY_API_KEY"

    def __init__(self, *args, transport: httpx.AsyncBaseTransport | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._transport = transport

    async def _search(self, query: str, options: SearchOptions, model: str) -> SearchResult:
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": self.format_query(query, options)}],
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        async with httpx.AsyncClient(timeout=options.timeout_s, transport=self._transport) as client:
            response = await client.post(PERPLEXITY_API_URL, json=payload, headers=headers)
            self.raise_for_status(response)
            data = response.json()

        choices = data.get("choices") or []
        content = ""
        if choices:
            content = (choices[0].get("message") or {}).get("content") or ""
        if not content:
            content = "No results found."

        sources = sources_from_citations(data.get("citations"), data.get("search_results"))
        if not sources:
            sources = extract_marked_sources(content)

        usage = data.get("usage") or {}
        return SearchResult(
            content=clean_marked_content(content),
            metadata=SearchMetadata(
                model=data.get("model") or model,
                provider=self.name,
                sources=sources,
                token_usage=TokenUsage.from_counts(
                    usage.get("prompt_tokens"),
                    usage.get("completion_tokens"),
                    usage.get("total_tokens"),
                ),
                query=query,
            ),
        )
