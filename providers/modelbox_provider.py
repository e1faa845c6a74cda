import httpx

from models.errors import SearchProviderError
from models.search_request import SearchOptions
from models.search_result import SearchMetadata, SearchResult, TokenUsage
from providers.base_provider import SYSTEM_PROMPT, BaseSearchProvider
from providers.source_parser import (
    clean_loose_content,
    extract_loose_sources,
    sources_from_tool_calls,
)

MODELBOX_API_URL = "https://api.modelbox.com/v1/chat/completions"


class ModelBoxProvider(BaseSearchProvider):
    """
    ModelBox chat completions with its server-side ``web_search`` tool enabled.

    Sources come from the tool call results when the model used the tool, and
    from a trailing Sources paragraph otherwise.
    """

    name = "modelbox"
    display_name = "ModelBox"
    DEFAULT_MODEL = "gpt-4-turbo"
    API_KEY_ENV = "MODELBOX_API_KEY"

    def __init__(self, *args, transport: httpx.AsyncBaseTransport | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._transport = transport

    def format_query(self, query: str, options: SearchOptions) -> str:
        detail = (
            "Please provide a detailed answer with all relevant information."
            if options.detailed
            else "Please provide a concise answer with the most important information."
        )
        return (
            f'Web search query: "{query}". {detail} '
            "Use the web search tool to find accurate and up-to-date information."
        )

    async def _search(self, query: str, options: SearchOptions, model: str) -> SearchResult:
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self.format_query(query, options)},
            ],
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "tools": [
                {
                    "type": "web_search",
                    "config": {"provider": "google", "enable_search_queries": True},
                }
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Application": "search-orchestrator",
        }

        async with httpx.AsyncClient(timeout=options.timeout_s, transport=self._transport) as client:
            response = await client.post(MODELBOX_API_URL, json=payload, headers=headers)
            self.raise_for_status(response)
            data = response.json()

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise SearchProviderError(f"Invalid response from ModelBox API: {str(data)[:200]}", self.name)

        message = choices[0].get("message") or {}
        text = message.get("content") or ""

        if message.get("tool_calls"):
            sources = sources_from_tool_calls(message["tool_calls"])
        else:
            sources = extract_loose_sources(text)

        usage = data.get("usage") or {}
        return SearchResult(
            content=clean_loose_content(text),
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
