import httpx
import openai

from models.errors import SearchProviderError
from models.search_request import SearchOptions
from models.search_result import SearchMetadata, SearchResult, Source, TokenUsage
from providers.base_provider import BaseSearchProvider
from providers.source_parser import clean_marked_content, extract_marked_sources


class OpenAIProvider(BaseSearchProvider):
    """
    OpenAI chat completions via the async SDK.

    Also the base for OpenAI-compatible providers: subclasses set ``BASE_URL``,
    extra headers and their own prompt/source conventions.
    """

    name = "openai"
    display_name = "OpenAI"
    DEFAULT_MODEL = "gpt-4o"
    API_KEY_ENV = "OPENAI_API_KEY"
    BASE_URL: str | None = None
    SYSTEM_MESSAGE = (
        "You are a helpful assistant that provides accurate information about the world. "
        "When web searching, you provide clear, accurate information with sources."
    )

    transient_errors = BaseSearchProvider.transient_errors + (
        openai.APIConnectionError,
        openai.InternalServerError,
    )

    def __init__(self, *args, transport: httpx.AsyncBaseTransport | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._transport = transport

    def default_headers(self) -> dict[str, str] | None:
        return None

    def _build_client(self, options: SearchOptions) -> openai.AsyncOpenAI:
        # SDK retries are disabled; transient failures go through our retry policy
        return openai.AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.BASE_URL,
            default_headers=self.default_headers(),
            http_client=httpx.AsyncClient(transport=self._transport) if self._transport else None,
            max_retries=0,
            timeout=options.timeout_s,
        )

    async def _search(self, query: str, options: SearchOptions, model: str) -> SearchResult:
        client = self._build_client(options)
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": self.SYSTEM_MESSAGE},
                    {"role": "user", "content": self.format_query(query, options)},
                ],
                temperature=options.temperature,
                max_tokens=options.max_tokens,
            )
        finally:
            await client.close()

        if not response.choices:
            raise SearchProviderError(
                f"Invalid response from {self.display_name} API: no choices", self.name
            )

        message = response.choices[0].message
        text = message.content or "No results found."
        content, sources = self._parse_answer(text, message)

        usage = getattr(response, "usage", None)
        return SearchResult(
            content=content,
            metadata=SearchMetadata(
                model=response.model or model,
                provider=self.name,
                sources=sources,
                token_usage=TokenUsage.from_counts(
                    getattr(usage, "prompt_tokens", 0),
                    getattr(usage, "completion_tokens", 0),
                    getattr(usage, "total_tokens", 0),
                ),
                query=query,
            ),
        )

    def _parse_answer(self, text: str, message) -> tuple[str, list[Source]]:
        return clean_marked_content(text), extract_marked_sources(text)
