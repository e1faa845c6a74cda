import os

from models.search_request import SearchOptions
from models.search_result import Source
from providers.base_provider import SYSTEM_PROMPT
from providers.openai_provider import OpenAIProvider
from providers.source_parser import clean_loose_content, extract_loose_sources


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter's OpenAI-compatible endpoint; any routed model name is accepted."""

    name = "openrouter"
    display_name = "OpenRouter"
    DEFAULT_MODEL = "openai/gpt-3.5-turbo"
    API_KEY_ENV = "OPENROUTER_API_KEY"
    BASE_URL = "https://openrouter.ai/api/v1"
    SYSTEM_MESSAGE = SYSTEM_PROMPT

    def default_headers(self) -> dict[str, str]:
        return {
            "HTTP-Referer": os.getenv("OPENROUTER_REFERER", "search-orchestrator"),
            "X-Title": os.getenv("OPENROUTER_TITLE", "Search Orchestrator"),
        }

    def format_query(self, query: str, options: SearchOptions) -> str:
        if options.detailed:
            return (
                f'Web search query: "{query}". Please provide a detailed answer with all relevant '
                "information, and include sources with URLs at the end of your response."
            )
        return (
            f'Web search query: "{query}". Please provide a concise answer with the most important '
            "information, and include sources with URLs at the end of your response."
        )

    def _parse_answer(self, text: str, message) -> tuple[str, list[Source]]:
        return clean_loose_content(text), extract_loose_sources(text)
