import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from models.errors import (
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    SearchProviderError,
)
from models.search_request import SearchOptions
from providers import (
    GeminiProvider,
    ModelBoxProvider,
    OpenAIProvider,
    OpenRouterProvider,
    PerplexityProvider,
)
from utils.retry import RetryOptions


class RecordingHandler:
    """httpx MockTransport handler returning queued responses and recording requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(status, json=body)

    @property
    def payloads(self):
        return [json.loads(r.content) for r in self.requests]


def chat_completion(content, model="gpt-4o", tool_calls=None):
    message = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 30, "total_tokens": 42},
    }


def make_provider(cls, handler, **kwargs):
    kwargs.setdefault("api_key", "test-key")
    kwargs.setdefault(
        "retry_options", RetryOptions(max_attempts=2, initial_delay=1, retryable_types=cls.transient_errors)
    )
    return cls(transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.unit
class TestPerplexityProvider:
    def test_native_citations_become_sources(self):
        handler = RecordingHandler(
            (
                200,
                {
                    "model": "sonar",
                    "choices": [{"message": {"content": "Python is a language.\n\nSOURCES:\n1. https://x.example"}}],
                    "citations": ["https://www.python.org"],
                    "search_results": [{"title": "Welcome to Python.org", "url": "https://www.python.org"}],
                    "usage": {"prompt_tokens": 5, "completion_tokens": 7, "total_tokens": 12},
                },
            )
        )
        provider = make_provider(PerplexityProvider, handler)

        result = asyncio.run(provider.search("what is python", SearchOptions(detailed=True)))

        assert result.content == "Python is a language."
        assert [s.title for s in result.metadata.sources] == ["Welcome to Python.org"]
        assert result.metadata.provider == "perplexity"
        assert result.metadata.token_usage.total_tokens == 12
        request = handler.requests[0]
        assert request.headers["Authorization"] == "Bearer test-key"
        assert handler.payloads[0]["model"] == "sonar"
        assert "detailed answer" in handler.payloads[0]["messages"][0]["content"]

    def test_sources_parsed_from_answer_without_citations(self):
        handler = RecordingHandler(
            (200, {"choices": [{"message": {"content": "Answer.\nSOURCES:\n1. Docs - https://docs.example"}}]})
        )
        provider = make_provider(PerplexityProvider, handler)

        result = asyncio.run(provider.search("q", SearchOptions(model="sonar-pro")))

        assert result.metadata.model == "sonar-pro"
        assert [(s.title, s.url) for s in result.metadata.sources] == [("Docs", "https://docs.example")]

    def test_empty_answer(self):
        handler = RecordingHandler((200, {"choices": []}))

        result = asyncio.run(make_provider(PerplexityProvider, handler).search("q"))

        assert result.content == "No results found."

    @pytest.mark.parametrize(
        "status, error_type",
        [
            (401, ProviderAuthError),
            (403, ProviderAuthError),
            (429, ProviderRateLimitError),
        ],
    )
    def test_http_status_maps_to_error_kind(self, status, error_type):
        handler = RecordingHandler((status, {"error": "nope"}))

        with pytest.raises(error_type):
            asyncio.run(make_provider(PerplexityProvider, handler).search("q"))
        assert len(handler.requests) == 1

    def test_server_error_is_retried(self):
        handler = RecordingHandler(
            (500, {"error": "boom"}),
            (200, {"choices": [{"message": {"content": "Recovered."}}]}),
        )

        result = asyncio.run(make_provider(PerplexityProvider, handler).search("q"))

        assert result.content == "Recovered."
        assert len(handler.requests) == 2

    def test_client_error_is_not_retried(self):
        handler = RecordingHandler((400, {"error": "bad model"}))

        with pytest.raises(SearchProviderError) as exc_info:
            asyncio.run(make_provider(PerplexityProvider, handler).search("q"))

        assert exc_info.value.code == "provider_error"
        assert exc_info.value.details["status_code"] == 400
        assert len(handler.requests) == 1

    def test_missing_key_fails_without_network(self, clean_env):
        handler = RecordingHandler((200, {}))
        provider = make_provider(PerplexityProvider, handler, api_key=None)

        assert asyncio.run(provider.is_available()) is False
        with pytest.raises(ProviderAuthError) as exc_info:
            asyncio.run(provider.search("q"))

        assert "PERPLEXITY_API_KEY" in str(exc_info.value)
        assert handler.requests == []

    def test_key_is_read_from_environment(self, clean_env):
        clean_env.setenv("PERPLEXITY_API_KEY", "env-key")
        handler = RecordingHandler((200, {"choices": [{"message": {"content": "ok"}}]}))
        provider = make_provider(PerplexityProvider, handler, api_key=None)

        asyncio.run(provider.search("q"))

        assert handler.requests[0].headers["Authorization"] == "Bearer env-key"

    def test_deadline_cancels_slow_call(self):
        cancelled = []

        async def slow(request):
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.append(request.url.path)
                raise
            return httpx.Response(200, json={})

        provider = PerplexityProvider(api_key="k", transport=httpx.MockTransport(slow))

        with pytest.raises(ProviderTimeoutError) as exc_info:
            asyncio.run(provider.search("q", SearchOptions(timeout_ms=50)))

        assert exc_info.value.timeout_ms == 50
        assert cancelled == ["/chat/completions"]

    def test_transport_failure_is_classified(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused")

        provider = PerplexityProvider(
            api_key="k", transport=httpx.MockTransport(refuse), retry_options=RetryOptions(max_attempts=1)
        )

        with pytest.raises(SearchProviderError) as exc_info:
            asyncio.run(provider.search("q"))

        assert exc_info.value.details["error_type"] == "ConnectError"


@pytest.mark.unit
class TestModelBoxProvider:
    def test_tool_call_results_become_sources(self):
        tool_calls = [
            {
                "id": "call_1",
                "type": "function",
                "function": {
                    "name": "web_search",
                    "arguments": json.dumps({"results": [{"title": "PEP 8", "url": "https://peps.python.org/pep-0008/"}]}),
                },
            }
        ]
        handler = RecordingHandler((200, chat_completion("Use four spaces.", tool_calls=tool_calls)))

        result = asyncio.run(make_provider(ModelBoxProvider, handler).search("python indentation"))

        assert result.content == "Use four spaces."
        assert [s.url for s in result.metadata.sources] == ["https://peps.python.org/pep-0008/"]
        payload = handler.payloads[0]
        assert payload["tools"][0]["type"] == "web_search"
        assert handler.requests[0].headers["X-Application"] == "search-orchestrator"

    def test_sources_paragraph_without_tool_calls(self):
        answer = "Use four spaces.\n\nSources:\nPEP 8 - https://peps.python.org/pep-0008/"
        handler = RecordingHandler((200, chat_completion(answer)))

        result = asyncio.run(make_provider(ModelBoxProvider, handler).search("q"))

        assert result.content == "Use four spaces."
        assert [(s.title, s.url) for s in result.metadata.sources] == [
            ("PEP 8", "https://peps.python.org/pep-0008/")
        ]

    def test_missing_choices_is_a_provider_error(self):
        handler = RecordingHandler((200, {"error": "upstream"}))

        with pytest.raises(SearchProviderError) as exc_info:
            asyncio.run(make_provider(ModelBoxProvider, handler).search("q"))

        assert "Invalid response from ModelBox API" in str(exc_info.value)


@pytest.mark.unit
class TestOpenAICompatibleProviders:
    def test_openai_parses_sources_section(self, clean_env):
        handler = RecordingHandler(
            (200, chat_completion("Python 3.13 is current.\n\nSOURCES:\n1. Python.org - https://www.python.org/downloads/"))
        )

        result = asyncio.run(make_provider(OpenAIProvider, handler).search("latest python"))

        assert result.content == "Python 3.13 is current."
        assert [s.title for s in result.metadata.sources] == ["Python.org"]
        assert result.metadata.token_usage.total_tokens == 42
        request = handler.requests[0]
        assert request.url.path.endswith("/chat/completions")
        assert handler.payloads[0]["messages"][0]["role"] == "system"

    def test_openai_auth_failure(self, clean_env):
        handler = RecordingHandler((401, {"error": {"message": "Incorrect API key provided"}}))

        with pytest.raises(ProviderAuthError):
            asyncio.run(make_provider(OpenAIProvider, handler).search("q"))

    def test_openai_rate_limit(self, clean_env):
        handler = RecordingHandler((429, {"error": {"message": "Rate limit reached"}}))

        with pytest.raises(ProviderRateLimitError):
            asyncio.run(make_provider(OpenAIProvider, handler).search("q"))

    def test_openrouter_uses_its_endpoint_and_headers(self, clean_env):
        answer = "Routed answer.\n\nSources: https://openrouter.ai/docs"
        handler = RecordingHandler((200, chat_completion(answer, model="openai/gpt-3.5-turbo")))

        result = asyncio.run(make_provider(OpenRouterProvider, handler).search("q"))

        request = handler.requests[0]
        assert request.url.host == "openrouter.ai"
        assert request.headers["X-Title"] == "Search Orchestrator"
        assert result.content == "Routed answer."
        assert [s.url for s in result.metadata.sources] == ["https://openrouter.ai/docs"]
        assert 'Web search query: "q"' in handler.payloads[0]["messages"][1]["content"]


def fake_genai_client(response=None, error=None, generate=None):
    generate = generate or AsyncMock(return_value=response, side_effect=error)
    client = SimpleNamespace(
        aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate), aclose=AsyncMock())
    )
    return client, generate


@pytest.mark.unit
class TestGeminiProvider:
    def test_answer_and_usage(self):
        response = SimpleNamespace(
            text="Gemini answer.\nSOURCES:\n1. **Google** https://ai.google.dev",
            usage_metadata=SimpleNamespace(prompt_token_count=4, candidates_token_count=6, total_token_count=10),
        )
        client, generate = fake_genai_client(response)
        provider = GeminiProvider(api_key="k", client_factory=lambda api_key: client)

        result = asyncio.run(provider.search("q", SearchOptions(max_tokens=64)))

        assert result.content == "Gemini answer."
        assert [s.title for s in result.metadata.sources] == ["Google"]
        assert result.metadata.model == "gemini-2.5-flash-lite"
        assert result.metadata.token_usage.total_tokens == 10
        kwargs = generate.await_args.kwargs
        assert kwargs["config"]["max_output_tokens"] == 64
        client.aio.aclose.assert_awaited_once()

    def test_quota_message_is_rate_limit(self):
        client, _ = fake_genai_client(error=RuntimeError("RESOURCE_EXHAUSTED: quota exceeded"))
        provider = GeminiProvider(
            api_key="k", client_factory=lambda api_key: client, retry_options=RetryOptions(max_attempts=1)
        )

        with pytest.raises(ProviderRateLimitError):
            asyncio.run(provider.search("q"))

        client.aio.aclose.assert_awaited_once()

    def test_deadline_cancels_generate_call(self):
        cancelled = []

        async def slow_generate(**kwargs):
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.append(kwargs["model"])
                raise

        client, _ = fake_genai_client(generate=slow_generate)
        provider = GeminiProvider(api_key="k", client_factory=lambda api_key: client)

        with pytest.raises(ProviderTimeoutError) as exc_info:
            asyncio.run(provider.search("q", SearchOptions(timeout_ms=50)))

        assert exc_info.value.timeout_ms == 50
        assert cancelled == ["gemini-2.5-flash-lite"]
        client.aio.aclose.assert_awaited_once()

    def test_invalid_key_message_is_auth(self):
        client, _ = fake_genai_client(error=RuntimeError("API key not valid. Please pass a valid API key."))
        provider = GeminiProvider(
            api_key="k", client_factory=lambda api_key: client, retry_options=RetryOptions(max_attempts=1)
        )

        with pytest.raises(ProviderAuthError):
            asyncio.run(provider.search("q"))
