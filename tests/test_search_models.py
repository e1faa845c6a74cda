import pytest

from models.errors import (
    InvalidRequestError,
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    SearchProviderError,
)
from models.search_request import SearchOptions, SearchRequest
from models.search_result import SearchMetadata, SearchResult, Source, TokenUsage


@pytest.mark.unit
class TestSearchRequest:
    def test_defaults(self):
        request = SearchRequest(query="what is python")

        assert request.provider_name is None
        assert request.max_tokens == 150
        assert request.temperature == 0.7
        assert request.timeout_ms == 30000
        assert request.no_cache is False

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"query": "   "}, "query"),
            ({"query": "q", "max_tokens": 0}, "max_tokens"),
            ({"query": "q", "max_tokens": True}, "max_tokens"),
            ({"query": "q", "temperature": 1.5}, "temperature"),
            ({"query": "q", "temperature": "hot"}, "temperature"),
            ({"query": "q", "timeout_ms": -1}, "timeout_ms"),
        ],
    )
    def test_invalid_fields_are_rejected(self, kwargs, field):
        with pytest.raises(InvalidRequestError) as exc_info:
            SearchRequest(**kwargs)
        assert exc_info.value.field == field

    def test_from_dict_accepts_camel_case(self):
        request = SearchRequest.from_dict(
            {"query": "q", "provider": "gemini", "maxTokens": 300, "timeout": 5000, "noCache": True}
        )

        assert request.provider_name == "gemini"
        assert request.max_tokens == 300
        assert request.timeout_ms == 5000
        assert request.no_cache is True

    def test_to_options_carries_call_parameters(self):
        options = SearchRequest(query="q", model="sonar-pro", detailed=True, timeout_ms=2500).to_options()

        assert options == SearchOptions(
            max_tokens=150, model="sonar-pro", temperature=0.7, timeout_ms=2500, detailed=True
        )
        assert options.timeout_s == 2.5

    def test_cache_key_fields_exclude_timeout_and_no_cache(self):
        fields = SearchRequest(query="q", timeout_ms=10, no_cache=True).cache_key_fields()

        assert set(fields) == {"provider", "model", "detailed", "max_tokens"}


@pytest.mark.unit
class TestSearchResult:
    def test_total_tokens_is_derived(self):
        assert TokenUsage(prompt_tokens=3, completion_tokens=4).total_tokens == 7
        assert TokenUsage.from_counts(None, None).total_tokens == 0

    def test_sources_become_an_ordered_tuple(self):
        metadata = SearchMetadata(
            model="m",
            provider="p",
            sources=[Source(url="https://b.example"), Source(url="https://a.example")],
        )

        assert isinstance(metadata.sources, tuple)
        assert [s.url for s in metadata.sources] == ["https://b.example", "https://a.example"]

    def test_dict_round_trip_uses_camel_case(self, sample_result):
        payload = sample_result.with_fallback_from("gemini").to_dict()

        assert payload["metadata"]["tokenUsage"] == {
            "promptTokens": 10,
            "completionTokens": 20,
            "totalTokens": 30,
        }
        assert payload["metadata"]["fallbackFrom"] == "gemini"
        assert SearchResult.from_dict(payload) == sample_result.with_fallback_from("gemini")

    def test_flag_helpers_return_copies(self, sample_result):
        cached = sample_result.with_cached_flag()

        assert cached.metadata.cached is True
        assert sample_result.metadata.cached is False
        assert cached.content == sample_result.content


@pytest.mark.unit
class TestErrors:
    def test_timeout_error_carries_timeout(self):
        error = ProviderTimeoutError("gemini", 1500)

        assert error.timeout_ms == 1500
        assert error.to_dict() == {
            "code": "timeout",
            "message": "Request timed out after 1500ms for provider: gemini",
            "provider": "gemini",
            "retryable": True,
            "details": {"timeout_ms": 1500},
        }

    def test_provider_errors_share_a_base(self):
        for error in (ProviderAuthError("a"), ProviderRateLimitError("b"), ProviderTimeoutError("c", 1)):
            assert isinstance(error, SearchProviderError)

        assert ProviderAuthError("openai").code == "auth"
        assert ProviderRateLimitError("openai").retryable is True
