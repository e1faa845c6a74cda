import pytest

from models.search_result import SearchMetadata, SearchResult, Source, TokenUsage

PROVIDER_KEY_VARS = (
    "PERPLEXITY_API_KEY",
    "GEMINI_API_KEY",
    "OPENAI_API_KEY",
    "OPENROUTER_API_KEY",
    "MODELBOX_API_KEY",
)


class FakeClock:
    """Manually advanced clock. Returns whatever unit the caller works in."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, amount: float) -> None:
        self.now += amount


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def clean_env(monkeypatch):
    """Fixture removing provider credentials and overrides from the environment."""
    for var in PROVIDER_KEY_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in (
        "DEFAULT_SEARCH_PROVIDER",
        "OPENAI_BASE_URL",
        "SEARCH_CACHE_DIR",
        "SEARCH_CACHE_MAX_AGE_MS",
        "SEARCH_CACHE_MEMORY_ENABLED",
        "SEARCH_CACHE_FILE_ENABLED",
        "SEARCH_RATE_LIMIT_MAX_WAIT_MS",
    ):
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


@pytest.fixture
def sample_result():
    return SearchResult(
        content="Python is a programming language.",
        metadata=SearchMetadata(
            model="sonar",
            provider="perplexity",
            sources=(Source(title="Python", url="https://www.python.org"),),
            token_usage=TokenUsage(prompt_tokens=10, completion_tokens=20),
            timestamp="2024-01-01T00:00:00Z",
            query="what is python",
        ),
    )
