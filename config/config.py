import os
from dotenv import load_dotenv
from pathlib import Path

from config.provider_settings import ProviderSettings, RateLimitSettings


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Configuration management for the search engine."""

    def __init__(self, settings_path: str | None = None):
        """Initialize configuration with environment variables."""
        # Load environment variables from .env file if it exists
        env_path = Path(__file__).parent.parent / '.env'
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)

        self.providers = ProviderSettings.from_yaml(settings_path)

        # Provider selection
        self.DEFAULT_SEARCH_PROVIDER = (
            os.getenv('DEFAULT_SEARCH_PROVIDER') or self.providers.default_provider
        ).lower()

        # Cache
        self.SEARCH_CACHE_DIR = os.getenv('SEARCH_CACHE_DIR', './cache/web-search')
        self.SEARCH_CACHE_MAX_AGE_MS = int(os.getenv('SEARCH_CACHE_MAX_AGE_MS', str(24 * 60 * 60 * 1000)))
        self.SEARCH_CACHE_MEMORY_ENABLED = _env_bool('SEARCH_CACHE_MEMORY_ENABLED', True)
        self.SEARCH_CACHE_FILE_ENABLED = _env_bool('SEARCH_CACHE_FILE_ENABLED', True)

        # Rate limiting
        self.SEARCH_RATE_LIMIT_MAX_WAIT_MS = int(os.getenv('SEARCH_RATE_LIMIT_MAX_WAIT_MS', '30000'))

    @property
    def provider_order(self) -> list[str]:
        return self.providers.provider_order

    def api_key_for(self, provider: str) -> str | None:
        return os.getenv(self.providers.api_key_env_for(provider))

    def rate_limit_for(self, provider: str) -> RateLimitSettings:
        return self.providers.rate_limit_for(provider)

    def default_model_for(self, provider: str) -> str | None:
        return self.providers.default_model_for(provider)

    def validate(self) -> bool:
        """
        Validate that the default provider is known and at least one provider has a key.

        Returns:
            bool: True if configuration is valid, False otherwise
        """
        if self.DEFAULT_SEARCH_PROVIDER not in self.provider_order:
            print(
                f"Error: Unknown DEFAULT_SEARCH_PROVIDER '{self.DEFAULT_SEARCH_PROVIDER}'. "
                f"Must be one of: {', '.join(self.provider_order)}"
            )
            return False

        if not any(self.api_key_for(name) for name in self.provider_order):
            keys = ', '.join(self.providers.api_key_env_for(name) for name in self.provider_order)
            print(f"Error: no search provider API key is set. Set one of {keys} in the .env file.")
            return False

        return True
