"""
ProviderRegistry - one lazily built instance per provider name.

The registry is an explicit object so tests and embedding applications can
hold independent registries with their own factories.
"""

import threading
from typing import Callable

from models.errors import UnknownProviderError
from providers import PROVIDER_CLASSES, BaseSearchProvider
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

ProviderFactory = Callable[[], BaseSearchProvider]

DEFAULT_PREFERENCE_ORDER = ("perplexity", "gemini", "openai", "openrouter", "modelbox")
DEFAULT_PROVIDER = "perplexity"


class ProviderRegistry:
    """
    Maps provider names to factories and memoizes the instances they build.

    Args:
        factories: name -> zero-argument callable returning a provider
        default_provider: Used when a request names no provider or an unknown one
        preference_order: Fallback order; names without a factory are ignored and
            registered names missing from it are appended
    """

    def __init__(
        self,
        factories: dict[str, ProviderFactory] | None = None,
        default_provider: str = DEFAULT_PROVIDER,
        preference_order: list[str] | tuple[str, ...] | None = None,
    ):
        source = factories if factories is not None else PROVIDER_CLASSES
        self._factories: dict[str, ProviderFactory] = {
            _normalize(name): factory for name, factory in source.items()
        }

        self.default_provider = _normalize(default_provider)
        if self.default_provider not in self._factories:
            raise UnknownProviderError(default_provider)

        order = [_normalize(n) for n in (preference_order or DEFAULT_PREFERENCE_ORDER)]
        self.preference_order = [n for n in order if n in self._factories]
        self.preference_order += [n for n in self._factories if n not in self.preference_order]

        self._instances: dict[str, BaseSearchProvider] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "ProviderRegistry":
        """Build factories that apply configured default models and key variables."""

        def factory_for(name: str) -> ProviderFactory:
            provider_cls = PROVIDER_CLASSES[name]
            return lambda: provider_cls(
                default_model=config.default_model_for(name),
                api_key_env=config.providers.api_key_env_for(name),
            )

        factories = {name: factory_for(name) for name in config.provider_order if name in PROVIDER_CLASSES}
        return cls(
            factories=factories,
            default_provider=config.DEFAULT_SEARCH_PROVIDER,
            preference_order=config.provider_order,
        )

    @property
    def names(self) -> list[str]:
        return list(self.preference_order)

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Add or replace a provider factory. A replaced name is rebuilt on next use."""
        key = _normalize(name)
        with self._lock:
            self._factories[key] = factory
            self._instances.pop(key, None)
            if key not in self.preference_order:
                self.preference_order.append(key)

    def resolve_name(self, name: str | None) -> str:
        """Canonical provider name a request maps to; unknown names map to the default."""
        if name is None or not name.strip():
            return self.default_provider

        key = _normalize(name)
        if key in self._factories:
            return key

        logger.warning(
            f"Unknown provider: {name}, falling back to default",
            extra=log_fields(requested=name, default_provider=self.default_provider),
        )
        return self.default_provider

    def get(self, name: str | None = None) -> BaseSearchProvider:
        key = self.resolve_name(name)
        with self._lock:
            instance = self._instances.get(key)
            if instance is None:
                instance = self._factories[key]()
                self._instances[key] = instance
                logger.debug("Created provider instance", extra=log_fields(provider=key))
            return instance

    async def available_providers(self) -> list[BaseSearchProvider]:
        """Providers that report themselves available, in preference order."""
        return [provider for _name, provider in await self._available()]

    async def fallback_providers(self, exclude_name: str | None) -> list[BaseSearchProvider]:
        excluded = self.resolve_name(exclude_name)
        return [provider for name, provider in await self._available() if name != excluded]

    async def _available(self) -> list[tuple[str, BaseSearchProvider]]:
        available: list[tuple[str, BaseSearchProvider]] = []
        for name in self.preference_order:
            try:
                provider = self.get(name)
                if await provider.is_available():
                    available.append((name, provider))
            except Exception as e:
                logger.warning(
                    "Error checking provider availability",
                    extra=log_fields(provider=name, error=str(e), error_type=type(e).__name__),
                )
        return available


def _normalize(name: str) -> str:
    return name.strip().lower()
