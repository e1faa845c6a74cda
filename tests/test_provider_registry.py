import asyncio
import threading

import pytest

from models.errors import UnknownProviderError
from orchestrator.provider_registry import DEFAULT_PREFERENCE_ORDER, ProviderRegistry
from providers.base_provider import BaseSearchProvider


class StubProvider(BaseSearchProvider):
    def __init__(self, name, available=True):
        super().__init__(api_key="k" if available else None, api_key_env="STUB_PROVIDER_UNSET_KEY")
        self.name = name

    async def _search(self, query, options, model):
        raise NotImplementedError


class BrokenProvider(StubProvider):
    async def is_available(self):
        raise RuntimeError("availability check exploded")


class CountingFactory:
    def __init__(self, name, provider_cls=StubProvider, **kwargs):
        self.name = name
        self.provider_cls = provider_cls
        self.kwargs = kwargs
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.provider_cls(self.name, **self.kwargs)


def make_registry(*names, default=None, order=None, **factories):
    all_factories = {name: CountingFactory(name) for name in names}
    all_factories.update(factories)
    return ProviderRegistry(
        factories=all_factories,
        default_provider=default or next(iter(all_factories)),
        preference_order=order,
    )


@pytest.mark.unit
class TestResolution:
    def test_builtin_registry_uses_default_preference_order(self):
        registry = ProviderRegistry()

        assert registry.names == list(DEFAULT_PREFERENCE_ORDER)
        assert registry.default_provider == "perplexity"

    def test_unknown_default_is_rejected(self):
        with pytest.raises(UnknownProviderError):
            make_registry("alpha", default="omega")

    @pytest.mark.parametrize(
        "requested, resolved",
        [
            (None, "alpha"),
            ("", "alpha"),
            ("   ", "alpha"),
            ("BETA", "beta"),
            (" beta ", "beta"),
            ("unknown", "alpha"),
        ],
    )
    def test_resolve_name(self, requested, resolved):
        registry = make_registry("alpha", "beta")

        assert registry.resolve_name(requested) == resolved

    def test_unknown_name_logs_a_warning(self, caplog):
        registry = make_registry("alpha", "beta")

        with caplog.at_level("WARNING"):
            provider = registry.get("nonexistent")

        assert provider.name == "alpha"
        assert "Unknown provider: nonexistent" in caplog.text

    def test_preference_order_drops_unknown_and_appends_missing(self):
        registry = make_registry("alpha", "beta", "gamma", order=["gamma", "zeta", "alpha"])

        assert registry.names == ["gamma", "alpha", "beta"]


@pytest.mark.unit
class TestInstances:
    def test_instance_is_built_once(self):
        factory = CountingFactory("alpha")
        registry = make_registry(alpha=factory)

        assert registry.get("alpha") is registry.get("ALPHA")
        assert registry.get() is registry.get("alpha")
        assert factory.calls == 1

    def test_concurrent_first_use_builds_one_instance(self):
        factory = CountingFactory("alpha")
        registry = make_registry(alpha=factory)
        barrier = threading.Barrier(8)
        seen = []

        def worker():
            barrier.wait()
            seen.append(registry.get("alpha"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert factory.calls == 1
        assert all(p is seen[0] for p in seen)

    def test_register_replaces_factory_and_instance(self):
        registry = make_registry("alpha")
        original = registry.get("alpha")

        registry.register("alpha", CountingFactory("alpha"))
        registry.register("Delta", CountingFactory("delta"))

        assert registry.get("alpha") is not original
        assert registry.names == ["alpha", "delta"]
        assert registry.get("delta").name == "delta"


@pytest.mark.unit
class TestAvailability:
    def test_available_providers_in_preference_order(self, clean_env):
        registry = make_registry(
            "alpha",
            "gamma",
            order=["gamma", "beta", "alpha"],
            beta=CountingFactory("beta", available=False),
        )

        available = asyncio.run(registry.available_providers())

        assert [p.name for p in available] == ["gamma", "alpha"]

    def test_availability_errors_count_as_unavailable(self, caplog):
        registry = make_registry("alpha", broken=CountingFactory("broken", provider_cls=BrokenProvider))

        with caplog.at_level("WARNING"):
            available = asyncio.run(registry.available_providers())

        assert [p.name for p in available] == ["alpha"]
        assert "Error checking provider availability" in caplog.text

    def test_fallbacks_exclude_the_requested_provider(self):
        registry = make_registry("alpha", "beta", "gamma")

        fallbacks = asyncio.run(registry.fallback_providers("beta"))

        assert [p.name for p in fallbacks] == ["alpha", "gamma"]

    def test_unknown_requested_name_excludes_the_default(self):
        registry = make_registry("alpha", "beta")

        fallbacks = asyncio.run(registry.fallback_providers("nonexistent"))

        assert [p.name for p in fallbacks] == ["beta"]
