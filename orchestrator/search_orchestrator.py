"""
SearchOrchestrator - turns one SearchRequest into a cached, rate-limited,
fallback-protected provider call.

Provides both async and sync interfaces. Per request:
cache lookup -> provider selection -> rate limit -> search -> classify failure ->
ordered fallback -> cache store.
"""

import asyncio
import concurrent.futures
import threading
import time
from dataclasses import replace

from config.config import Config
from models.search_request import SearchOptions, SearchRequest
from models.search_result import SearchResult
from orchestrator.fallback_manager import FallbackManager
from orchestrator.provider_registry import ProviderRegistry
from orchestrator.routing_types import AttemptRecord, NextAction
from providers.base_provider import BaseSearchProvider
from storage.result_cache import ResultCache
from utils.logger import get_logger, log_fields
from utils.rate_limiter import RateLimiter, RateLimiterOptions, estimate_query_cost
from utils.token_tracker import TokenTracker

logger = get_logger(__name__)


class SearchOrchestrator:
    """
    Top-level entry point for search requests.

    Example usage:
        orchestrator = SearchOrchestrator.from_config()
        result = orchestrator.execute_sync(SearchRequest(query="What is Python?"))
        print(result.content)

    Args:
        registry: Provider registry (defaults to every built-in provider)
        cache: Result cache; None disables caching entirely
        fallback_manager: Failure classifier
        rate_limits: Per-provider limiter options; names not listed get ``default_rate_limit``
        default_rate_limit: Limiter options for unlisted providers
        weighted_costs: Charge longer queries more limiter tokens
        token_tracker: Usage accumulator for provider-served results
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        cache: ResultCache | None = None,
        *,
        fallback_manager: FallbackManager | None = None,
        rate_limits: dict[str, RateLimiterOptions] | None = None,
        default_rate_limit: RateLimiterOptions | None = None,
        weighted_costs: bool = False,
        token_tracker: TokenTracker | None = None,
    ):
        self.registry = registry or ProviderRegistry()
        self.cache = cache
        self.fallback_manager = fallback_manager or FallbackManager()
        self.rate_limits = dict(rate_limits or {})
        self.default_rate_limit = default_rate_limit or RateLimiterOptions()
        self.weighted_costs = weighted_costs
        self.token_tracker = token_tracker or TokenTracker()

        self._limiters: dict[str, RateLimiter] = {}
        self._limiter_lock = threading.Lock()

    @classmethod
    def from_config(cls, config=None, **kwargs) -> "SearchOrchestrator":
        """Build registry, cache and limiters from a Config (loaded from env when omitted)."""
        config = config or Config()

        cache = ResultCache(
            cache_dir=config.SEARCH_CACHE_DIR,
            max_age_ms=config.SEARCH_CACHE_MAX_AGE_MS,
            use_memory_cache=config.SEARCH_CACHE_MEMORY_ENABLED,
            use_file_cache=config.SEARCH_CACHE_FILE_ENABLED,
        )

        rate_limits = {}
        for name in config.provider_order:
            limits = config.rate_limit_for(name)
            rate_limits[name] = RateLimiterOptions(
                max_tokens=limits.max_tokens,
                refill_rate=limits.refill_rate,
                max_wait_time=config.SEARCH_RATE_LIMIT_MAX_WAIT_MS,
            )

        return cls(
            registry=ProviderRegistry.from_config(config),
            cache=cache,
            rate_limits=rate_limits,
            default_rate_limit=RateLimiterOptions(max_wait_time=config.SEARCH_RATE_LIMIT_MAX_WAIT_MS),
            **kwargs,
        )

    def get_rate_limiter(self, provider_name: str) -> RateLimiter:
        """The limiter owned by this orchestrator for ``provider_name``, created on first use."""
        with self._limiter_lock:
            limiter = self._limiters.get(provider_name)
            if limiter is None:
                options = self.rate_limits.get(provider_name, self.default_rate_limit)
                limiter = RateLimiter(provider_name, options)
                self._limiters[provider_name] = limiter
            return limiter

    async def execute(self, request: SearchRequest) -> SearchResult:
        """
        Execute one search request.

        Returns:
            The provider's result, or the cached one stamped ``cached=True``

        Raises:
            SearchProviderError: the requested provider failed and no fallback succeeded
                (the requested provider's error is raised), or the failure was not
                fallback-eligible
        """
        start_time = time.time()
        provider_name = self.registry.resolve_name(request.provider_name)

        cache_key = None
        if self.cache is not None and not request.no_cache:
            key_fields = {**request.cache_key_fields(), "provider": provider_name}
            cache_key = self.cache.generate_key(request.query, key_fields)
            cached = await asyncio.to_thread(self.cache.get, cache_key)
            if cached is not None:
                logger.info(
                    "Returning cached search result",
                    extra=log_fields(provider=provider_name, key=cache_key),
                )
                return cached

        provider = self.registry.get(provider_name)
        options = request.to_options()
        attempts: list[AttemptRecord] = []

        try:
            result = await self._attempt(provider, request.query, options, attempts)
        except Exception as primary_error:
            decision = self.fallback_manager.decide(error=primary_error)
            if decision.action is NextAction.PROPAGATE:
                logger.error(
                    "Search failed with non-fallback error",
                    extra=log_fields(
                        provider=provider_name,
                        reason=decision.reason,
                        error=str(primary_error),
                    ),
                )
                raise

            logger.warning(
                f"Primary provider {provider_name} failed, trying fallbacks",
                extra=log_fields(provider=provider_name, reason=decision.reason),
            )
            result = await self._run_fallbacks(provider_name, request.query, options, attempts)
            if result is None:
                logger.error(
                    "All fallback providers failed",
                    extra=log_fields(
                        provider=provider_name,
                        attempts=[a.provider for a in attempts],
                        error=str(primary_error),
                    ),
                )
                raise

        if cache_key is not None:
            await asyncio.to_thread(self.cache.set, cache_key, result)

        logger.info(
            "Search completed",
            extra=log_fields(
                provider=result.metadata.provider,
                requested_provider=provider_name,
                fallback=result.metadata.fallback_from is not None,
                attempts=len(attempts),
                latency_ms=int((time.time() - start_time) * 1000),
            ),
        )
        return result

    def execute_sync(self, request: SearchRequest) -> SearchResult:
        """
        Synchronous wrapper for execute.

        Handles the case where an event loop is already running by
        executing in a separate thread with its own loop.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No running loop - use asyncio.run directly
            return asyncio.run(self.execute(request))

        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(asyncio.run, self.execute(request))
            return future.result()

    async def _attempt(
        self,
        provider: BaseSearchProvider,
        query: str,
        options: SearchOptions,
        attempts: list[AttemptRecord],
    ) -> SearchResult:
        start_time = time.time()
        try:
            await provider.initialize()
            cost = estimate_query_cost(query) if self.weighted_costs else 1
            await self.get_rate_limiter(provider.name).acquire_token(cost)
            result = await provider.search(query, options)
        except Exception as e:
            attempts.append(
                AttemptRecord(
                    provider=provider.name,
                    ok=False,
                    elapsed_ms=int((time.time() - start_time) * 1000),
                    error_code=getattr(e, "code", type(e).__name__),
                )
            )
            raise

        attempts.append(
            AttemptRecord(provider=provider.name, ok=True, elapsed_ms=int((time.time() - start_time) * 1000))
        )
        self.token_tracker.update(result.metadata.token_usage, provider.name)
        return result

    async def _run_fallbacks(
        self,
        primary_name: str,
        query: str,
        options: SearchOptions,
        attempts: list[AttemptRecord],
    ) -> SearchResult | None:
        candidates = await self.registry.fallback_providers(primary_name)
        if not candidates:
            logger.warning("No fallback providers available", extra=log_fields(provider=primary_name))
            return None

        # Model names are provider specific
        fallback_options = replace(options, model=None)

        for index, candidate in enumerate(candidates):
            if not self.fallback_manager.may_attempt(fallback_index=index):
                logger.info(
                    "Fallback attempt limit reached",
                    extra=log_fields(provider=primary_name, tried=index),
                )
                break

            logger.info(
                f"Trying fallback provider: {candidate.name}",
                extra=log_fields(provider=candidate.name, primary=primary_name),
            )
            try:
                result = await self._attempt(candidate, query, fallback_options, attempts)
            except Exception as e:
                logger.warning(
                    f"Fallback provider {candidate.name} failed",
                    extra=log_fields(
                        provider=candidate.name,
                        error=str(e),
                        error_type=type(e).__name__,
                    ),
                )
                continue

            logger.info(
                f"Fallback provider {candidate.name} succeeded",
                extra=log_fields(provider=candidate.name, primary=primary_name),
            )
            return result.with_fallback_from(primary_name)

        return None

    def get_usage_summary(self) -> dict:
        return self.token_tracker.get_summary()
