"""
Token bucket rate limiter used for every outbound provider call.

Refill is computed lazily on each access from the elapsed wall time; there is
no background timer. The bucket state is guarded by a ``threading.Lock`` that
is only held for refill/check/deduct, never across a sleep, so one waiting
caller cannot starve the others.
"""

import asyncio
import math
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from models.errors import ProviderRateLimitError, ProviderTimeoutError
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

MAX_SLEEP_PER_ITERATION_MS = 1000


def _now_ms() -> float:
    return time.monotonic() * 1000


@dataclass(frozen=True)
class RateLimiterOptions:
    max_tokens: float = 100
    refill_rate: float = 10  # tokens per second
    initial_tokens: float | None = None
    wait_for_tokens: bool = True
    max_wait_time: int = 30000  # ms


@dataclass(frozen=True)
class RateLimiterState:
    tokens: float
    max_tokens: float
    last_refill: float
    refill_rate: float


class RateLimiter:
    """
    Token bucket admission control for a single provider or resource.

    Args:
        name: Limiter name, used in logs and error messages
        options: Bucket configuration
        clock: Returns the current time in milliseconds
        sleep: Coroutine function taking seconds; defaults to asyncio.sleep
    """

    def __init__(
        self,
        name: str,
        options: RateLimiterOptions | None = None,
        *,
        clock: Callable[[], float] = _now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        options = options or RateLimiterOptions()
        if options.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if options.refill_rate <= 0:
            raise ValueError("refill_rate must be positive")

        self.name = name
        self.max_tokens = float(options.max_tokens)
        self.refill_rate = float(options.refill_rate)
        self.wait_for_tokens = options.wait_for_tokens
        self.max_wait_time = options.max_wait_time
        initial = options.initial_tokens if options.initial_tokens is not None else options.max_tokens
        self._tokens = min(self.max_tokens, max(0.0, float(initial)))
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._lock = threading.Lock()

        logger.debug(
            "Rate limiter created",
            extra=log_fields(
                name=name,
                max_tokens=self.max_tokens,
                refill_rate=self.refill_rate,
                initial_tokens=self._tokens,
            ),
        )

    def _refill(self) -> None:
        # Caller holds self._lock
        now = self._clock()
        elapsed = now - self._last_refill
        tokens_to_add = math.floor((elapsed / 1000) * self.refill_rate)

        # Sub-token progress is kept by leaving last_refill untouched
        if tokens_to_add > 0:
            self._tokens = min(self.max_tokens, self._tokens + tokens_to_add)
            self._last_refill = now

    def _try_consume(self, cost: float) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= cost:
                self._tokens -= cost
                return True
            return False

    def _wait_time_ms(self, cost: float) -> int:
        with self._lock:
            tokens_needed = cost - self._tokens
        wait_ms = math.ceil((tokens_needed / self.refill_rate) * 1000)
        return max(1, min(wait_ms, MAX_SLEEP_PER_ITERATION_MS))

    async def acquire_token(self, cost: float = 1) -> None:
        """
        Consume ``cost`` tokens, waiting for a refill when allowed.

        Raises:
            ValueError: cost is not positive
            ProviderRateLimitError: not enough tokens and waiting is disabled
            ProviderTimeoutError: waiting exceeded ``max_wait_time``
        """
        if cost <= 0:
            raise ValueError("cost must be positive")

        start = self._clock()

        if self._try_consume(cost):
            logger.debug(
                "Token acquired",
                extra=log_fields(name=self.name, cost=cost, remaining=self._tokens),
            )
            return

        if not self.wait_for_tokens:
            logger.warning(
                "Rate limit exceeded",
                extra=log_fields(name=self.name, available=self._tokens, requested=cost),
            )
            raise ProviderRateLimitError(
                self.name,
                reason=f"Rate limit exceeded for {self.name}",
                details={
                    "available": self._tokens,
                    "requested": cost,
                    "retry_after_ms": self._wait_time_ms(cost),
                },
            )

        while True:
            waited = self._clock() - start
            if waited > self.max_wait_time:
                logger.warning(
                    "Rate limit wait timeout",
                    extra=log_fields(name=self.name, waited_ms=waited, max_wait_time=self.max_wait_time),
                )
                raise ProviderTimeoutError(
                    self.name,
                    self.max_wait_time,
                    details={"waited_ms": int(waited), "source": "rate_limiter"},
                )

            wait_ms = self._wait_time_ms(cost)
            logger.debug(
                "Waiting for tokens",
                extra=log_fields(name=self.name, wait_ms=wait_ms, waited_so_far=waited),
            )
            await self._sleep(wait_ms / 1000)

            if self._try_consume(cost):
                logger.debug(
                    "Token acquired after waiting",
                    extra=log_fields(
                        name=self.name,
                        cost=cost,
                        remaining=self._tokens,
                        waited_ms=self._clock() - start,
                    ),
                )
                return

    def get_available_tokens(self) -> float:
        """Current token count after lazy refill. Does not consume."""
        with self._lock:
            self._refill()
            return self._tokens

    def get_state(self) -> RateLimiterState:
        with self._lock:
            self._refill()
            return RateLimiterState(
                tokens=self._tokens,
                max_tokens=self.max_tokens,
                last_refill=self._last_refill,
                refill_rate=self.refill_rate,
            )


def create_rate_limiter(name: str, **options) -> RateLimiter:
    """Build a RateLimiter from keyword options (max_tokens, refill_rate, ...)."""
    clock = options.pop("clock", _now_ms)
    sleep = options.pop("sleep", asyncio.sleep)
    return RateLimiter(name, RateLimiterOptions(**options), clock=clock, sleep=sleep)


def estimate_query_cost(query: str) -> int:
    """Token cost of a search by query length: 1 short, 2 medium, 3 long."""
    length = len(query)
    if length < 50:
        return 1
    if length < 200:
        return 2
    return 3
