"""Exponential-backoff retry for transient failures."""

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Pattern, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOptions:
    max_attempts: int = 3
    initial_delay: int = 1000  # ms
    max_delay: int = 10000  # ms
    backoff_factor: float = 2
    # Substrings or compiled patterns matched against str(error)
    retryable_errors: tuple[str | Pattern[str], ...] = (
        "ECONNRESET",
        "ETIMEDOUT",
        "ECONNREFUSED",
        "RATE_LIMIT",
        re.compile(r"^5\d{2}$"),
        "socket hang up",
    )
    # Exception types that are always retried regardless of message
    retryable_types: tuple[type[BaseException], ...] = field(default_factory=tuple)


DEFAULT_RETRY_OPTIONS = RetryOptions()


class RetryError(Exception):
    """Raised when the final attempt fails."""

    def __init__(self, message: str, attempts: int, last_error: BaseException):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def is_retryable(error: BaseException, options: RetryOptions = DEFAULT_RETRY_OPTIONS) -> bool:
    if options.retryable_types and isinstance(error, options.retryable_types):
        return True

    message = str(error)
    for pattern in options.retryable_errors:
        if isinstance(pattern, str):
            if pattern in message:
                return True
        elif pattern.search(message):
            return True
    return False


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **overrides,
) -> T:
    """
    Run ``operation`` until it succeeds, a non-retryable error occurs, or
    ``max_attempts`` is reached.

    Args:
        operation: Zero-argument coroutine function
        options: Retry configuration (defaults to DEFAULT_RETRY_OPTIONS)
        sleep: Coroutine used between attempts
        **overrides: Individual RetryOptions fields to override

    Returns:
        The operation's result

    Raises:
        RetryError: the last allowed attempt failed
        Exception: the first non-retryable error, unchanged
    """
    opts = replace(options or DEFAULT_RETRY_OPTIONS, **overrides)
    if opts.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempts = 0

    async def attempt() -> T:
        nonlocal attempts
        attempts += 1
        return await operation()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(opts.max_attempts),
        wait=wait_exponential(
            multiplier=opts.initial_delay / 1000,
            max=opts.max_delay / 1000,
            exp_base=opts.backoff_factor,
        ),
        retry=retry_if_exception(lambda e: is_retryable(e, opts)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )

    try:
        return await retrying(attempt)
    except Exception as e:
        if attempts >= opts.max_attempts:
            raise RetryError(f"Operation failed after {attempts} attempts", attempts, e) from e
        raise
