"""Retry with pure exponential backoff for remote checkout calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.http import ServiceAuthError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Defaults match the storefront's behaviour
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 1000

# Errors that must surface immediately instead of being retried
NON_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (ServiceAuthError,)

RetryFn = Callable[[Callable[[], Awaitable[Any]]], Awaitable[Any]]


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Invoke an async operation, retrying failures with exponential backoff.

    The wait before retry ``n`` is ``base_delay_ms * 2 ** (n - 1)``, so the
    first retry waits ``base_delay_ms`` and the second twice that. There is
    no jitter and no cap. After ``max_attempts`` total invocations the last
    error is re-raised unchanged.

    Args:
        operation: Zero-argument coroutine factory to invoke.
        max_attempts: Total number of invocations, including the first.
        base_delay_ms: Base backoff delay in milliseconds.
        sleep: Awaitable sleep used between attempts (injectable for tests).

    Returns:
        The operation's result from the first successful attempt.

    Raises:
        Exception: The last error raised by the operation.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay_ms / 1000, exp_base=2, min=0),
        retry=retry_if_not_exception_type(NON_RETRYABLE_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            return await operation()

    # AsyncRetrying either returns from inside the loop or re-raises
    raise RuntimeError("retry loop exited without a result")


def make_retry(max_attempts: int, base_delay_ms: int) -> RetryFn:
    """Bind retry settings into a single-argument retry function.

    Args:
        max_attempts: Total number of invocations, including the first.
        base_delay_ms: Base backoff delay in milliseconds.

    Returns:
        A coroutine function taking only the operation.
    """

    async def _retry(operation: Callable[[], Awaitable[T]]) -> T:
        return await retry(operation, max_attempts=max_attempts, base_delay_ms=base_delay_ms)

    return _retry
