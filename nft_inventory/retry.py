"""
Retry with exponential backoff for rate-limited upstream calls.

Only errors classified as rate limits are retried. Attempt n (0-based)
that fails is followed by a sleep of base_delay * 2**n, so a call that
is rate limited K times before succeeding waits
base_delay * (2**0 + ... + 2**(K-1)) in total.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from nft_inventory.exceptions import FetchError, RateLimitError


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 4
DEFAULT_BASE_DELAY = 2.0

RATE_LIMIT_MARKERS = ("rate limit", "429", "too many requests")


def is_rate_limit_error(error: BaseException) -> bool:
    """Classify an error as a rate limit by type, status code or message."""
    if isinstance(error, RateLimitError):
        return True
    if isinstance(error, FetchError) and error.status_code == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def backoff_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay after failed attempt number `attempt` (0-based)."""
    return base_delay * (2 ** attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    is_retryable: Callable[[BaseException], bool] = is_rate_limit_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, float, BaseException], None]] = None,
    label: str = "operation",
) -> T:
    """
    Run `operation` up to max_retries + 1 times.

    Args:
        operation: Zero-argument coroutine factory
        max_retries: Retries after the first attempt
        base_delay: Seconds before the first retry; doubles each time
        is_retryable: Which errors deserve another attempt
        sleep: Awaitable sleep, injectable for tests
        on_retry: Called with (attempt, delay, error) before sleeping
        label: Name used in log messages

    Raises:
        The last error once retries are exhausted, or the first
        non-retryable error immediately.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt >= max_retries:
                logger.warning(
                    f"{label}: rate limited, giving up after {attempt + 1} attempts"
                )
                raise

            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"{label}: rate limited, retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{max_retries})"
            )
            if on_retry is not None:
                on_retry(attempt, delay, e)
            await sleep(delay)
            attempt += 1
