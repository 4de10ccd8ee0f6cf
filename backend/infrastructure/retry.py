"""
Rate-limit aware retry with exponential backoff

WHY: The subgraph gateway, Neynar and public RPCs all throttle bursts.
Every remote call site goes through this one policy instead of hand-rolled loops.

DESIGN:
- Only rate-limited errors are retried; everything else propagates on first failure
- delay = initial_delay * 2^attempt, attempts 0..max_retries inclusive
- On exhaustion the last error is re-raised unchanged so callers can still classify it
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

import httpx

from .errors import RateLimitError

logger = logging.getLogger("RetryPolicy")

T = TypeVar('T')

RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")
NESTED_RATE_LIMIT_MARKERS = ("rate limit", "too many requests")


def _status_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "upstream_status", None)
    if status is None:
        status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def _nested_errors(error: BaseException) -> Iterable[Any]:
    errors = getattr(error, "errors", None)
    if isinstance(errors, (list, tuple)):
        return errors
    return ()


def is_rate_limit_error(error: Optional[BaseException]) -> bool:
    """
    Classify an error as rate-limited.

    Checks HTTP status 429, textual markers in the message, and nested
    batch-API (GraphQL) error lists.
    """
    if error is None:
        return False

    if isinstance(error, RateLimitError) or _status_of(error) == 429:
        return True

    message = str(error).lower()
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return True

    for nested in _nested_errors(error):
        text = nested.get("message", "") if isinstance(nested, dict) else str(nested)
        text = str(text).lower()
        if any(marker in text for marker in NESTED_RATE_LIMIT_MARKERS):
            return True

    return False


@dataclass
class RetryPolicy:
    """
    Retry a coroutine factory while it keeps failing with rate-limit errors.

    Usage:
        policy = RetryPolicy(max_retries=3, initial_delay=1.0)
        data = await policy.run(lambda: client.get(url), label="neynar")
    """
    max_retries: int = 3
    initial_delay: float = 1.0
    sleep: Optional[Callable[[float], Awaitable[None]]] = None

    def delay_for(self, attempt: int) -> float:
        return self.initial_delay * (2 ** attempt)

    async def run(self, fn: Callable[[], Awaitable[T]], label: str = "remote call") -> T:
        sleep = self.sleep or asyncio.sleep

        for attempt in range(self.max_retries + 1):
            try:
                return await fn()
            except Exception as e:
                if not is_rate_limit_error(e):
                    raise
                if attempt >= self.max_retries:
                    logger.error(f"[Retry] {label}: rate limited, giving up after {attempt + 1} attempts")
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"[Retry] {label}: rate limited, retrying in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                await sleep(delay)

        # range() always yields at least once, the loop returns or raises
        raise RuntimeError("unreachable")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """Run fn under a one-off RetryPolicy"""
    return await RetryPolicy(max_retries, initial_delay, sleep).run(fn)


def retry_on_rate_limit(max_retries: int = 3, initial_delay: float = 1.0):
    """
    Decorator form of RetryPolicy.

    Usage:
        @retry_on_rate_limit(max_retries=3, initial_delay=1.0)
        async def fetch_user(address):
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            policy = RetryPolicy(max_retries, initial_delay)
            return await policy.run(lambda: func(*args, **kwargs), label=func.__name__)
        return wrapper
    return decorator
