"""Async retry decorator with capped exponential backoff.

Whether a failure is worth retrying is decided either by exception type or
by a predicate, so callers can tell a transient network error apart from a
permanent one (e.g. HTTP 404 on a chunk URL) raised as the same type.
"""

import asyncio
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)

RetryPolicy = tuple[type[Exception], ...] | Callable[[Exception], bool] | None


def _should_retry(exc: Exception, retryable: RetryPolicy) -> bool:
    if retryable is None:
        return True
    if isinstance(retryable, tuple):
        return isinstance(exc, retryable)
    return retryable(exc)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retryable: RetryPolicy = None,
) -> Callable:
    """Decorator for retrying async functions with exponential backoff.

    Delay follows min(base_delay * 2^attempt, max_delay).

    Args:
        max_retries: Maximum number of retry attempts after the first call.
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound for any single delay.
        retryable: Exception types eligible for retry, or a predicate taking
            the exception. None retries everything.

    Returns:
        Decorator that wraps an async function with retry logic. The final
        exception carries the number of attempts made in `_retry_count`.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if attempt >= max_retries or not _should_retry(exc, retryable):
                        exc._retry_count = attempt  # type: ignore[attr-defined]
                        raise
                    delay = min(base_delay * (2**attempt), max_delay)
                    attempt += 1
                    logger.warning(
                        "Retry %d/%d for %s after %.1fs: %s",
                        attempt,
                        max_retries,
                        func.__name__,
                        delay,
                        exc,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
