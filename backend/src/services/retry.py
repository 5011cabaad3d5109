"""Retry decorator for transient HTTP failures (timeouts, 429, 5xx)."""

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

import httpx

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_transient_error(exc: BaseException) -> bool:
    """Return True for network errors and retryable HTTP status codes."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


def with_retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], None] | None = None,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Retry the wrapped call on transient errors with exponential backoff.

    The delay doubles after each failed attempt (1s → 2s → 4s, capped at
    *max_delay*). Non-retryable errors, and the error from the final attempt,
    propagate unchanged.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            delay = initial_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as exc:
                    if attempt >= max_attempts or not is_retryable(exc):
                        raise
                    logger.warning(
                        "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                        func.__name__,
                        attempt,
                        max_attempts,
                        delay,
                        exc,
                    )
                    (sleep or time.sleep)(delay)
                    delay = min(delay * backoff_factor, max_delay)
            raise RuntimeError(f"{func.__name__}: retry loop exited unexpectedly")

        return wrapper

    return decorator
