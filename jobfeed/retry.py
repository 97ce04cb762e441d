"""Retry decorator with exponential backoff for the HTTP job fetchers.

Only transient failures are retried: connection problems, timeouts and
HTTP 429/5xx responses. A 4xx answer (bad key, unsubscribed plan) fails
on the first attempt since repeating it cannot succeed.
"""
from __future__ import annotations

import functools
import logging
import random
import time
from typing import Any, Callable

import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUS: frozenset[int] = frozenset({429, 500, 502, 503, 504})


def is_transient(exc: BaseException) -> bool:
    """True when *exc* is worth another attempt."""
    if isinstance(exc, requests.HTTPError):
        response = exc.response
        return response is not None and response.status_code in RETRYABLE_STATUS
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.RequestException):
        return False
    return isinstance(exc, OSError)


def _retry_after(exc: BaseException) -> float | None:
    if not isinstance(exc, requests.HTTPError) or exc.response is None:
        return None
    header = exc.response.headers.get("Retry-After", "")
    try:
        return float(header)
    except (TypeError, ValueError):
        return None


def retry(
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    should_retry: Callable[[BaseException], bool] = is_transient,
) -> Callable:
    """Decorator: retries the wrapped call while *should_retry* says so."""

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except Exception as exc:
                    if attempt == max_attempts or not should_retry(exc):
                        logger.error(
                            "%s gave up after %d attempt(s): %s",
                            fn.__qualname__,
                            attempt,
                            exc,
                        )
                        raise
                    delay = min(base_delay * (backoff_factor ** (attempt - 1)), max_delay)
                    if jitter:
                        delay *= 0.5 + random.random()
                    hinted = _retry_after(exc)
                    if hinted is not None:
                        delay = min(max(delay, hinted), max_delay)
                    logger.warning(
                        "%s attempt %d/%d failed (%s), retrying in %.1fs",
                        fn.__qualname__,
                        attempt,
                        max_attempts,
                        exc,
                        delay,
                    )
                    time.sleep(delay)
            raise AssertionError("unreachable")  # pragma: no cover

        return wrapper

    return decorator
