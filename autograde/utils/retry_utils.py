"""
Retry utilities with exponential backoff and jitter.

Used for blob-storage and database fetches, which may experience
transient failures. Extraction and evaluation calls are never retried
here; their failures are isolated per batch by the callers.
"""

import functools
import random
import time
from typing import Callable, Tuple, Type

from autograde.utils.logger import get_logger

logger = get_logger(__name__)


def compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    jitter: float = 0.5,
) -> float:
    """
    Backoff delay for a zero-based *attempt*.

    The delay doubles each attempt, is capped at *max_delay*, and is then
    scaled by a random factor in ``[1 - jitter, 1 + jitter]``.
    """
    delay = min(base_delay * (2 ** attempt), max_delay)
    if jitter:
        delay *= random.uniform(1.0 - jitter, 1.0 + jitter)
    return max(delay, 0.0)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    jitter: float = 0.5,
) -> Callable:
    """
    Decorator that retries a function with exponential backoff.

    Args:
        max_retries: Maximum number of attempts in total.
        base_delay: Initial delay in seconds (doubles each retry).
        max_delay: Maximum delay cap in seconds.
        exceptions: Tuple of exception types to catch and retry on.
        jitter: Relative random spread applied to each delay.

    Returns:
        Decorated function with retry logic.

    Example::

        @retry_with_backoff(max_retries=3, exceptions=(requests.RequestException,))
        def fetch(url):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except exceptions as exc:
                    if attempt == max_retries - 1:
                        logger.error(
                            "Function %s failed after %d attempts: %s",
                            func.__name__,
                            max_retries,
                            str(exc),
                        )
                        raise
                    delay = compute_delay(attempt, base_delay, max_delay, jitter)
                    logger.warning(
                        "Attempt %d/%d for %s failed (%s). Retrying in %.1fs...",
                        attempt + 1,
                        max_retries,
                        func.__name__,
                        str(exc),
                        delay,
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
