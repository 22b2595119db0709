"""
Retry helper with exponential backoff and jitter for outbound provider calls
"""
import time
import uuid
import random
import logging
from typing import Callable, Optional, TypeVar

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = (408, 429)


def _status_code(exc: Exception) -> Optional[int]:
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable_error(exc: Exception) -> bool:
    """Network failures, 5xx, 408 and 429 are retryable; other 4xx are not"""
    if isinstance(exc, (requests.ConnectionError, requests.Timeout, ConnectionError, TimeoutError)):
        return True

    status = _status_code(exc)
    if status is not None:
        if status >= 500 or status in RETRYABLE_STATUS:
            return True
        if 400 <= status < 500:
            return False

    return True


def retry_with_backoff(
    fn: Callable[[], T],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying up to max_retries times.

    Delay before retry n is initial_delay * 2**n plus up to 30% jitter.
    Non-retryable errors are raised immediately; after the last attempt the
    final error is raised.
    """
    should_retry = should_retry or is_retryable_error
    correlation_id = uuid.uuid4().hex[:8]
    last_error = None

    for attempt in range(max_retries + 1):
        try:
            return fn()
        except Exception as e:
            last_error = e
            if attempt >= max_retries or not should_retry(e):
                logger.error(f"[{correlation_id}] giving up after {attempt + 1} attempt(s): {e}")
                raise

            base = initial_delay * (2 ** attempt)
            delay = base + random.uniform(0, base * 0.3)
            logger.warning(
                f"[{correlation_id}] attempt {attempt + 1}/{max_retries + 1} failed: {e}; "
                f"retrying in {delay:.2f}s"
            )
            sleep(delay)

    raise last_error
