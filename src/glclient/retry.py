"""Caller-side retry for scheduler calls.

Transient failures (SchedulerConnectionError, ServiceUnavailable) are
retried with linear backoff: 1x, 2x, 3x the base delay. AuthError and
every other exception are raised on the first occurrence.
"""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from glclient.config import get_settings
from glclient.errors import Cancelled, SchedulerConnectionError, ServiceUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE = (SchedulerConnectionError, ServiceUnavailable)


def call_with_retries(
    fn: Callable[[], T],
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> T:
    """Call fn until it succeeds, a fatal error occurs or attempts run out.

    Args:
        fn: Zero-argument callable, e.g. ``scheduler.schedule``
        attempts: Total attempts (defaults to GL_RETRY_ATTEMPTS)
        base_delay: Backoff unit in seconds (defaults to GL_RETRY_BASE_DELAY)
        cancel: Event that aborts the loop when set

    Returns:
        Whatever fn returns

    Raises:
        Cancelled: If cancel was set before or between attempts
        The last retryable error once attempts are exhausted
    """
    settings = get_settings()
    attempts = attempts if attempts is not None else settings.retry_attempts
    base_delay = base_delay if base_delay is not None else settings.retry_base_delay
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    last_error: Optional[Exception] = None
    for attempt in range(attempts):
        if last_error is not None:
            delay = base_delay * attempt
            if cancel is not None:
                if cancel.wait(delay):
                    raise Cancelled(f"Cancelled after attempt {attempt}") from last_error
            elif delay > 0:
                time.sleep(delay)

        if cancel is not None and cancel.is_set():
            raise Cancelled(f"Cancelled before attempt {attempt + 1}")

        try:
            return fn()
        except RETRYABLE as e:
            last_error = e
            logger.warning(f"Retryable scheduler error (attempt {attempt + 1}/{attempts}): {e}")

    logger.error(f"Giving up after {attempts} attempts: {last_error}")
    raise last_error
