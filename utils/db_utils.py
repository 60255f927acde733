"""
Database utilities for connection management and retry logic
"""
import time
from functools import wraps
from typing import Callable, Any

import httpcore
import httpx

from utils.logging_config import get_logger

logger = get_logger(__name__, "pipeline")

# Transport-level failures worth a fresh connection and another attempt
RETRYABLE_EXCEPTIONS = (
    httpx.ReadError,
    httpx.RemoteProtocolError,
    httpx.ConnectError,
    httpx.TimeoutException,
    httpcore.ReadError,
    httpcore.RemoteProtocolError,
    ConnectionError,
    ConnectionResetError,
    BrokenPipeError,
)

RETRYABLE_MESSAGES = (
    "resource temporarily unavailable",
    "connection refused",
    "connection reset",
    "too many connections",
    "broken pipe",
    "non-blocking socket",
    "server disconnected",
)


def is_retryable_db_error(error: Exception) -> bool:
    """Check whether an error looks like a transient connection problem"""
    if isinstance(error, RETRYABLE_EXCEPTIONS):
        return True
    cause = error.__cause__
    if cause is not None and isinstance(cause, RETRYABLE_EXCEPTIONS):
        return True
    combined = f"{error} {cause or ''}".lower()
    if "connection" in combined and "timeout" in combined:
        return True
    return any(marker in combined for marker in RETRYABLE_MESSAGES)


def retry_on_db_error(max_retries: int = 3, delay: float = 0.5, backoff: float = 2.0,
                      on_retry: Callable[[], Any] | None = None):
    """
    Decorator to retry database operations on connection errors.

    Args:
        max_retries: Maximum number of retry attempts
        delay: Initial delay between retries in seconds
        backoff: Multiplier for delay on each retry
        on_retry: Called before every retry, e.g. to reinitialize the client

    Non-connection errors are raised immediately.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            current_delay = delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable_db_error(e) or attempt >= max_retries:
                        raise

                    logger.warning(
                        f"Database error in {func.__name__} (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                        f"Retrying in {current_delay}s..."
                    )
                    time.sleep(current_delay)
                    current_delay *= backoff

                    if on_retry:
                        try:
                            on_retry()
                        except Exception as reinit_error:
                            logger.warning(f"Failed to reinitialize database client: {reinit_error}")

        return wrapper
    return decorator
