"""
Shared utility functions used throughout the editorial pipeline.

Provides:
    - utc_now(): Timezone-aware UTC datetime (for Supabase TIMESTAMPTZ columns)
    - generate_id(): UUID4 string generator (for database primary keys)
    - ensure_utc(dt): Convert any datetime to timezone-aware UTC
    - parse_timestamp(value) / to_iso(dt): Row <-> datetime conversion
    - @with_retry: Decorator with exponential backoff for transient failures
"""

from datetime import datetime, timezone
import uuid
import asyncio
import inspect
import logging
import time as time_module
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type, TypeVar, Union

from src.exceptions import RetryExhaustedError

T = TypeVar("T")

logger = logging.getLogger(__name__)


# ===========================================================================
# TIMEZONE UTILITIES
# All timestamps stored in Supabase must be timezone-aware (TIMESTAMPTZ)
# ===========================================================================


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    ALWAYS use this instead of ``datetime.now()`` or ``datetime.utcnow()``
    so that comparisons against stored ``scheduled_at`` values never mix
    naive and aware datetimes.

    Returns:
        Timezone-aware datetime in UTC.
    """
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """Generate a UUID4 string for drafts, revision jobs and articles."""
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: Datetime to convert (naive or aware).

    Returns:
        Timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        # Assume naive datetime is UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Convert a row value (ISO string, datetime or ``None``) to aware UTC.

    Supabase returns ``TIMESTAMPTZ`` columns as ISO-8601 strings, sometimes
    with a trailing ``Z`` that older ``fromisoformat`` versions reject.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialise a datetime for a ``TIMESTAMPTZ`` column (``None`` passes through)."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


# ===========================================================================
# RETRY DECORATOR WITH EXPONENTIAL BACKOFF
# Retries are for transient failures (rate limits, timeouts) only.
# Eventually raises if all attempts fail.
# ===========================================================================


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    operation_name: Optional[str] = None,
) -> Callable:
    """
    Decorator for retry logic with exponential backoff.

    Works with both synchronous and asynchronous functions; the wrapper
    is chosen by inspecting the decorated callable.

    Args:
        max_attempts: Maximum number of attempts (default ``3``).
        base_delay: Delay in seconds before the first retry.  Subsequent
            delays double: ``base_delay * (2 ** (attempt - 1))``.
        retryable_exceptions: Exception types that trigger a retry.  Any
            other exception propagates immediately.
        operation_name: Name used in log messages (defaults to the
            function's ``__name__``).

    Raises:
        RetryExhaustedError: When all attempts have failed.  The last
            exception is available as ``last_error``.

    Usage::

        @with_retry(max_attempts=3, retryable_exceptions=(httpx.HTTPError,))
        async def post(self, message: str, link: str) -> dict:
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        op_name = operation_name or func.__name__

        def _on_failure(attempt: int, error: Exception) -> Optional[float]:
            """Log the failed attempt and return the delay, or None when done."""
            if attempt >= max_attempts:
                logger.error(
                    "[RETRY EXHAUSTED] %s failed after %d attempts: %s",
                    op_name,
                    max_attempts,
                    error,
                )
                return None
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "[RETRY] %s attempt %d/%d failed: %s. Retrying in %.1fs...",
                op_name,
                attempt,
                max_attempts,
                error,
                delay,
            )
            return delay

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_error = e
                    delay = _on_failure(attempt, e)
                    if delay is not None:
                        await asyncio.sleep(delay)
            raise RetryExhaustedError(
                op_name, max_attempts, last_error  # type: ignore[arg-type]
            ) from last_error

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_error = e
                    delay = _on_failure(attempt, e)
                    if delay is not None:
                        time_module.sleep(delay)
            raise RetryExhaustedError(
                op_name, max_attempts, last_error  # type: ignore[arg-type]
            ) from last_error

        if inspect.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper  # type: ignore[return-value]

    return decorator
