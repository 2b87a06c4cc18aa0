"""Retry helper for async operations."""
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry(max_attempts: int, operation: Callable[[], Awaitable[T]]) -> T:
    """
    Invoke `operation` up to `max_attempts` times, with no delay in between.

    Returns the first success. If every attempt fails, the last failure is
    raised.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    final_error: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            final_error = e
            logger.debug(f"Attempt {attempt}/{max_attempts} failed: {e!r}")

    raise final_error
