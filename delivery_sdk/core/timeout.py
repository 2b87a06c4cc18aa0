"""
Timeout race for remote calls.
The caller's wait is bounded; the underlying call is left running.
"""
import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from delivery_sdk.core.exceptions import CallTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _drain_abandoned(task: "asyncio.Future") -> None:
    """Retrieve the outcome of a call nobody is waiting on anymore."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Abandoned call failed after timeout: {error!r}")


async def with_timeout(
    pending: Awaitable[T],
    timeout_millis: float,
    service: Optional[str] = None,
) -> T:
    """
    Race `pending` against a deadline.

    Args:
        pending: Coroutine or future for the remote call
        timeout_millis: Deadline in milliseconds
        service: Name used in the timeout error

    Returns:
        The result of `pending` if it finishes first

    Raises:
        CallTimeoutError: If the deadline passes first
    """
    task = asyncio.ensure_future(pending)
    try:
        # asyncio.wait drops its own timer as soon as the task completes.
        done, _ = await asyncio.wait({task}, timeout=timeout_millis / 1000.0)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    task.add_done_callback(_drain_abandoned)
    raise CallTimeoutError(timeout_millis, service=service)
