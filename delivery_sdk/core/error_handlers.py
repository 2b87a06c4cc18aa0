"""
Error handler policies.

The orchestrator funnels every reported failure through one injected
handler, so the caller decides severity: raise in development, log and
keep serving in production.
"""
import logging
from typing import Callable

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[Exception], None]


def throw_on_error(error: Exception) -> None:
    """Re-raise the reported error."""
    raise error


def log_on_error(error: Exception) -> None:
    """Log the reported error and continue."""
    logger.error(f"Delivery SDK error: {error}", exc_info=error)
