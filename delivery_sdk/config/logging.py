"""
Structured logging configuration.
Outputs SDK logs in JSON format for production observability.
"""
import json
import logging
import sys
from typing import Optional

SDK_LOGGER_NAME = "delivery_sdk"

# Request context passed through `extra=` by the orchestrator.
_CONTEXT_FIELDS = ("client_request_id", "cohort_id", "execution_server")


class JsonFormatter(logging.Formatter):
    """Format log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the record as JSON."""
        log_obj = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for field in _CONTEXT_FIELDS:
            if hasattr(record, field):
                log_obj[field] = getattr(record, field)

        return json.dumps(log_obj, default=str)


def configure_logging(debug: bool = False, stream: Optional[object] = None) -> logging.Logger:
    """
    Configure the SDK logger.

    Only the `delivery_sdk` logger is touched so the host application keeps
    control of the root logger.
    """
    handler = logging.StreamHandler(stream or sys.stdout)

    if debug:
        # Human-readable format for debugging
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )
    else:
        # JSON format for production
        formatter = JsonFormatter()

    handler.setFormatter(formatter)

    sdk_logger = logging.getLogger(SDK_LOGGER_NAME)
    sdk_logger.handlers = [handler]
    sdk_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    sdk_logger.propagate = False
    return sdk_logger
