"""Core infrastructure components."""
from .error_handlers import ErrorHandler, log_on_error, throw_on_error
from .exceptions import (
    CallTimeoutError,
    ConfigError,
    RemoteCallError,
    SdkException,
    ValidationError,
)
from .retry import retry
from .timeout import with_timeout

__all__ = [
    "CallTimeoutError",
    "ConfigError",
    "ErrorHandler",
    "RemoteCallError",
    "SdkException",
    "ValidationError",
    "log_on_error",
    "retry",
    "throw_on_error",
    "with_timeout",
]
