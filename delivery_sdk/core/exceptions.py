"""
Custom exception hierarchy for centralized error handling.
Every failure the SDK reports through an ErrorHandler is one of these.
"""
from typing import Any, Dict, Optional


class SdkException(Exception):
    """Base exception for all SDK errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a loggable payload."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(SdkException):
    """Malformed request or insertions."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={"field": field} if field else None,
        )
        self.field = field


class ConfigError(SdkException):
    """Malformed client or experiment configuration. Always fatal."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(
            message=message,
            error_code="CONFIG_ERROR",
            details={"field": field},
        )
        self.field = field


class CallTimeoutError(SdkException, TimeoutError):
    """A remote call exceeded its time budget."""

    def __init__(self, timeout_millis: float, service: Optional[str] = None) -> None:
        target = service or "remote call"
        super().__init__(
            message=f"Timeout: {target} exceeded {timeout_millis}ms",
            error_code="TIMEOUT",
            details={"service": service, "timeout_millis": timeout_millis},
        )
        self.service = service
        self.timeout_millis = timeout_millis


class RemoteCallError(SdkException):
    """An injected remote callback failed."""

    def __init__(self, service: str, reason: str = "Unknown error") -> None:
        super().__init__(
            message=f"{service} call failed: {reason}",
            error_code="REMOTE_CALL_ERROR",
            details={"service": service, "reason": reason},
        )
        self.service = service
