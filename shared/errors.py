"""
Shared error handling for the property invites access layer.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for access layer services."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Malformed input."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(AccessLayerException):
    """Missing or unverifiable caller credential."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "AUTHORIZATION_ERROR"):
        super().__init__(code, message, details)


class PermissionDenied(AuthorizationError):
    """The caller does not own the resource it is acting on."""

    def __init__(self, message: str = "Permission denied", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="PERMISSION_DENIED")


class OriginNotAllowed(AuthorizationError):
    """Inbound caller failed the origin/credential classification."""

    def __init__(self, message: str = "Origin not allowed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="ORIGIN_NOT_ALLOWED")


class RateLimitError(AccessLayerException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", retry_after_seconds: int = 1,
                 details: Optional[Dict[str, Any]] = None):
        self.retry_after_seconds = max(1, int(retry_after_seconds))
        merged = {"retry_after_seconds": self.retry_after_seconds}
        merged.update(details or {})
        super().__init__("RATE_LIMITED", message, merged)


class TransientStorageError(AccessLayerException):
    """Storage was unavailable or the operation timed out; safe to retry."""

    status_code = 503

    def __init__(self, message: str = "Storage temporarily unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSIENT_STORAGE_ERROR", message, details)


class ServiceError(AccessLayerException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)
