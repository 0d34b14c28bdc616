"""
Shared error handling for 254Carbon Access Layer.

Every access layer exception carries the HTTP status it maps to, so the
service exception handler can translate it without a lookup table.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


def current_trace_id() -> Optional[str]:
    """Return the hex trace id of the active span, if one is recording."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            return f"{span_context.trace_id:032x}"
    return None


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            trace_id=current_trace_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication required", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ServiceError(AccessLayerException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
