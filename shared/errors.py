"""
Shared error handling for the event relay.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class RelayException(Exception):
    """Base exception for relay components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
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


class GatingError(RelayException):
    """Connection refused because enabled/credential/filter gating is not met."""

    def __init__(self, message: str = "Connection not permitted", details: Optional[Dict[str, Any]] = None):
        super().__init__("GATING_ERROR", message, details)


class TransportError(RelayException):
    """Upstream transport failures: connect errors, resets, unexpected close."""

    def __init__(self, message: str = "Upstream transport failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSPORT_ERROR", message, details)


class UpstreamAuthenticationError(TransportError):
    """The upstream rejected the credential."""

    def __init__(self, message: str = "Upstream rejected credential", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "UPSTREAM_AUTHENTICATION_ERROR"


class MalformedEventError(RelayException):
    """Inbound event payload could not be parsed."""

    def __init__(self, message: str = "Malformed event", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_EVENT", message, details)


class DeliveryError(RelayException):
    """Delivery to a single consumer endpoint failed."""

    def __init__(self, target_id: str, message: str = "Delivery failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("DELIVERY_ERROR", f"{target_id}: {message}", details)
        self.target_id = target_id


class ValidationError(RelayException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(RelayException):
    """Requested resource does not exist."""

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)
