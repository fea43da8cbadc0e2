"""
Shared error handling for the storefront shipping service.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ShippingServiceError(Exception):
    """Base exception for shipping service errors."""

    http_status = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details,
        )


class ValidationError(ShippingServiceError):
    """Bad caller input; raised before any carrier call is made."""

    http_status = 400

    def __init__(self, message: str = "Validation failed", field: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if field is not None:
            details.setdefault("field", field)
        self.field = field
        super().__init__("VALIDATION_ERROR", message, details)


class AuthError(ShippingServiceError):
    """Carrier access token could not be obtained."""

    def __init__(self, message: str = "Carrier authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("CARRIER_AUTH_ERROR", message, details)


class CarrierApiError(ShippingServiceError):
    """A single upstream carrier call failed."""

    http_status = 502

    def __init__(self, message: str = "Carrier API error", status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        details = dict(details or {})
        details.setdefault("status_code", status_code)
        super().__init__("CARRIER_API_ERROR", message, details)


class AddressValidationError(ShippingServiceError):
    """The carrier rejected or could not standardize an address."""

    http_status = 422

    def __init__(self, message: str = "Address validation failed", status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        super().__init__("ADDRESS_VALIDATION_ERROR", message, details)


class RateUnavailableError(ShippingServiceError):
    """Every rate acquisition strategy failed."""

    def __init__(self, message: str = "Unable to calculate shipping rates", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_UNAVAILABLE", message, details)


class RateLimitExceeded(ShippingServiceError):
    """Request quota for a limiter scope is exhausted."""

    http_status = 429

    def __init__(self, retry_after: int, message: str = "Too many requests. Please try again later.",
                 details: Optional[Dict[str, Any]] = None):
        self.retry_after = retry_after
        details = dict(details or {})
        details.setdefault("retry_after", retry_after)
        super().__init__("RATE_LIMIT_EXCEEDED", message, details)
