"""
Payment error taxonomy.
Every error carries the HTTP status it is rendered with.
"""

from typing import Optional


class PaymentError(Exception):
    """Base class for errors surfaced to API callers as {success: false, error}."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PaymentError):
    """Bad caller input. Never retried automatically."""

    status_code = 400
    default_message = "Invalid payment request"


class InvalidAmount(ValidationError):
    default_message = "Invalid payment amount"


class AuthError(PaymentError):
    """Missing or invalid bearer token or webhook signature."""

    status_code = 401
    default_message = "Unauthorized"


class GatewayError(PaymentError):
    """Upstream payment provider failure."""

    status_code = 500
    default_message = "Payment gateway error"


class GatewayTimeout(GatewayError):
    status_code = 504
    default_message = "Payment gateway timed out"


class PersistenceError(PaymentError):
    """Backing store write failure."""

    status_code = 500
    default_message = "Failed to store payment record"


class ConfigurationError(PaymentError):
    """A required secret or setting is missing."""

    status_code = 500
    default_message = "Server configuration incomplete"


class PayloadTooLarge(ValidationError):
    status_code = 413
    default_message = "Payload too large"


class NotFound(PaymentError):
    status_code = 404
    default_message = "Payment not found"
