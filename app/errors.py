"""
Error taxonomy for the payment service.

Every error carries the HTTP status it maps to; the exception handlers
in app.main render them as ``{"success": false, "error": message}``.
Nothing here is retried: retries belong to the caller or, for
webhooks, to the gateway's redelivery.
"""
from typing import Any, Optional


class PaymentError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def public_message(self) -> str:
        """Message safe to show to the API caller."""
        return self.message


class ValidationError(PaymentError):
    """Bad input shape or range."""

    status_code = 400


class AuthError(PaymentError):
    """The gateway rejected our credentials."""

    status_code = 502

    @property
    def public_message(self) -> str:
        return "Payment gateway unavailable"


class GatewayError(PaymentError):
    """The aggregator returned a failure; its message is passed through."""

    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        body: Optional[Any] = None,
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.body = body


class ConflictError(PaymentError):
    status_code = 409


class InvalidTransitionError(PaymentError):
    """Attempt to move a transaction out of a terminal state."""

    status_code = 409


class NotFoundError(PaymentError):
    status_code = 404


class InternalError(PaymentError):
    status_code = 500

    @property
    def public_message(self) -> str:
        return "Internal server error"
