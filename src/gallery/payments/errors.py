"""Error taxonomy for intent creation and webhook processing.

Each error carries the HTTP status it maps to; the HTTP layer turns any
PaymentError into a JSON ``{"error": message}`` response with that status.
"""


class PaymentError(Exception):
    """Base class for all payment-core errors."""

    status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(PaymentError):
    """Referenced content item does not exist."""


class PriceMismatch(PaymentError):
    """Client-supplied price diverges from the canonical price."""

    def __init__(self, requested: float, canonical: int):
        super().__init__(
            f"Price mismatch: requested {requested}, expected {canonical}"
        )
        self.requested = requested
        self.canonical = canonical


class InvalidInput(PaymentError):
    """Missing or malformed request fields or event metadata."""


class SignatureInvalid(PaymentError):
    """Webhook payload failed authenticity verification."""


class ProviderError(PaymentError):
    """Payment provider request failed or timed out."""

    status = 502


class PersistenceError(PaymentError):
    """Durable store read or write failed."""

    status = 500
