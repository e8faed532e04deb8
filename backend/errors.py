"""Checkout error taxonomy.

Every error carries the HTTP status it maps to and a stable ``code`` that API
clients can branch on. ``extra`` is merged into the JSON error body.
"""

from typing import Any, Dict, Optional


class CheckoutError(Exception):
    """Base exception for all checkout and reconciliation errors."""

    status_code = 400
    code = "checkout_error"

    def __init__(self, message: str, *, code: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"detail": self.message, "code": self.code}
        body.update(self.extra)
        return body


class ValidationFailure(CheckoutError):
    """Rejected before any network or storage call (empty cart, bad input)."""

    status_code = 400
    code = "validation_failed"


class Unauthenticated(ValidationFailure):
    status_code = 401
    code = "unauthenticated"


class NotFound(CheckoutError):
    status_code = 404
    code = "not_found"


class OrderCreationFailed(CheckoutError):
    """The provisional order could not be written."""

    status_code = 500
    code = "order_creation_failed"


class UpstreamUnavailable(CheckoutError):
    """The payment gateway could not be reached or answered with an error.

    When a provisional order was already written, ``pending_order_id`` is set
    and ``code`` is ``gateway_order_pending`` so the caller retries against the
    same provisional order instead of starting a new one.
    """

    status_code = 502
    code = "upstream_unavailable"


class VerificationFailure(CheckoutError):
    """Payment could not be verified; the order stays pending."""

    status_code = 402
    code = "verification_failed"


class PartialConfirmation(CheckoutError):
    """Storage failed inside the confirmation transaction (rolled back)."""

    status_code = 500
    code = "confirmation_failed"
