"""Domain error taxonomy.

Every error raised by the domain layer carries a stable machine-readable
``code`` and the HTTP status routes should answer with. Routes never invent
codes of their own; they translate these.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for errors surfaced to API clients."""

    code = "DOMAIN_ERROR"
    http_status = 400

    def to_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": str(self)}


# --- validation -------------------------------------------------------------


class ValidationFailedError(DomainError):
    """Input is well-formed JSON but semantically invalid."""

    code = "VALIDATION_ERROR"
    http_status = 400


class OrderNotFoundError(DomainError):
    code = "ORDER_NOT_FOUND"
    http_status = 404


class ProductNotFoundError(DomainError):
    code = "PRODUCT_NOT_FOUND"
    http_status = 404


class CourtNotFoundError(DomainError):
    code = "COURT_NOT_FOUND"
    http_status = 404


# --- state ------------------------------------------------------------------


class InvalidTransitionError(DomainError):
    """Requested status is not reachable from the current status."""

    code = "INVALID_STATUS_TRANSITION"
    http_status = 400

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot transition from {from_status} to {to_status}")


class InvalidStateError(DomainError):
    """Operation is illegal for the order's current lifecycle position."""

    code = "INVALID_ORDER_STATE"
    http_status = 400

    def __init__(self, current_status: str, operation: str) -> None:
        self.current_status = current_status
        self.operation = operation
        super().__init__(f"Cannot {operation} an order in status {current_status}")


# --- consistency ------------------------------------------------------------


class InsufficientStockError(DomainError):
    code = "INSUFFICIENT_QUANTITY"
    http_status = 400

    def __init__(self, product_id: str, requested: int, available: int | None) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        shown = "unknown" if available is None else str(available)
        super().__init__(
            f"Insufficient quantity for product {product_id}. "
            f"Available: {shown}, Requested: {requested}"
        )


class BookingConflictError(DomainError):
    code = "BOOKING_CONFLICT"
    http_status = 409


class PaymentNotFoundError(DomainError):
    code = "PAYMENT_NOT_FOUND"
    http_status = 404


class PaymentAlreadyVerifiedError(DomainError):
    """Payment was already completed; the caller's goal is already met."""

    code = "PAYMENT_ALREADY_VERIFIED"
    http_status = 400

    def __init__(self, payment_id: str) -> None:
        self.payment_id = payment_id
        super().__init__("Payment already verified")


class DuplicateCaptureError(DomainError):
    """A second capture arrived for an order that is already paid.

    The charge is held for manual refund under the given reconciliation issue.
    """

    code = "DUPLICATE_CAPTURE"
    http_status = 409

    def __init__(self, payment_id: str, issue_id: str) -> None:
        self.payment_id = payment_id
        self.issue_id = issue_id
        super().__init__("Order is already paid; this payment will be refunded")

    def to_detail(self) -> dict[str, str]:
        return {**super().to_detail(), "issue_id": self.issue_id}


# --- authentication / authorization -----------------------------------------


class PaymentVerificationFailedError(DomainError):
    """Signature mismatch. The message never says which part failed."""

    code = "PAYMENT_VERIFICATION_FAILED"
    http_status = 400

    def __init__(self) -> None:
        super().__init__("Invalid payment signature")


class PaymentAccessDeniedError(DomainError):
    code = "ACCESS_DENIED"
    http_status = 403


# --- refunds ----------------------------------------------------------------


class PaymentNotRefundableError(DomainError):
    code = "PAYMENT_NOT_REFUNDABLE"
    http_status = 400


class AlreadyRefundedError(DomainError):
    code = "ALREADY_REFUNDED"
    http_status = 400


class RefundAmountExceedsOriginalError(DomainError):
    code = "AMOUNT_EXCEEDS_ORIGINAL"
    http_status = 400


# --- external dependencies --------------------------------------------------


class GatewayError(DomainError):
    """Payment gateway unreachable or returned an error."""

    code = "GATEWAY_ERROR"
    http_status = 502
