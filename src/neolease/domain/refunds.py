"""Refund coordinator - reverses a completed payment.

All checks, the order cancellation and the refund record share one
transaction with the original payment row locked. The gateway refund is
requested last inside that transaction: if the order cannot be cancelled
nothing is sent to the gateway, and if the gateway refuses nothing local is
committed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from neolease import notifications
from neolease.domain.order_state import CANCELLED, OrderKind
from neolease.domain.orders import ActorContext, apply_transition
from neolease.errors import (
    AlreadyRefundedError,
    PaymentAccessDeniedError,
    PaymentNotFoundError,
    PaymentNotRefundableError,
    RefundAmountExceedsOriginalError,
    ValidationFailedError,
)
from neolease.infra.db import txn
from neolease.infra.repositories import payments_repository as payments_repo
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

if TYPE_CHECKING:
    from neolease.razorpay.client import RazorpayClient

logger = get_logger(__name__)

REFUND_FULL = "full"
REFUND_PARTIAL = "partial"


def refund_payment(
    payment_id: str,
    *,
    actor: ActorContext,
    gateway: RazorpayClient,
    amount_cents: int | None = None,
    reason: str | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Refund a completed payment, fully or partially.

    Args:
        payment_id: Original payment UUID.
        actor: Requesting user; must be the payer or an admin.
        gateway: Razorpay client.
        amount_cents: Refund amount; defaults to the full original amount.
        reason: Optional free-text reason stored on the refund record.
        correlation_id: Optional correlation ID for tracing.

    Returns:
        The new refund Payment Record (negative amount, status refunded).

    Raises:
        ValidationFailedError: If amount_cents is not positive.
        PaymentNotFoundError: If the payment does not exist.
        PaymentAccessDeniedError: If the actor is neither payer nor admin.
        AlreadyRefundedError: If the payment was already refunded.
        PaymentNotRefundableError: If the payment is not completed.
        RefundAmountExceedsOriginalError: If amount_cents > original amount.
        InvalidTransitionError: If the linked order cannot be cancelled.
        GatewayError: If the gateway refund failed.
    """
    if amount_cents is not None and amount_cents <= 0:
        raise ValidationFailedError("Refund amount must be positive")

    with txn() as cur:
        original = payments_repo.get_payment(cur, payment_id, for_update=True)
        if original is None or original["original_payment_id"] is not None:
            raise PaymentNotFoundError("Payment not found")
        if not actor.is_admin and original["user_id"] != actor.user_id:
            raise PaymentAccessDeniedError("Not allowed to refund this payment")

        if original["status"] == "refunded":
            raise AlreadyRefundedError("Payment already refunded")
        if original["status"] != "completed":
            raise PaymentNotRefundableError(
                f"Only completed payments can be refunded (status: {original['status']})"
            )
        if payments_repo.find_refund_for_original(cur, payment_id) is not None:
            raise AlreadyRefundedError("Payment already refunded")

        refund_amount = original["amount_cents"] if amount_cents is None else amount_cents
        if refund_amount > original["amount_cents"]:
            raise RefundAmountExceedsOriginalError(
                "Refund amount cannot exceed original payment amount"
            )
        refund_type = REFUND_FULL if refund_amount == original["amount_cents"] else REFUND_PARTIAL

        # Raises before the gateway call if the order cannot be cancelled
        transition = apply_transition(
            cur,
            OrderKind(original["order_kind"]),
            original["order_id"],
            CANCELLED,
            actor=ActorContext(source="refund", user_id=actor.user_id, role=actor.role),
            correlation_id=correlation_id,
        )

        gateway_refund = gateway.create_refund(
            provider_payment_id=original["provider_payment_id"],
            amount_cents=refund_amount,
            notes={"payment_id": payment_id, "refund_type": refund_type},
            correlation_id=correlation_id,
        )

        refund_id = payments_repo.insert_refund(
            cur,
            original=original,
            amount_cents=refund_amount,
            refund_type=refund_type,
            provider_refund_id=gateway_refund["id"],
            reason=reason,
        )
        payments_repo.mark_payment_refunded(cur, payment_id)
        refund = payments_repo.get_payment(cur, refund_id)

    logger.info(
        "payment refunded",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                payment_id=payment_id,
                refund_id=refund_id,
                refund_type=refund_type,
                amount_cents=refund_amount,
                order_transition=transition["status"],
            )
        },
    )

    notifications.send(
        original["user_id"],
        title="Refund Initiated",
        message="A refund has been initiated for your payment.",
        kind=notifications.REFUND_INITIATED,
        metadata={
            "payment_id": payment_id,
            "refund_id": refund_id,
            "refund_type": refund_type,
            "amount_cents": refund_amount,
        },
    )
    return refund
