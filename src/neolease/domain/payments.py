"""Payment domain logic.

Handles creating gateway orders for draft bookings and rentals.

The pending Payment Record is committed before the gateway call so the
receipt (derived from its id) is stable across the client's internal retry.
If the gateway call ultimately fails the record is deleted again, so no
pending payment is left without a gateway order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from neolease.domain.order_state import DRAFT, OrderRef
from neolease.errors import (
    GatewayError,
    InvalidStateError,
    OrderNotFoundError,
    ValidationFailedError,
)
from neolease.infra.db import read_with_retry, txn
from neolease.infra.repositories import orders_repository as orders_repo
from neolease.infra.repositories import payments_repository as payments_repo
from neolease.observability.logging import get_logger
from neolease.observability.redaction import id_prefix, safe_log_context

if TYPE_CHECKING:
    from neolease.razorpay.client import RazorpayClient

logger = get_logger(__name__)

DEFAULT_CURRENCY = "INR"


def receipt_for(payment_id: str) -> str:
    """Deterministic gateway receipt for a payment (max 40 chars)."""
    return f"rcpt_{payment_id.replace('-', '')}"


def create_payment_order(
    user_id: str,
    order_ref: OrderRef,
    *,
    gateway: RazorpayClient,
    currency: str = DEFAULT_CURRENCY,
    notes: dict[str, str] | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Create (or reuse) a gateway order funding a draft order.

    Args:
        user_id: Paying user; must own the order.
        order_ref: Which booking or rental is being paid for.
        gateway: Razorpay client.
        currency: ISO currency code.
        notes: Optional notes forwarded to the gateway.
        correlation_id: Optional correlation ID for tracing.

    Returns:
        Dict with payment_id, provider_order_id, amount_cents, currency, key_id
        and reused (True if an existing pending payment was returned).

    Raises:
        OrderNotFoundError: If the order does not exist or belongs to someone else.
        InvalidStateError: If the order is not in draft.
        ValidationFailedError: If the order total is not positive.
        GatewayError: If the gateway order could not be created.
    """
    kind = order_ref.kind
    order_id = order_ref.order_id

    with txn() as cur:
        # Serialises concurrent create calls for the same order
        locked = orders_repo.lock_order(cur, kind, order_id)
        if locked is None or locked["user_id"] != user_id:
            raise OrderNotFoundError(f"{kind.value.capitalize()} {order_id} not found")
        if locked["status"] != DRAFT:
            raise InvalidStateError(locked["status"], "pay for")

        summary = orders_repo.get_order_summary(cur, kind, order_id)
        amount_cents = summary["total_cents"]
        if amount_cents <= 0:
            raise ValidationFailedError("Order total must be positive")

        existing = payments_repo.get_pending_payment_for_order(
            cur, order_kind=kind.value, order_id=order_id
        )
        if existing is not None and existing["amount_cents"] == amount_cents:
            logger.info(
                "payment order reused",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        payment_id=existing["id"],
                        order_kind=kind.value,
                        order_id=order_id,
                    )
                },
            )
            return {
                "payment_id": existing["id"],
                "provider_order_id": existing["provider_order_id"],
                "amount_cents": existing["amount_cents"],
                "currency": existing["currency"],
                "key_id": gateway.key_id,
                "reused": True,
            }

        payment_id = payments_repo.insert_payment(
            cur,
            user_id=user_id,
            order_kind=kind.value,
            order_id=order_id,
            amount_cents=amount_cents,
            currency=currency,
        )

    gateway_notes = {
        "payment_id": payment_id,
        "order_kind": kind.value,
        "order_id": order_id,
        **(notes or {}),
    }
    try:
        gateway_order = gateway.create_order(
            amount_cents=amount_cents,
            currency=currency,
            receipt=receipt_for(payment_id),
            notes=gateway_notes,
            correlation_id=correlation_id,
        )
    except GatewayError:
        with txn() as cur:
            payments_repo.delete_payment(cur, payment_id)
        logger.warning(
            "gateway order failed; pending payment removed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    payment_id=payment_id,
                    order_kind=kind.value,
                    order_id=order_id,
                )
            },
        )
        raise

    provider_order_id = gateway_order["id"]
    with txn() as cur:
        payments_repo.set_provider_order_id(cur, payment_id, provider_order_id)

    logger.info(
        "payment order created",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                payment_id=payment_id,
                order_kind=kind.value,
                order_id=order_id,
                provider_order_prefix=id_prefix(provider_order_id),
                amount_cents=amount_cents,
            )
        },
    )

    return {
        "payment_id": payment_id,
        "provider_order_id": provider_order_id,
        "amount_cents": amount_cents,
        "currency": currency,
        "key_id": gateway.key_id,
        "reused": False,
    }


def get_payment(payment_id: str, *, viewer_id: str, viewer_role: str) -> dict[str, Any] | None:
    """Read a payment visible to the viewer (owner or admin)."""
    return read_with_retry(
        lambda cur: payments_repo.get_payment_for_viewer(
            cur, payment_id, viewer_id=viewer_id, viewer_role=viewer_role
        )
    )
