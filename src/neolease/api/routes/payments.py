"""Payment endpoints: gateway order creation, client verification, refunds.

Amounts are never taken from the client for order payments; the order's
stored total is charged.
"""

from __future__ import annotations

import os
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from neolease.api.auth import CurrentUser, CurrentUserDep
from neolease.api.http_errors import to_http
from neolease.domain import payments, reconciliation, refunds
from neolease.domain.order_state import OrderRef
from neolease.errors import DomainError
from neolease.observability.correlation import get_correlation_id
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context
from neolease.razorpay.client import RazorpayClient

router = APIRouter(prefix="/payments", tags=["payments"])

logger = get_logger(__name__)


class CreatePaymentOrderRequest(BaseModel):
    """Request body for a new gateway order."""

    order_type: Literal["booking", "rental"]
    order_id: UUID
    currency: str = payments.DEFAULT_CURRENCY
    notes: dict[str, str] | None = None


class VerifyPaymentRequest(BaseModel):
    """Checkout result handed to the client by the gateway."""

    provider_order_id: str
    provider_payment_id: str
    provider_signature: str


class RefundRequest(BaseModel):
    payment_id: UUID
    amount_cents: int | None = None
    reason: str | None = None


def _get_gateway() -> RazorpayClient:
    """Build the gateway client (allows override in tests)."""
    return RazorpayClient()


def _gateway_or_500(correlation_id: str | None) -> RazorpayClient:
    try:
        return _get_gateway()
    except RuntimeError:
        logger.error(
            "razorpay credentials not configured",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=500, detail="payment gateway not configured")


def _get_key_secret() -> str:
    secret = os.environ.get("RAZORPAY_KEY_SECRET", "")
    if not secret:
        raise RuntimeError("RAZORPAY_KEY_SECRET not configured")
    return secret


@router.post("/orders", status_code=201)
def create_payment_order(
    body: CreatePaymentOrderRequest,
    user: CurrentUser = CurrentUserDep,
) -> dict:
    """Create (or reuse) a gateway order for a draft booking or rental."""
    correlation_id = get_correlation_id()
    gateway = _gateway_or_500(correlation_id)
    try:
        return payments.create_payment_order(
            user.id,
            OrderRef.of(body.order_type, str(body.order_id)),
            gateway=gateway,
            currency=body.currency,
            notes=body.notes,
            correlation_id=correlation_id,
        )
    except DomainError as exc:
        raise to_http(exc, correlation_id=correlation_id)


@router.post("/verify")
def verify_payment(body: VerifyPaymentRequest, user: CurrentUser = CurrentUserDep) -> dict:
    """Verify the checkout signature and complete the payment.

    Returns:
        {verified, payment, order_type, booking_id|rental_order_id, order_transition}
    """
    correlation_id = get_correlation_id()
    try:
        key_secret = _get_key_secret()
    except RuntimeError:
        logger.error(
            "razorpay key secret not configured",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=500, detail="server configuration error")

    try:
        return reconciliation.verify_client_payment(
            user.id,
            provider_order_id=body.provider_order_id,
            provider_payment_id=body.provider_payment_id,
            provider_signature=body.provider_signature,
            key_secret=key_secret,
            correlation_id=correlation_id,
        )
    except DomainError as exc:
        raise to_http(exc, correlation_id=correlation_id)


@router.post("/refunds", status_code=201)
def refund_payment(body: RefundRequest, user: CurrentUser = CurrentUserDep) -> dict:
    """Refund a completed payment (payer or admin only)."""
    correlation_id = get_correlation_id()
    gateway = _gateway_or_500(correlation_id)
    try:
        return refunds.refund_payment(
            str(body.payment_id),
            actor=user.actor,
            gateway=gateway,
            amount_cents=body.amount_cents,
            reason=body.reason,
            correlation_id=correlation_id,
        )
    except DomainError as exc:
        raise to_http(exc, correlation_id=correlation_id)


@router.get("/{payment_id}")
def get_payment(payment_id: UUID, user: CurrentUser = CurrentUserDep) -> dict:
    payment = payments.get_payment(str(payment_id), viewer_id=user.id, viewer_role=user.role)
    if payment is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "PAYMENT_NOT_FOUND", "message": "Payment not found"},
        )
    return payment
