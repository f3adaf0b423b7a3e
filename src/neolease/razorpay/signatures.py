"""Razorpay signature validation and webhook payload parsing.

Purpose:
- Verify client checkout signatures: HMAC-SHA256(key_secret, "order_id|payment_id").
- Verify webhook signatures: HMAC-SHA256(webhook_secret, raw body).
- Extract minimal data needed for routing (no full event).
- Never log payload or signature.

All comparisons are constant-time.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Any

from neolease.observability.logging import get_logger

logger = get_logger(__name__)


class InvalidSignatureError(Exception):
    """Webhook signature validation failed."""


class InvalidPayloadError(Exception):
    """Payload structure is invalid or missing required fields."""


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def compute_payment_signature(provider_order_id: str, provider_payment_id: str, key_secret: str) -> str:
    """Signature the gateway hands to the client after checkout."""
    return _hmac_hex(key_secret, f"{provider_order_id}|{provider_payment_id}".encode("utf-8"))


def verify_payment_signature(
    provider_order_id: str,
    provider_payment_id: str,
    signature: str,
    key_secret: str,
) -> bool:
    """Check a client-supplied checkout signature.

    Returns:
        True only if the signature matches. Empty inputs never match.
    """
    if not (provider_order_id and provider_payment_id and signature and key_secret):
        return False
    expected = compute_payment_signature(provider_order_id, provider_payment_id, key_secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def verify_webhook_signature(payload_bytes: bytes, signature: str, webhook_secret: str) -> bool:
    """Check the X-Razorpay-Signature header against the raw request body."""
    if not signature or not webhook_secret:
        return False
    expected = _hmac_hex(webhook_secret, payload_bytes)
    return hmac.compare_digest(expected, signature.strip().lower())


@dataclass
class RazorpayWebhookEvent:
    """Minimal extracted data from a Razorpay webhook event."""

    event_type: str
    provider_order_id: str | None = None
    provider_payment_id: str | None = None
    provider_refund_id: str | None = None
    amount: int | None = None
    error_description: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    wrapper = payload.get(name) or {}
    entity = wrapper.get("entity") if isinstance(wrapper, dict) else None
    return entity if isinstance(entity, dict) else {}


def parse_webhook_event(payload_bytes: bytes) -> RazorpayWebhookEvent:
    """Extract routing fields from a webhook body.

    Raises:
        InvalidPayloadError: If the body is not JSON or has no event name.
    """
    try:
        body = json.loads(payload_bytes)
    except ValueError as e:
        logger.warning("razorpay webhook payload parsing failed")
        raise InvalidPayloadError("Invalid payload") from e

    if not isinstance(body, dict) or not body.get("event"):
        raise InvalidPayloadError("Missing event")

    payload = body.get("payload") or {}
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Invalid payload section")

    payment = _entity(payload, "payment")
    order = _entity(payload, "order")
    refund = _entity(payload, "refund")

    return RazorpayWebhookEvent(
        event_type=body["event"],
        provider_order_id=payment.get("order_id") or order.get("id"),
        provider_payment_id=payment.get("id") or refund.get("payment_id"),
        provider_refund_id=refund.get("id"),
        amount=payment.get("amount") or refund.get("amount"),
        error_description=payment.get("error_description"),
        raw=body,
    )


def verify_and_extract(
    payload_bytes: bytes,
    signature_header: str,
    webhook_secret: str,
) -> RazorpayWebhookEvent:
    """Validate the webhook signature and extract minimal event data.

    Raises:
        InvalidSignatureError: If signature validation fails.
        InvalidPayloadError: If event structure is invalid.
    """
    if not verify_webhook_signature(payload_bytes, signature_header, webhook_secret):
        # Do NOT log signature or payload
        logger.warning("razorpay webhook signature verification failed")
        raise InvalidSignatureError("Invalid signature")
    return parse_webhook_event(payload_bytes)
