"""Razorpay webhook route - public endpoint for gateway events.

Security rules:
- Validate X-Razorpay-Signature on every request; invalid -> 400, nothing written.
- Never log payload or signature header.
- Once the signature is valid, always answer 200 {"received": true}; handler
  failures are logged and recorded in webhook_logs, not surfaced.
"""

from __future__ import annotations

import os

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from neolease.domain.reconciliation import handle_webhook_event
from neolease.observability.correlation import get_correlation_id
from neolease.observability.logging import get_logger
from neolease.observability.redaction import id_prefix, safe_log_context
from neolease.razorpay.signatures import (
    InvalidPayloadError,
    InvalidSignatureError,
    verify_and_extract,
)

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)


def _get_webhook_secret() -> str:
    """Get Razorpay webhook secret from environment."""
    secret = os.environ.get("RAZORPAY_WEBHOOK_SECRET", "")
    if not secret:
        raise RuntimeError("RAZORPAY_WEBHOOK_SECRET not configured")
    return secret


@router.post("/webhooks/razorpay")
async def razorpay_webhook(
    request: Request,
    razorpay_signature: str = Header("", alias="X-Razorpay-Signature"),
    razorpay_event_id: str | None = Header(None, alias="X-Razorpay-Event-Id"),
) -> JSONResponse:
    """Receive Razorpay webhook events.

    Returns:
        200 {"received": true} once the signature is valid.
        400 if signature or payload is invalid.
        500 if the webhook secret is not configured.
    """
    correlation_id = get_correlation_id()

    try:
        payload_bytes = await request.body()
    except Exception:
        logger.warning(
            "failed to read request body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=400, content={"error": "invalid body"})

    try:
        webhook_secret = _get_webhook_secret()
    except RuntimeError:
        logger.error(
            "webhook secret not configured",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=500, content={"error": "server configuration error"})

    try:
        event = verify_and_extract(payload_bytes, razorpay_signature, webhook_secret)
    except InvalidSignatureError:
        logger.warning(
            "razorpay signature validation failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=400, content={"error": "invalid signature"})
    except InvalidPayloadError:
        logger.warning(
            "razorpay payload invalid",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=400, content={"error": "invalid payload"})

    logger.info(
        "razorpay webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                event_type=event.event_type,
                event_id_prefix=id_prefix(razorpay_event_id),
            )
        },
    )

    handle_webhook_event(event, event_id=razorpay_event_id, correlation_id=correlation_id)
    return JSONResponse(status_code=200, content={"received": True})
