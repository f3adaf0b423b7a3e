"""Thin wrapper around the Razorpay SDK.

Purpose:
- Encapsulate Razorpay API calls so domain code doesn't import razorpay.* directly.
- Send a deterministic receipt with every order so a retried create is
  recognisable on the gateway side.
- Never log full gateway payloads (only IDs + correlation metadata).
"""

from __future__ import annotations

import os
import time
from typing import Any, Callable

import razorpay
import razorpay.errors
import requests

from neolease.errors import GatewayError
from neolease.observability.logging import get_logger
from neolease.observability.redaction import id_prefix, safe_log_context

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# One retry on network errors and 5xx
MAX_RETRIES = 1
RETRY_DELAY = 0.2

_RETRYABLE = (requests.RequestException, razorpay.errors.ServerError)


class RazorpayClient:
    """Wrapper for Razorpay order and refund operations.

    Usage:
        client = RazorpayClient()  # reads RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET
        order = client.create_order(
            amount_cents=150000,
            currency="INR",
            receipt="rental:abc123",
        )
        print(order["id"])
    """

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        *,
        timeout: float | None = None,
    ) -> None:
        """Initialize the Razorpay client.

        Raises:
            RuntimeError: If credentials are not provided or found in environment.
        """
        self._key_id = key_id or os.environ.get("RAZORPAY_KEY_ID", "")
        key_secret = key_secret or os.environ.get("RAZORPAY_KEY_SECRET", "")
        if not self._key_id or not key_secret:
            raise RuntimeError(
                "Razorpay credentials not provided. "
                "Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        self._timeout = timeout or float(
            os.environ.get("RAZORPAY_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
        )
        self._client = razorpay.Client(auth=(self._key_id, key_secret))

    @property
    def key_id(self) -> str:
        return self._key_id

    def _call(self, fn: Callable[[], dict[str, Any]], *, log_ctx: dict[str, Any]) -> dict[str, Any]:
        for attempt in range(MAX_RETRIES + 1):
            try:
                return fn()
            except _RETRYABLE as e:
                if attempt < MAX_RETRIES:
                    logger.warning(
                        "razorpay request failed, retrying",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, attempt=attempt, error_type=type(e).__name__
                            )
                        },
                    )
                    time.sleep(RETRY_DELAY)
                    continue
                logger.error(
                    "razorpay request failed",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, error_type=type(e).__name__
                        )
                    },
                )
                raise GatewayError("Payment gateway unavailable") from e
            except (razorpay.errors.BadRequestError, razorpay.errors.GatewayError) as e:
                logger.error(
                    "razorpay request rejected",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, error_type=type(e).__name__
                        )
                    },
                )
                raise GatewayError("Payment gateway rejected request") from e

        # Loop always returns or raises
        raise GatewayError("Payment gateway unavailable")

    def create_order(
        self,
        *,
        amount_cents: int,
        currency: str,
        receipt: str,
        notes: dict[str, str] | None = None,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a gateway order.

        Args:
            amount_cents: Amount in the currency's minor unit.
            currency: ISO currency code (e.g. 'INR').
            receipt: Deterministic receipt, doubles as idempotency key.
            notes: Optional string key/values attached to the order.
            correlation_id: Optional correlation ID for logging.

        Returns:
            Dict with id, amount, currency, status.

        Raises:
            GatewayError: On network failure or a rejected request.
        """
        log_ctx = {"correlationId": correlation_id, "op": "create_order"}
        data: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.upper(),
            "receipt": receipt,
        }
        if notes:
            data["notes"] = notes

        order = self._call(
            lambda: self._client.order.create(data=data, timeout=self._timeout),
            log_ctx=log_ctx,
        )

        logger.info(
            "razorpay order created",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx, provider_order_prefix=id_prefix(order.get("id"))
                )
            },
        )
        return {
            "id": order["id"],
            "amount": order.get("amount", amount_cents),
            "currency": order.get("currency", currency.upper()),
            "status": order.get("status"),
        }

    def create_refund(
        self,
        *,
        provider_payment_id: str,
        amount_cents: int,
        notes: dict[str, str] | None = None,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Refund (part of) a captured payment.

        Returns:
            Dict with id, amount, status.

        Raises:
            GatewayError: On network failure or a rejected request.
        """
        log_ctx = {"correlationId": correlation_id, "op": "create_refund"}
        data: dict[str, Any] = {"amount": amount_cents}
        if notes:
            data["notes"] = notes

        refund = self._call(
            lambda: self._client.payment.refund(
                provider_payment_id, data, timeout=self._timeout
            ),
            log_ctx=log_ctx,
        )

        logger.info(
            "razorpay refund created",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx, provider_refund_prefix=id_prefix(refund.get("id"))
                )
            },
        )
        return {
            "id": refund.get("id"),
            "amount": refund.get("amount", amount_cents),
            "status": refund.get("status"),
        }
