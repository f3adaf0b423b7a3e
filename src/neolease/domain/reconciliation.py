"""Payment reconciliation - the single place a payment becomes completed.

Two entry points can claim the same payment is done:
- the client verification call (signature over "order_id|payment_id")
- the gateway webhook (signature over the raw body, checked by the route)

Both lock the Payment Record (FOR UPDATE) and complete it with a conditional
UPDATE, so whichever arrives first applies the order transition and the other
sees a completed payment and does nothing.

Completing a payment and confirming its order share one transaction. If the
order cannot follow (cancelled or deleted meanwhile), the payment still
completes (the money was taken) and a reconciliation issue is opened for the
sweep and for humans; the two never diverge silently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from psycopg2.errors import UniqueViolation

from neolease import notifications
from neolease.domain.order_state import CONFIRMED, OrderKind
from neolease.domain.orders import PAYMENT_ACTOR, SWEEP_ACTOR, apply_transition
from neolease.errors import (
    DomainError,
    DuplicateCaptureError,
    PaymentAlreadyVerifiedError,
    PaymentNotFoundError,
    PaymentVerificationFailedError,
)
from neolease.infra.db import savepoint, txn
from neolease.infra.repositories import issues_repository as issues_repo
from neolease.infra.repositories import payments_repository as payments_repo
from neolease.infra.repositories.webhook_repository import (
    insert_webhook_log,
    record_receipt,
)
from neolease.observability.logging import get_logger
from neolease.observability.redaction import id_prefix, safe_log_context
from neolease.razorpay.signatures import RazorpayWebhookEvent, verify_payment_signature

logger = get_logger(__name__)

WEBHOOK_SOURCE = "razorpay"

# Open issues are retried this many times before they are left for humans
MAX_ISSUE_ATTEMPTS = 10

# Webhook outcomes (stored in webhook_logs.outcome)
OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_UNKNOWN = "unknown_payment"
OUTCOME_IGNORED = "ignored"
OUTCOME_LOGGED = "logged"
OUTCOME_ERROR = "error"


@dataclass
class _Outcome:
    status: str
    notices: list[dict[str, Any]] = field(default_factory=list)


def _send_notices(notices: list[dict[str, Any]]) -> None:
    for notice in notices:
        notifications.send(**notice)


def _success_notice(payment: dict[str, Any]) -> dict[str, Any]:
    return {
        "user_id": payment["user_id"],
        "title": "Payment Successful",
        "message": f"Your payment for {payment['order_kind']} was successful.",
        "kind": notifications.PAYMENT_SUCCESS,
        "metadata": {
            "payment_id": payment["id"],
            "order_kind": payment["order_kind"],
            "order_id": payment["order_id"],
        },
    }


def complete_payment(
    cur,
    payment: dict[str, Any],
    *,
    provider_payment_id: str,
    provider_signature: str | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Complete a locked payment and confirm the order it funds.

    Args:
        cur: Database cursor (within transaction, payment row locked).
        payment: Payment dict as returned by the payments repository.
        provider_payment_id: Gateway payment id.
        provider_signature: Client signature, if this came from verification.
        correlation_id: Optional correlation ID for tracing.

    Returns:
        Dict with status:
        - {"status": "duplicate"} - payment was already completed or refunded
        - {"status": "completed", "order_transition": "transitioned"|"noop"|"failed", ...}
        - {"status": "duplicate_capture", "issue_id": str} - order already paid
    """
    try:
        with savepoint(cur, "complete_payment"):
            completed = payments_repo.mark_payment_completed(
                cur,
                payment["id"],
                provider_payment_id=provider_payment_id,
                provider_signature=provider_signature,
            )
    except UniqueViolation:
        issue_id = issues_repo.insert_issue(
            cur,
            payment_id=payment["id"],
            order_kind=payment["order_kind"],
            order_id=payment["order_id"],
            kind=issues_repo.KIND_DUPLICATE_CAPTURE,
            detail=f"provider payment {provider_payment_id} captured for an already paid order",
        )
        payments_repo.merge_metadata(
            cur, payment["id"], {"captured_payment_id": provider_payment_id}
        )
        logger.error(
            "payment captured for an already paid order",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    payment_id=payment["id"],
                    order_kind=payment["order_kind"],
                    order_id=payment["order_id"],
                    issue_id=issue_id,
                )
            },
        )
        return {"status": "duplicate_capture", "issue_id": issue_id}

    if not completed:
        return {"status": "duplicate"}

    kind = OrderKind(payment["order_kind"])
    order_id = payment["order_id"]
    try:
        with savepoint(cur, "order_transition"):
            transition = apply_transition(
                cur,
                kind,
                order_id,
                CONFIRMED,
                actor=PAYMENT_ACTOR,
                payment_id=payment["id"],
                correlation_id=correlation_id,
            )
    except DomainError as e:
        issue_id = issues_repo.insert_issue(
            cur,
            payment_id=payment["id"],
            order_kind=kind.value,
            order_id=order_id,
            kind=issues_repo.KIND_ORDER_TRANSITION_FAILED,
            detail=f"{e.code}: {e}",
        )
        logger.error(
            "payment completed but order could not be confirmed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    payment_id=payment["id"],
                    order_kind=kind.value,
                    order_id=order_id,
                    error_code=e.code,
                    issue_id=issue_id,
                )
            },
        )
        return {
            "status": "completed",
            "order_transition": "failed",
            "issue_id": issue_id,
        }

    logger.info(
        "payment completed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                payment_id=payment["id"],
                order_kind=kind.value,
                order_id=order_id,
                order_transition=transition["status"],
            )
        },
    )
    return {"status": "completed", "order_transition": transition["status"]}


def verify_client_payment(
    user_id: str,
    *,
    provider_order_id: str,
    provider_payment_id: str,
    provider_signature: str,
    key_secret: str,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Verify a checkout signature submitted by the paying user.

    Returns:
        Dict with verified, payment, order_type, booking_id|rental_order_id
        and order_transition.

    Raises:
        PaymentNotFoundError: No payment for this gateway order and user.
        PaymentAlreadyVerifiedError: The payment was already completed.
        DuplicateCaptureError: The order was already paid by another payment.
        PaymentVerificationFailedError: Signature mismatch (payment marked failed).
    """
    signature_ok = verify_payment_signature(
        provider_order_id, provider_payment_id, provider_signature, key_secret
    )

    with txn() as cur:
        payment = payments_repo.get_payment_by_provider_order(
            cur, provider_order_id, user_id=user_id, for_update=True
        )
        if payment is None or payment["status"] == "cancelled":
            raise PaymentNotFoundError("Payment not found")
        if payment["status"] in ("completed", "refunded"):
            raise PaymentAlreadyVerifiedError(payment["id"])

        if not signature_ok:
            # Recorded for audit; committed before the error is raised
            payments_repo.mark_payment_failed(
                cur,
                payment["id"],
                provider_payment_id=provider_payment_id,
                provider_signature=provider_signature,
                reason="signature_mismatch",
                from_statuses=("pending", "failed"),
            )
            result = None
        else:
            result = complete_payment(
                cur,
                payment,
                provider_payment_id=provider_payment_id,
                provider_signature=provider_signature,
                correlation_id=correlation_id,
            )

    if result is None:
        logger.warning(
            "client payment signature mismatch",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    payment_id=payment["id"],
                    provider_order_prefix=id_prefix(provider_order_id),
                )
            },
        )
        raise PaymentVerificationFailedError()

    if result["status"] == "duplicate":
        # Lost the race to a concurrent webhook between lock and update
        raise PaymentAlreadyVerifiedError(payment["id"])

    if result["status"] == "completed":
        _send_notices([_success_notice(payment)])

    if result["status"] == "duplicate_capture":
        # The issue row is already committed
        raise DuplicateCaptureError(payment["id"], result["issue_id"])

    payment_view = {**payment, "status": "completed", "provider_payment_id": provider_payment_id}

    response: dict[str, Any] = {
        "verified": True,
        "payment": payment_view,
        "order_type": payment["order_kind"],
        "order_transition": result.get("order_transition", "failed"),
    }
    id_key = "booking_id" if payment["order_kind"] == OrderKind.BOOKING.value else "rental_order_id"
    response[id_key] = payment["order_id"]
    return response


# --- webhook ----------------------------------------------------------------


def _on_payment_captured(cur, event: RazorpayWebhookEvent, correlation_id: str | None) -> _Outcome:
    if not event.provider_order_id or not event.provider_payment_id:
        return _Outcome(OUTCOME_IGNORED)
    payment = payments_repo.get_payment_by_provider_order(
        cur, event.provider_order_id, for_update=True
    )
    if payment is None:
        return _Outcome(OUTCOME_UNKNOWN)
    if payment["status"] == "cancelled":
        # Order was deleted; the capture needs a manual refund
        logger.warning(
            "capture for a cancelled payment",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    payment_id=payment["id"],
                    provider_payment_prefix=id_prefix(event.provider_payment_id),
                )
            },
        )
        return _Outcome(OUTCOME_UNKNOWN)
    if payment["status"] in ("completed", "refunded"):
        return _Outcome(OUTCOME_DUPLICATE)

    result = complete_payment(
        cur,
        payment,
        provider_payment_id=event.provider_payment_id,
        correlation_id=correlation_id,
    )
    if result["status"] == "duplicate":
        return _Outcome(OUTCOME_DUPLICATE)
    if result["status"] == "completed":
        return _Outcome(OUTCOME_PROCESSED, [_success_notice(payment)])
    return _Outcome(OUTCOME_PROCESSED)


def _on_payment_failed(cur, event: RazorpayWebhookEvent, correlation_id: str | None) -> _Outcome:
    if not event.provider_order_id:
        return _Outcome(OUTCOME_IGNORED)
    payment = payments_repo.get_payment_by_provider_order(
        cur, event.provider_order_id, for_update=True
    )
    if payment is None:
        return _Outcome(OUTCOME_UNKNOWN)

    marked = payments_repo.mark_payment_failed(
        cur,
        payment["id"],
        provider_payment_id=event.provider_payment_id,
        reason=event.error_description or "payment_failed",
    )
    if not marked:
        # Completed payments are never downgraded by a late failure event
        return _Outcome(OUTCOME_IGNORED)

    return _Outcome(
        OUTCOME_PROCESSED,
        [
            {
                "user_id": payment["user_id"],
                "title": "Payment Failed",
                "message": "Your payment could not be processed. Please try again.",
                "kind": notifications.PAYMENT_FAILED,
                "metadata": {"payment_id": payment["id"]},
            }
        ],
    )


def _on_refund_created(cur, event: RazorpayWebhookEvent, correlation_id: str | None) -> _Outcome:
    if not event.provider_payment_id or not event.provider_refund_id:
        return _Outcome(OUTCOME_IGNORED)
    original = payments_repo.get_payment_by_provider_payment_id(cur, event.provider_payment_id)
    if original is None:
        return _Outcome(OUTCOME_UNKNOWN)
    if not payments_repo.record_provider_refund(cur, original["id"], event.provider_refund_id):
        return _Outcome(OUTCOME_DUPLICATE)
    return _Outcome(OUTCOME_PROCESSED)


def _on_refund_processed(cur, event: RazorpayWebhookEvent, correlation_id: str | None) -> _Outcome:
    if not event.provider_refund_id:
        return _Outcome(OUTCOME_IGNORED)
    refund = payments_repo.mark_refund_processed(cur, event.provider_refund_id)
    if refund is None:
        if payments_repo.get_refund_by_provider_refund_id(cur, event.provider_refund_id):
            return _Outcome(OUTCOME_DUPLICATE)
        return _Outcome(OUTCOME_UNKNOWN)
    return _Outcome(
        OUTCOME_PROCESSED,
        [
            {
                "user_id": refund["user_id"],
                "title": "Refund Processed",
                "message": "Your refund has been processed.",
                "kind": notifications.REFUND_PROCESSED,
                "metadata": {
                    "refund_id": refund["id"],
                    "original_payment_id": refund["original_payment_id"],
                },
            }
        ],
    )


def _on_order_paid(cur, event: RazorpayWebhookEvent, correlation_id: str | None) -> _Outcome:
    # payment.captured drives state; this one is informational
    return _Outcome(OUTCOME_LOGGED)


_HANDLERS = {
    "payment.captured": _on_payment_captured,
    "payment.failed": _on_payment_failed,
    "order.paid": _on_order_paid,
    "refund.created": _on_refund_created,
    "refund.processed": _on_refund_processed,
}


def handle_webhook_event(
    event: RazorpayWebhookEvent,
    *,
    event_id: str | None = None,
    correlation_id: str | None = None,
) -> str:
    """Apply an authenticated webhook event.

    The delivery receipt and the handler's effects commit together, so a
    handler failure leaves no receipt behind. Handler failures are logged and
    reported as an outcome, never raised: the caller always acknowledges.

    Returns:
        The outcome recorded in the webhook log.
    """
    handler = _HANDLERS.get(event.event_type)
    notices: list[dict[str, Any]] = []

    try:
        with txn() as cur:
            if event_id and not record_receipt(cur, source=WEBHOOK_SOURCE, external_id=event_id):
                result = _Outcome(OUTCOME_DUPLICATE)
            elif handler is None:
                result = _Outcome(OUTCOME_IGNORED)
            else:
                result = handler(cur, event, correlation_id)
        # Only notify once the effects are committed
        outcome = result.status
        notices = result.notices
    except Exception:
        logger.exception(
            "razorpay webhook handler failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    event_type=event.event_type,
                    event_id_prefix=id_prefix(event_id),
                )
            },
        )
        outcome = OUTCOME_ERROR

    _send_notices(notices)
    _append_webhook_log(event, event_id=event_id, outcome=outcome, correlation_id=correlation_id)

    logger.info(
        "razorpay webhook handled",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                event_type=event.event_type,
                event_id_prefix=id_prefix(event_id),
                outcome=outcome,
            )
        },
    )
    return outcome


def _append_webhook_log(
    event: RazorpayWebhookEvent,
    *,
    event_id: str | None,
    outcome: str,
    correlation_id: str | None,
) -> None:
    try:
        with txn() as cur:
            insert_webhook_log(
                cur,
                provider=WEBHOOK_SOURCE,
                event=event.event_type,
                event_id=event_id,
                payload=event.raw,
                outcome=outcome,
            )
    except Exception:
        logger.exception(
            "webhook log write failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id, event_type=event.event_type
                )
            },
        )


# --- sweep ------------------------------------------------------------------


def retry_open_issues(*, correlation_id: str | None = None) -> dict[str, int]:
    """Re-attempt the order transition of every open reconciliation issue.

    Only order_transition_failed issues are retried; other kinds need a human.
    An issue resolves when the order reaches confirmed, or when its payment is
    no longer completed (refunded meanwhile). Otherwise attempts is bumped.

    Returns:
        Dict with counts: {"checked": int, "resolved": int, "failed": int, "skipped": int}
    """
    with txn() as cur:
        issues = issues_repo.list_open_issues(cur, max_attempts=MAX_ISSUE_ATTEMPTS)

    resolved = failed = skipped = 0
    for issue in issues:
        if issue["kind"] != issues_repo.KIND_ORDER_TRANSITION_FAILED:
            skipped += 1
            continue
        try:
            with txn() as cur:
                if not issues_repo.lock_open_issue(cur, issue["id"]):
                    skipped += 1
                    continue
                payment = payments_repo.get_payment(cur, issue["payment_id"], for_update=True)
                if payment is None or payment["status"] != "completed":
                    issues_repo.resolve_issue(
                        cur, issue["id"], resolution="payment no longer completed"
                    )
                else:
                    apply_transition(
                        cur,
                        OrderKind(issue["order_kind"]),
                        issue["order_id"],
                        CONFIRMED,
                        actor=SWEEP_ACTOR,
                        payment_id=payment["id"],
                        correlation_id=correlation_id,
                    )
                    issues_repo.resolve_issue(cur, issue["id"], resolution="order confirmed")
            resolved += 1
        except DomainError as e:
            with txn() as cur:
                issues_repo.bump_attempts(cur, issue["id"], last_error=f"{e.code}: {e}")
            failed += 1
        except Exception:
            logger.exception(
                "reconciliation sweep failed for issue",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id, issue_id=issue["id"]
                    )
                },
            )
            failed += 1

    if issues:
        logger.info(
            "reconciliation sweep finished",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    checked=len(issues),
                    resolved=resolved,
                    failed=failed,
                    skipped=skipped,
                )
            },
        )
    return {"checked": len(issues), "resolved": resolved, "failed": failed, "skipped": skipped}
