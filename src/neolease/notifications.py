"""Notification sink - fire-and-forget user notifications.

Called after the authoritative transaction commits. A failure here is logged
and never propagated, so a committed payment or refund is never reported as
failed because a notification could not be stored.
"""

from __future__ import annotations

from typing import Any

from neolease.infra.db import txn
from neolease.infra.repositories.notifications_repository import insert_notification
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

logger = get_logger(__name__)

PAYMENT_SUCCESS = "payment_success"
PAYMENT_FAILED = "payment_failed"
REFUND_INITIATED = "refund_initiated"
REFUND_PROCESSED = "refund_processed"


def send(
    user_id: str,
    *,
    title: str,
    message: str,
    kind: str,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Store a notification for a user.

    Returns:
        True if stored, False if it failed (already logged).
    """
    try:
        with txn() as cur:
            insert_notification(
                cur,
                user_id=user_id,
                kind=kind,
                title=title,
                message=message,
                data=metadata,
            )
    except Exception:
        logger.exception(
            "notification send failed",
            extra={"extra_fields": safe_log_context(user_id=user_id, kind=kind)},
        )
        return False
    return True
