"""Payments repository - persistence for payment and refund records.

Uses raw SQL with psycopg2 (no ORM).

Every status change is a conditional UPDATE whose WHERE clause names the
statuses it may move from, so concurrent verify/webhook/refund paths race
on the row instead of on a read-then-write.
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from neolease.infra.db import fetchone, for_update as select_for_update

PROVIDER_RAZORPAY = "razorpay"

VALID_STATUSES = {"pending", "completed", "failed", "refunded", "cancelled"}

_PAYMENT_COLUMNS = """
    id, user_id, amount_cents, currency, provider, provider_order_id,
    provider_payment_id, status, order_kind, order_id,
    original_payment_id, refund_type, provider_refund_id
"""


def _row_to_payment(row: tuple[Any, ...]) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "user_id": str(row[1]),
        "amount_cents": row[2],
        "currency": row[3],
        "provider": row[4],
        "provider_order_id": row[5],
        "provider_payment_id": row[6],
        "status": row[7],
        "order_kind": row[8],
        "order_id": str(row[9]) if row[9] else None,
        "original_payment_id": str(row[10]) if row[10] else None,
        "refund_type": row[11],
        "provider_refund_id": row[12],
    }


def insert_payment(
    cur: PgCursor,
    *,
    user_id: str,
    order_kind: str,
    order_id: str,
    amount_cents: int,
    currency: str,
) -> str:
    """Insert a pending payment for an order, before the gateway call.

    Returns:
        Payment UUID string.
    """
    cur.execute(
        """
        INSERT INTO payments (
            user_id, amount_cents, currency, provider, status,
            order_kind, order_id
        )
        VALUES (%s, %s, %s, %s, 'pending', %s, %s)
        RETURNING id
        """,
        (user_id, amount_cents, currency, PROVIDER_RAZORPAY, order_kind, order_id),
    )
    return str(cur.fetchone()[0])


def set_provider_order_id(cur: PgCursor, payment_id: str, provider_order_id: str) -> None:
    cur.execute(
        """
        UPDATE payments
        SET provider_order_id = %s, updated_at = now()
        WHERE id = %s
        """,
        (provider_order_id, payment_id),
    )


def delete_payment(cur: PgCursor, payment_id: str) -> None:
    """Remove a pending payment whose gateway order could not be created."""
    cur.execute(
        "DELETE FROM payments WHERE id = %s AND status = 'pending'",
        (payment_id,),
    )


def get_payment(cur: PgCursor, payment_id: str, *, for_update: bool = False) -> dict[str, Any] | None:
    """Get a payment by id, optionally locking the row."""
    query = f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE id = %s"
    if for_update:
        row = select_for_update(cur, query, (payment_id,))
    else:
        row = fetchone(cur, query, (payment_id,))
    return _row_to_payment(row) if row else None


def get_payment_by_provider_order(
    cur: PgCursor,
    provider_order_id: str,
    *,
    user_id: str | None = None,
    for_update: bool = False,
) -> dict[str, Any] | None:
    """Get the (non-refund) payment created for a gateway order.

    Args:
        cur: Database cursor.
        provider_order_id: Gateway order id.
        user_id: If set, only match a payment owned by this user.
        for_update: Lock the row.

    Returns:
        Payment dict or None if not found.
    """
    query = f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM payments
        WHERE provider = %s
          AND provider_order_id = %s
          AND original_payment_id IS NULL
    """
    params: list[Any] = [PROVIDER_RAZORPAY, provider_order_id]
    if user_id is not None:
        query += " AND user_id = %s"
        params.append(user_id)
    if for_update:
        row = select_for_update(cur, query, params)
    else:
        row = fetchone(cur, query, params)
    return _row_to_payment(row) if row else None


def get_payment_by_provider_payment_id(
    cur: PgCursor, provider_payment_id: str
) -> dict[str, Any] | None:
    """Get the (non-refund) payment a gateway payment id settled."""
    cur.execute(
        f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM payments
        WHERE provider = %s
          AND provider_payment_id = %s
          AND original_payment_id IS NULL
        """,
        (PROVIDER_RAZORPAY, provider_payment_id),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def get_pending_payment_for_order(
    cur: PgCursor, *, order_kind: str, order_id: str
) -> dict[str, Any] | None:
    """Most recent pending payment with a gateway order for this order."""
    cur.execute(
        f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM payments
        WHERE order_kind = %s
          AND order_id = %s
          AND status = 'pending'
          AND provider_order_id IS NOT NULL
          AND original_payment_id IS NULL
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (order_kind, order_id),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def mark_payment_completed(
    cur: PgCursor,
    payment_id: str,
    *,
    provider_payment_id: str,
    provider_signature: str | None = None,
) -> bool:
    """Move a payment to completed exactly once.

    Allowed from pending or failed (a late capture after a failed attempt).

    Returns:
        True if this call completed the payment, False if it already was
        completed or refunded (duplicate delivery).
    """
    cur.execute(
        """
        UPDATE payments
        SET status = 'completed',
            provider_payment_id = %s,
            provider_signature = COALESCE(%s, provider_signature),
            updated_at = now()
        WHERE id = %s AND status IN ('pending', 'failed')
        RETURNING id
        """,
        (provider_payment_id, provider_signature, payment_id),
    )
    return cur.fetchone() is not None


def mark_payment_failed(
    cur: PgCursor,
    payment_id: str,
    *,
    provider_payment_id: str | None = None,
    provider_signature: str | None = None,
    reason: str | None = None,
    from_statuses: tuple[str, ...] = ("pending",),
) -> bool:
    """Mark a payment failed, recording what the caller attempted.

    Only rows in from_statuses move; a completed or refunded payment is
    never overwritten. Pass ("pending", "failed") to record a repeated
    failed attempt on an already failed payment.

    Returns:
        True if the row was updated.
    """
    meta = {"failure_reason": reason} if reason else {}
    cur.execute(
        """
        UPDATE payments
        SET status = 'failed',
            provider_payment_id = COALESCE(%s, provider_payment_id),
            provider_signature = COALESCE(%s, provider_signature),
            metadata = COALESCE(metadata, '{}'::jsonb) || %s::jsonb,
            updated_at = now()
        WHERE id = %s AND status = ANY(%s)
        """,
        (
            provider_payment_id,
            provider_signature,
            json.dumps(meta),
            payment_id,
            list(from_statuses),
        ),
    )
    return cur.rowcount == 1


def mark_payment_refunded(cur: PgCursor, payment_id: str) -> bool:
    """Move a completed payment to refunded.

    Returns:
        True if the row was completed and is now refunded.
    """
    cur.execute(
        """
        UPDATE payments
        SET status = 'refunded', updated_at = now()
        WHERE id = %s AND status = 'completed'
        """,
        (payment_id,),
    )
    return cur.rowcount == 1


def cancel_open_payments_for_order(cur: PgCursor, order_kind: str, order_id: str) -> int:
    """Cancel pending or failed charges for an order that is being deleted.

    Returns:
        Number of payments cancelled.
    """
    cur.execute(
        """
        UPDATE payments
        SET status = 'cancelled', updated_at = now()
        WHERE order_kind = %s AND order_id = %s
          AND status IN ('pending', 'failed')
          AND original_payment_id IS NULL
        """,
        (order_kind, order_id),
    )
    return cur.rowcount


def find_refund_for_original(cur: PgCursor, original_payment_id: str) -> dict[str, Any] | None:
    cur.execute(
        f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM payments
        WHERE original_payment_id = %s
        LIMIT 1
        """,
        (original_payment_id,),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def insert_refund(
    cur: PgCursor,
    *,
    original: dict[str, Any],
    amount_cents: int,
    refund_type: str,
    provider_refund_id: str | None,
    reason: str | None = None,
) -> str:
    """Insert the refund record for an original payment.

    The refund carries a negative amount and status refunded. A partial
    unique index on original_payment_id allows one refund per original.

    Returns:
        Refund payment UUID string.
    """
    meta = {"reason": reason} if reason else {}
    cur.execute(
        """
        INSERT INTO payments (
            user_id, amount_cents, currency, provider, provider_order_id,
            provider_payment_id, provider_refund_id, status,
            order_kind, order_id, original_payment_id, refund_type, metadata
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, 'refunded', %s, %s, %s, %s, %s::jsonb)
        RETURNING id
        """,
        (
            original["user_id"],
            -abs(amount_cents),
            original["currency"],
            original["provider"],
            original["provider_order_id"],
            original["provider_payment_id"],
            provider_refund_id,
            original["order_kind"],
            original["order_id"],
            original["id"],
            refund_type,
            json.dumps(meta),
        ),
    )
    return str(cur.fetchone()[0])


def merge_metadata(cur: PgCursor, payment_id: str, meta: dict[str, Any]) -> None:
    cur.execute(
        """
        UPDATE payments
        SET metadata = COALESCE(metadata, '{}'::jsonb) || %s::jsonb,
            updated_at = now()
        WHERE id = %s
        """,
        (json.dumps(meta), payment_id),
    )


def get_payment_for_viewer(
    cur: PgCursor, payment_id: str, *, viewer_id: str, viewer_role: str
) -> dict[str, Any] | None:
    """Get a payment if the viewer owns it or is admin."""
    cur.execute(
        f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM payments
        WHERE id = %s AND (%s = 'admin' OR user_id = %s)
        """,
        (payment_id, viewer_role, viewer_id),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def record_provider_refund(cur: PgCursor, payment_id: str, provider_refund_id: str) -> bool:
    """Mark an original payment refunded by the gateway (refund.created).

    Returns:
        True if the payment moved from completed to refunded now.
    """
    cur.execute(
        """
        UPDATE payments
        SET status = 'refunded',
            provider_refund_id = COALESCE(provider_refund_id, %s),
            updated_at = now()
        WHERE id = %s AND status = 'completed'
        """,
        (provider_refund_id, payment_id),
    )
    return cur.rowcount == 1


def mark_refund_processed(cur: PgCursor, provider_refund_id: str) -> dict[str, Any] | None:
    """Stamp refund_processed_at on the refund record (refund.processed).

    Returns:
        The refund payment, or None if no local refund carries this id or
        it was already stamped.
    """
    cur.execute(
        f"""
        UPDATE payments
        SET refund_processed_at = now(),
            updated_at = now()
        WHERE provider_refund_id = %s
          AND original_payment_id IS NOT NULL
          AND refund_processed_at IS NULL
        RETURNING {_PAYMENT_COLUMNS}
        """,
        (provider_refund_id,),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def get_refund_by_provider_refund_id(cur: PgCursor, provider_refund_id: str) -> dict[str, Any] | None:
    row = fetchone(
        cur,
        f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM payments
        WHERE provider_refund_id = %s AND original_payment_id IS NOT NULL
        """,
        (provider_refund_id,),
    )
    return _row_to_payment(row) if row else None


def has_completed_payment(cur: PgCursor, order_kind: str, order_id: str) -> bool:
    """True if a captured, unrefunded charge still funds this order."""
    row = fetchone(
        cur,
        """
        SELECT 1 FROM payments
        WHERE order_kind = %s AND order_id = %s
          AND status = 'completed'
          AND original_payment_id IS NULL
        LIMIT 1
        """,
        (order_kind, order_id),
    )
    return row is not None
