"""Reconciliation issues repository.

A row is written when a payment completed but the order it funds could not
follow (e.g. the order was cancelled first). The sweep retries open rows.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from neolease.infra.db import fetchall, for_update

KIND_ORDER_TRANSITION_FAILED = "order_transition_failed"
# A second payment was captured for an order that already has a completed one
KIND_DUPLICATE_CAPTURE = "duplicate_capture"


def insert_issue(
    cur: PgCursor,
    *,
    payment_id: str,
    order_kind: str,
    order_id: str,
    kind: str,
    detail: str,
) -> str:
    """Open an issue for a payment unless one is already open.

    Returns:
        Issue UUID string (existing open one if present).
    """
    cur.execute(
        """
        INSERT INTO reconciliation_issues (
            payment_id, order_kind, order_id, kind, detail, status
        )
        VALUES (%s, %s, %s, %s, %s, 'open')
        ON CONFLICT (payment_id, kind) WHERE status = 'open' DO NOTHING
        RETURNING id
        """,
        (payment_id, order_kind, order_id, kind, detail),
    )
    row = cur.fetchone()
    if row is not None:
        return str(row[0])
    cur.execute(
        """
        SELECT id FROM reconciliation_issues
        WHERE payment_id = %s AND kind = %s AND status = 'open'
        """,
        (payment_id, kind),
    )
    return str(cur.fetchone()[0])


def list_open_issues(cur: PgCursor, *, max_attempts: int, limit: int = 100) -> list[dict[str, Any]]:
    rows = fetchall(
        cur,
        """
        SELECT id, payment_id, order_kind, order_id, kind, attempts
        FROM reconciliation_issues
        WHERE status = 'open' AND attempts < %s
        ORDER BY created_at ASC
        LIMIT %s
        """,
        (max_attempts, limit),
    )
    return [
        {
            "id": str(row[0]),
            "payment_id": str(row[1]),
            "order_kind": row[2],
            "order_id": str(row[3]),
            "kind": row[4],
            "attempts": row[5],
        }
        for row in rows
    ]


def lock_open_issue(cur: PgCursor, issue_id: str) -> bool:
    """Lock an open issue row, skipping it if another sweep holds it."""
    row = for_update(
        cur,
        "SELECT id FROM reconciliation_issues WHERE id = %s AND status = 'open'",
        (issue_id,),
        skip_locked=True,
    )
    return row is not None


def resolve_issue(cur: PgCursor, issue_id: str, *, resolution: str) -> None:
    cur.execute(
        """
        UPDATE reconciliation_issues
        SET status = 'resolved', detail = detail || ' | ' || %s,
            resolved_at = now(), updated_at = now()
        WHERE id = %s AND status = 'open'
        """,
        (resolution, issue_id),
    )


def bump_attempts(cur: PgCursor, issue_id: str, *, last_error: str) -> None:
    cur.execute(
        """
        UPDATE reconciliation_issues
        SET attempts = attempts + 1, last_error = %s, updated_at = now()
        WHERE id = %s
        """,
        (last_error, issue_id),
    )
