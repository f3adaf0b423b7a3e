"""Webhook repository - delivery receipts and the webhook audit log.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def record_receipt(cur: PgCursor, *, source: str, external_id: str) -> bool:
    """Insert a delivery receipt with ON CONFLICT DO NOTHING.

    Returns:
        True if this is the first time the event was seen.
    """
    cur.execute(
        """
        INSERT INTO processed_events (source, external_id)
        VALUES (%s, %s)
        ON CONFLICT (source, external_id) DO NOTHING
        """,
        (source, external_id),
    )
    return cur.rowcount == 1


def insert_webhook_log(
    cur: PgCursor,
    *,
    provider: str,
    event: str,
    event_id: str | None,
    payload: dict[str, Any],
    outcome: str,
) -> None:
    """Append one delivery to the webhook audit log."""
    cur.execute(
        """
        INSERT INTO webhook_logs (provider, event, event_id, payload, outcome)
        VALUES (%s, %s, %s, %s::jsonb, %s)
        """,
        (provider, event, event_id, json.dumps(payload), outcome),
    )
