"""Outbox repository - domain events written in the same transaction as state.

Uses raw SQL with psycopg2 (no ORM).
"""

import json

from psycopg2.extensions import cursor as PgCursor


def emit_event(
    cur: PgCursor,
    *,
    event_type: str,
    aggregate_type: str,
    aggregate_id: str,
    payload: dict | None = None,
    correlation_id: str | None = None,
) -> int:
    """Emit an event to the outbox.

    Args:
        cur: Database cursor (within transaction).
        event_type: Event type (e.g., ORDER_STATUS_CHANGED).
        aggregate_type: Aggregate type (e.g., rental, booking, payment).
        aggregate_id: Aggregate ID.
        payload: Optional JSON payload (no PII).
        correlation_id: Optional correlation ID for tracing.

    Returns:
        The generated event ID.
    """
    payload_json = json.dumps(payload) if payload else None

    cur.execute(
        """
        INSERT INTO outbox_events (
            event_type, aggregate_type, aggregate_id, payload, correlation_id
        )
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id
        """,
        (event_type, aggregate_type, aggregate_id, payload_json, correlation_id),
    )
    return cur.fetchone()[0]


def emit_order_status_changed(
    cur: PgCursor,
    *,
    order_kind: str,
    order_id: str,
    from_status: str,
    to_status: str,
    actor: str,
    correlation_id: str | None = None,
) -> int:
    """Emit ORDER_STATUS_CHANGED for an applied transition."""
    return emit_event(
        cur,
        event_type="ORDER_STATUS_CHANGED",
        aggregate_type=order_kind,
        aggregate_id=order_id,
        payload={"from": from_status, "to": to_status, "actor": actor},
        correlation_id=correlation_id,
    )
