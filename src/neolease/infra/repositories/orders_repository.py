"""Orders repository - persistence for bookings and rental orders.

Uses raw SQL with psycopg2 (no ORM). Both order kinds share the same status
column semantics, so most helpers are parameterised by OrderKind and pick the
table from a fixed mapping (never from caller input).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from neolease.domain.order_state import OrderKind
from neolease.infra.db import fetchall, for_update

_TABLES = {
    OrderKind.BOOKING: "bookings",
    OrderKind.RENTAL: "rental_orders",
}


def table_for(kind: OrderKind) -> str:
    return _TABLES[OrderKind(kind)]


def lock_order(cur: PgCursor, kind: OrderKind, order_id: str) -> dict[str, Any] | None:
    """Fetch an order's lifecycle fields with a row lock (FOR UPDATE).

    Returns:
        Dict with id, user_id, status, payment_id or None if not found.
    """
    row = for_update(
        cur,
        f"SELECT id, user_id, status, payment_id FROM {table_for(kind)} WHERE id = %s",
        (order_id,),
    )
    if row is None:
        return None
    return {
        "id": str(row[0]),
        "user_id": str(row[1]),
        "status": row[2],
        "payment_id": str(row[3]) if row[3] else None,
    }


def get_order_summary(cur: PgCursor, kind: OrderKind, order_id: str) -> dict[str, Any] | None:
    """Fetch fields needed to fund an order (no lock).

    Returns:
        Dict with id, user_id, status, total_cents or None if not found.
    """
    cur.execute(
        f"""
        SELECT id, user_id, status, total_cents
        FROM {table_for(kind)}
        WHERE id = %s
        """,
        (order_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "id": str(row[0]),
        "user_id": str(row[1]),
        "status": row[2],
        "total_cents": row[3],
    }


def get_rental_items(cur: PgCursor, rental_order_id: str) -> list[tuple[str, int]]:
    """Line items of a rental as (product_id, quantity), ordered by product."""
    rows = fetchall(
        cur,
        """
        SELECT product_id, quantity
        FROM rental_items
        WHERE rental_order_id = %s
        ORDER BY product_id
        """,
        (rental_order_id,),
    )
    return [(str(row[0]), row[1]) for row in rows]


def update_order_status(
    cur: PgCursor,
    kind: OrderKind,
    order_id: str,
    *,
    from_status: str,
    to_status: str,
) -> bool:
    """Compare-and-set the order status.

    Returns:
        True if the row was still in from_status and got updated.
    """
    cur.execute(
        f"""
        UPDATE {table_for(kind)}
        SET status = %s, updated_at = now()
        WHERE id = %s AND status = %s
        """,
        (to_status, order_id, from_status),
    )
    return cur.rowcount == 1


def link_payment(cur: PgCursor, kind: OrderKind, order_id: str, payment_id: str) -> bool:
    """Set the order's payment_id exactly once.

    Returns:
        True if linked now, False if a payment was already linked.
    """
    cur.execute(
        f"""
        UPDATE {table_for(kind)}
        SET payment_id = %s, updated_at = now()
        WHERE id = %s AND payment_id IS NULL
        """,
        (payment_id, order_id),
    )
    return cur.rowcount == 1


def delete_order(cur: PgCursor, kind: OrderKind, order_id: str) -> None:
    """Hard-delete an order (rental items cascade)."""
    cur.execute(f"DELETE FROM {table_for(kind)} WHERE id = %s", (order_id,))


def insert_rental_order(
    cur: PgCursor,
    *,
    user_id: str,
    start_date: date,
    end_date: date,
    total_cents: int,
    deposit_cents: int,
    notes: str | None,
    items: list[dict[str, Any]],
) -> str:
    """Insert a draft rental order and its items.

    Args:
        items: Dicts with product_id, quantity, unit_price_cents, total_price_cents.

    Returns:
        Rental order UUID string.
    """
    cur.execute(
        """
        INSERT INTO rental_orders (
            user_id, start_date, end_date, status,
            total_cents, deposit_cents, notes
        )
        VALUES (%s, %s, %s, 'draft', %s, %s, %s)
        RETURNING id
        """,
        (user_id, start_date, end_date, total_cents, deposit_cents, notes),
    )
    rental_order_id = str(cur.fetchone()[0])

    for item in items:
        cur.execute(
            """
            INSERT INTO rental_items (
                rental_order_id, product_id, quantity,
                unit_price_cents, total_price_cents
            )
            VALUES (%s, %s, %s, %s, %s)
            """,
            (
                rental_order_id,
                item["product_id"],
                item["quantity"],
                item["unit_price_cents"],
                item["total_price_cents"],
            ),
        )

    return rental_order_id


def insert_booking(
    cur: PgCursor,
    *,
    user_id: str,
    court_id: str,
    start_at: datetime,
    end_at: datetime,
    total_cents: int,
    notes: str | None,
) -> str:
    """Insert a draft booking. Returns booking UUID string."""
    cur.execute(
        """
        INSERT INTO bookings (
            user_id, court_id, start_at, end_at, status, total_cents, notes
        )
        VALUES (%s, %s, %s, %s, 'draft', %s, %s)
        RETURNING id
        """,
        (user_id, court_id, start_at, end_at, total_cents, notes),
    )
    return str(cur.fetchone()[0])


def lock_court(cur: PgCursor, court_id: str) -> dict[str, Any] | None:
    """Lock an active court row so overlapping booking inserts serialize."""
    cur.execute(
        """
        SELECT c.id, c.price_per_hour_cents
        FROM courts c
        JOIN facilities f ON f.id = c.facility_id
        WHERE c.id = %s AND c.is_active AND f.is_active
        FOR UPDATE OF c
        """,
        (court_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {"id": str(row[0]), "price_per_hour_cents": row[1]}


def has_overlapping_booking(
    cur: PgCursor,
    *,
    court_id: str,
    start_at: datetime,
    end_at: datetime,
) -> bool:
    """True if another live booking on the court intersects [start_at, end_at)."""
    cur.execute(
        """
        SELECT 1
        FROM bookings
        WHERE court_id = %s
          AND status IN ('draft', 'confirmed', 'active')
          AND start_at < %s
          AND end_at > %s
        LIMIT 1
        """,
        (court_id, end_at, start_at),
    )
    return cur.fetchone() is not None


def get_products_for_rental(cur: PgCursor, product_ids: list[str]) -> dict[str, dict[str, Any]]:
    """Fetch pricing data of active products whose facility is active."""
    cur.execute(
        """
        SELECT p.id, p.name, p.pricing, p.deposit_cents, p.available_quantity
        FROM products p
        JOIN facilities f ON f.id = p.facility_id
        WHERE p.id = ANY(%s::uuid[]) AND p.is_active AND f.is_active
        """,
        (product_ids,),
    )
    return {
        str(row[0]): {
            "id": str(row[0]),
            "name": row[1],
            "pricing": row[2] or {},
            "deposit_cents": row[3],
            "available_quantity": row[4],
        }
        for row in cur.fetchall()
    }


def list_overdue_rental_ids(cur: PgCursor, today: date, limit: int = 200) -> list[str]:
    """Active rentals whose end_date is before today."""
    rows = fetchall(
        cur,
        """
        SELECT id
        FROM rental_orders
        WHERE status = 'active' AND end_date < %s
        ORDER BY end_date ASC
        LIMIT %s
        """,
        (today, limit),
    )
    return [str(row[0]) for row in rows]


def get_visible_order(
    cur: PgCursor,
    kind: OrderKind,
    order_id: str,
    *,
    viewer_id: str,
    viewer_role: str,
) -> dict[str, Any] | None:
    """Fetch an order only if the viewer may see it.

    Visibility: viewer owns the order, OR viewer owns the facility of any
    item in it, OR viewer is admin. Evaluated in a single query.
    """
    if OrderKind(kind) is OrderKind.RENTAL:
        cur.execute(
            """
            SELECT o.id, o.user_id, o.status, o.start_date, o.end_date,
                   o.total_cents, o.deposit_cents, o.payment_id, o.notes,
                   COALESCE(
                       (SELECT json_agg(json_build_object(
                                'product_id', ri.product_id,
                                'quantity', ri.quantity,
                                'unit_price_cents', ri.unit_price_cents,
                                'total_price_cents', ri.total_price_cents)
                                ORDER BY ri.product_id)
                        FROM rental_items ri
                        WHERE ri.rental_order_id = o.id),
                       '[]'::json
                   ) AS items
            FROM rental_orders o
            WHERE o.id = %s
              AND (
                  %s = 'admin'
                  OR o.user_id = %s
                  OR EXISTS (
                      SELECT 1
                      FROM rental_items ri
                      JOIN products p ON p.id = ri.product_id
                      JOIN facilities f ON f.id = p.facility_id
                      WHERE ri.rental_order_id = o.id AND f.owner_id = %s
                  )
              )
            """,
            (order_id, viewer_role, viewer_id, viewer_id),
        )
        row = cur.fetchone()
        if row is None:
            return None
        return {
            "id": str(row[0]),
            "kind": OrderKind.RENTAL.value,
            "user_id": str(row[1]),
            "status": row[2],
            "start_date": row[3].isoformat(),
            "end_date": row[4].isoformat(),
            "total_cents": row[5],
            "deposit_cents": row[6],
            "payment_id": str(row[7]) if row[7] else None,
            "notes": row[8],
            "items": row[9],
        }

    cur.execute(
        """
        SELECT b.id, b.user_id, b.status, b.start_at, b.end_at,
               b.total_cents, b.payment_id, b.notes, b.court_id
        FROM bookings b
        JOIN courts c ON c.id = b.court_id
        JOIN facilities f ON f.id = c.facility_id
        WHERE b.id = %s
          AND (%s = 'admin' OR b.user_id = %s OR f.owner_id = %s)
        """,
        (order_id, viewer_role, viewer_id, viewer_id),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "id": str(row[0]),
        "kind": OrderKind.BOOKING.value,
        "user_id": str(row[1]),
        "status": row[2],
        "start_at": row[3].isoformat(),
        "end_at": row[4].isoformat(),
        "total_cents": row[5],
        "payment_id": str(row[6]) if row[6] else None,
        "notes": row[7],
        "court_id": str(row[8]),
    }
