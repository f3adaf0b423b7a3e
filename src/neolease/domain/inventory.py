"""Inventory ledger - the only code path that mutates products.available_quantity.

Every adjustment is a single conditional UPDATE so concurrent callers can
never observe-then-overwrite each other:
- reserve: decrement guarded by ``available_quantity >= qty``
- release: increment clamped at the product's total ``quantity``

Batch helpers lock products in a deterministic order (sorted product_id) and
are meant to run inside the caller's transaction, so a failure on one line
item rolls back every adjustment already made for the same transition.
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from psycopg2.extensions import cursor as PgCursor

from neolease.errors import InsufficientStockError, ProductNotFoundError
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

logger = get_logger(__name__)

LineItem = tuple[str, int]


def _validate_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValueError(f"quantity must be a positive integer, got {quantity!r}")


def reserve(cur: PgCursor, product_id: str, quantity: int) -> int:
    """Decrement available stock for one product.

    Args:
        cur: Database cursor (within transaction).
        product_id: Product UUID.
        quantity: Units to take, > 0.

    Returns:
        The new available_quantity.

    Raises:
        ProductNotFoundError: If the product does not exist.
        InsufficientStockError: If fewer than quantity units are available.
    """
    _validate_quantity(quantity)

    cur.execute(
        """
        UPDATE products
        SET available_quantity = available_quantity - %s,
            updated_at = now()
        WHERE id = %s
          AND available_quantity >= %s
        RETURNING available_quantity
        """,
        (quantity, product_id, quantity),
    )
    row = cur.fetchone()
    if row is not None:
        return row[0]

    # Guard failed: tell missing product apart from short stock
    cur.execute(
        "SELECT available_quantity FROM products WHERE id = %s",
        (product_id,),
    )
    current = cur.fetchone()
    if current is None:
        raise ProductNotFoundError(f"Product {product_id} not found")
    raise InsufficientStockError(product_id, quantity, current[0])


def release(cur: PgCursor, product_id: str, quantity: int) -> int | None:
    """Increment available stock for one product, clamped at its total.

    Release is a compensating action and never raises for a missing product
    or an over-release; both are logged instead.

    Args:
        cur: Database cursor (within transaction).
        product_id: Product UUID.
        quantity: Units to give back, > 0.

    Returns:
        The new available_quantity, or None if the product no longer exists.
    """
    _validate_quantity(quantity)

    cur.execute(
        """
        UPDATE products AS p
        SET available_quantity = LEAST(p.quantity, p.available_quantity + %s),
            updated_at = now()
        FROM (
            SELECT id, available_quantity AS before
            FROM products
            WHERE id = %s
            FOR UPDATE
        ) AS prev
        WHERE p.id = prev.id
        RETURNING p.available_quantity, prev.before
        """,
        (quantity, product_id),
    )
    row = cur.fetchone()
    if row is None:
        logger.warning(
            "release skipped: product not found",
            extra={"extra_fields": safe_log_context(product_id=product_id, quantity=quantity)},
        )
        return None

    after, before = row
    if after - before < quantity:
        logger.warning(
            "release clamped at product total",
            extra={
                "extra_fields": safe_log_context(
                    product_id=product_id,
                    requested=quantity,
                    applied=after - before,
                )
            },
        )
    return after


def merge_items(items: Iterable[LineItem]) -> list[LineItem]:
    """Sum quantities per product and order by product_id."""
    totals: Counter[str] = Counter()
    for product_id, quantity in items:
        _validate_quantity(quantity)
        totals[str(product_id)] += quantity
    return sorted(totals.items())


def reserve_items(cur: PgCursor, items: Iterable[LineItem]) -> dict[str, int]:
    """Reserve every line item of one transition, or none of them.

    Raises on the first failing product; the caller's transaction rollback
    undoes the reservations already applied in this batch.

    Returns:
        Mapping of product_id to its new available_quantity.
    """
    return {product_id: reserve(cur, product_id, qty) for product_id, qty in merge_items(items)}


def release_items(cur: PgCursor, items: Iterable[LineItem]) -> dict[str, int | None]:
    """Release every line item of one transition."""
    return {product_id: release(cur, product_id, qty) for product_id, qty in merge_items(items)}


def check_available(cur: PgCursor, product_id: str, quantity: int) -> None:
    """Creation-time availability check. Reads only; nothing is held.

    Raises:
        ProductNotFoundError: If the product does not exist or is inactive.
        InsufficientStockError: If not enough units are currently available.
    """
    _validate_quantity(quantity)
    cur.execute(
        "SELECT available_quantity FROM products WHERE id = %s AND is_active",
        (product_id,),
    )
    row = cur.fetchone()
    if row is None:
        raise ProductNotFoundError(f"Product {product_id} not found or inactive")
    if row[0] < quantity:
        raise InsufficientStockError(product_id, quantity, row[0])
