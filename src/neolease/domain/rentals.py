"""Rental order creation and pricing.

A rental is created in draft with its line items priced once, here. Stock is
only checked (not held) at creation; the Inventory Ledger takes units when
the rental enters active.
"""

from __future__ import annotations

import math
from datetime import date
from typing import Any

from neolease.domain import inventory
from neolease.errors import ProductNotFoundError, ValidationFailedError
from neolease.infra.db import txn
from neolease.infra.repositories import orders_repository as orders_repo
from neolease.infra.time import utc_today
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

logger = get_logger(__name__)

DAYS_PER_MONTH = 30
DAYS_PER_WEEK = 7
HOURS_PER_DAY = 24


def rental_days(start_date: date, end_date: date) -> int:
    """Whole days billed between two calendar dates (end exclusive)."""
    return (end_date - start_date).days


def unit_price_cents(pricing: dict[str, Any], days: int) -> int:
    """Price of one unit for a rental of ``days`` days.

    Tiers are billed per started period: month when the rental spans 30 days
    or more, week from 7 days, then day. A product priced only by the hour is
    billed 24 hours per day. The first tier the product defines wins.

    Raises:
        ValidationFailedError: If the product defines no usable tier.
    """
    if days <= 0:
        raise ValidationFailedError("Rental must last at least one day")

    month = pricing.get("month")
    week = pricing.get("week")
    day = pricing.get("day")
    hour = pricing.get("hour")

    if days >= DAYS_PER_MONTH and month:
        return int(month) * math.ceil(days / DAYS_PER_MONTH)
    if days >= DAYS_PER_WEEK and week:
        return int(week) * math.ceil(days / DAYS_PER_WEEK)
    if day:
        return int(day) * days
    if hour:
        return int(hour) * days * HOURS_PER_DAY
    raise ValidationFailedError("No valid pricing found for product")


def price_items(
    products: dict[str, dict[str, Any]],
    items: list[dict[str, Any]],
    days: int,
) -> tuple[list[dict[str, Any]], int, int]:
    """Price requested line items against loaded products.

    Returns:
        (priced_items, total_cents, deposit_cents)

    Raises:
        ProductNotFoundError: If a requested product was not loaded.
        ValidationFailedError: If a product has no pricing.
    """
    priced: list[dict[str, Any]] = []
    total = 0
    deposit = 0
    for item in items:
        product = products.get(str(item["product_id"]))
        if product is None:
            raise ProductNotFoundError(f"Product {item['product_id']} not found or inactive")
        unit = unit_price_cents(product["pricing"], days)
        line_total = unit * item["quantity"]
        total += line_total
        deposit += (product["deposit_cents"] or 0) * item["quantity"]
        priced.append(
            {
                "product_id": product["id"],
                "quantity": item["quantity"],
                "unit_price_cents": unit,
                "total_price_cents": line_total,
            }
        )
    return priced, total, deposit


def create_rental_order(
    user_id: str,
    *,
    start_date: date,
    end_date: date,
    items: list[dict[str, Any]],
    notes: str | None = None,
    today: date | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Create a draft rental order.

    Args:
        user_id: Renting user.
        start_date: First rental day (must be after today).
        end_date: Return day (must be after start_date).
        items: Dicts with product_id and quantity (>= 1).
        notes: Optional notes.
        today: Override for the current date (tests).
        correlation_id: Optional correlation ID for tracing.

    Returns:
        Dict with id, status, total_cents, deposit_cents and items.

    Raises:
        ValidationFailedError: Bad window, empty items or missing pricing.
        ProductNotFoundError: A product is missing or inactive.
        InsufficientStockError: Not enough units available right now.
    """
    today = today or utc_today()
    if start_date <= today:
        raise ValidationFailedError("Rental must start in the future")
    if end_date <= start_date:
        raise ValidationFailedError("End date must be after start date")
    if not items:
        raise ValidationFailedError("At least one item is required")
    for item in items:
        if item["quantity"] < 1:
            raise ValidationFailedError("Item quantity must be at least 1")

    days = rental_days(start_date, end_date)

    with txn() as cur:
        products = orders_repo.get_products_for_rental(
            cur, sorted({str(item["product_id"]) for item in items})
        )
        priced, total_cents, deposit_cents = price_items(products, items, days)

        for product_id, quantity in inventory.merge_items(
            (item["product_id"], item["quantity"]) for item in priced
        ):
            inventory.check_available(cur, product_id, quantity)

        rental_order_id = orders_repo.insert_rental_order(
            cur,
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            total_cents=total_cents,
            deposit_cents=deposit_cents,
            notes=notes,
            items=priced,
        )

    logger.info(
        "rental order created",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                rental_order_id=rental_order_id,
                item_count=len(priced),
                days=days,
                total_cents=total_cents,
            )
        },
    )

    return {
        "id": rental_order_id,
        "status": "draft",
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "total_cents": total_cents,
        "deposit_cents": deposit_cents,
        "items": priced,
    }
