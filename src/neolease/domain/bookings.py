"""Court booking creation.

Court capacity is a creation-time overlap check: the court row is locked
(FOR UPDATE) so two bookings for intersecting windows cannot both pass the
check.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from neolease.errors import BookingConflictError, CourtNotFoundError, ValidationFailedError
from neolease.infra.db import txn
from neolease.infra.repositories import orders_repository as orders_repo
from neolease.infra.time import utc_now
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

logger = get_logger(__name__)

SECONDS_PER_HOUR = 3600


def booking_total_cents(price_per_hour_cents: int, start_at: datetime, end_at: datetime) -> int:
    """Hourly price times duration, rounded to the nearest minor unit."""
    seconds = int((end_at - start_at).total_seconds())
    return (price_per_hour_cents * seconds + SECONDS_PER_HOUR // 2) // SECONDS_PER_HOUR


def create_booking(
    user_id: str,
    *,
    court_id: str,
    start_at: datetime,
    end_at: datetime,
    notes: str | None = None,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Create a draft booking for a court slot.

    Raises:
        ValidationFailedError: Window in the past or empty.
        CourtNotFoundError: Court missing or inactive.
        BookingConflictError: Another live booking intersects the window.
    """
    now = now or utc_now()
    if start_at.tzinfo is None or end_at.tzinfo is None:
        raise ValidationFailedError("Booking times must include a timezone")
    if start_at <= now:
        raise ValidationFailedError("Booking must be in the future")
    if end_at <= start_at:
        raise ValidationFailedError("End time must be after start time")

    with txn() as cur:
        court = orders_repo.lock_court(cur, court_id)
        if court is None:
            raise CourtNotFoundError("Court not found or inactive")

        if orders_repo.has_overlapping_booking(
            cur, court_id=court_id, start_at=start_at, end_at=end_at
        ):
            raise BookingConflictError("Court is already booked for the selected time slot")

        total_cents = booking_total_cents(court["price_per_hour_cents"], start_at, end_at)
        booking_id = orders_repo.insert_booking(
            cur,
            user_id=user_id,
            court_id=court_id,
            start_at=start_at,
            end_at=end_at,
            total_cents=total_cents,
            notes=notes,
        )

    logger.info(
        "booking created",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                booking_id=booking_id,
                court_id=court_id,
                total_cents=total_cents,
            )
        },
    )

    return {
        "id": booking_id,
        "status": "draft",
        "court_id": court_id,
        "start_at": start_at.isoformat(),
        "end_at": end_at.isoformat(),
        "total_cents": total_cents,
    }
