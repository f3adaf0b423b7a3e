"""Court booking endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel

from neolease.api.auth import CurrentUser, CurrentUserDep
from neolease.api.http_errors import to_http
from neolease.api.routes.orders_common import register_order_routes
from neolease.domain.bookings import create_booking
from neolease.domain.order_state import OrderKind
from neolease.errors import DomainError
from neolease.observability.correlation import get_correlation_id


class CreateBookingRequest(BaseModel):
    court_id: UUID
    start_at: datetime
    end_at: datetime
    notes: str | None = None


router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", status_code=201)
def create(body: CreateBookingRequest, user: CurrentUser = CurrentUserDep) -> dict:
    correlation_id = get_correlation_id()
    try:
        return create_booking(
            user.id,
            court_id=str(body.court_id),
            start_at=body.start_at,
            end_at=body.end_at,
            notes=body.notes,
            correlation_id=correlation_id,
        )
    except DomainError as exc:
        raise to_http(exc, correlation_id=correlation_id)


register_order_routes(router, OrderKind.BOOKING)
