"""Rental order endpoints."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, Field

from neolease.api.auth import CurrentUser, CurrentUserDep
from neolease.api.http_errors import to_http
from neolease.api.routes.orders_common import register_order_routes
from neolease.domain.order_state import OrderKind
from neolease.domain.rentals import create_rental_order
from neolease.errors import DomainError
from neolease.observability.correlation import get_correlation_id


class RentalItemRequest(BaseModel):
    product_id: UUID
    quantity: int = Field(ge=1)


class CreateRentalRequest(BaseModel):
    """Request body for a new rental order."""

    start_date: date
    end_date: date
    items: list[RentalItemRequest] = Field(min_length=1)
    notes: str | None = None


router = APIRouter(prefix="/rentals", tags=["rentals"])


@router.post("", status_code=201)
def create_rental(body: CreateRentalRequest, user: CurrentUser = CurrentUserDep) -> dict:
    """Create a draft rental order. Stock is checked, not held."""
    correlation_id = get_correlation_id()
    try:
        return create_rental_order(
            user.id,
            start_date=body.start_date,
            end_date=body.end_date,
            items=[
                {"product_id": str(item.product_id), "quantity": item.quantity}
                for item in body.items
            ],
            notes=body.notes,
            correlation_id=correlation_id,
        )
    except DomainError as exc:
        raise to_http(exc, correlation_id=correlation_id)


register_order_routes(router, OrderKind.RENTAL)
