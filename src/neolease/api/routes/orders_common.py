"""Read, transition and delete endpoints shared by bookings and rentals."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel

from neolease.api.auth import CurrentUser, CurrentUserDep
from neolease.api.http_errors import to_http
from neolease.domain import orders
from neolease.domain.order_state import OrderKind
from neolease.errors import DomainError
from neolease.observability.correlation import get_correlation_id


class TransitionRequest(BaseModel):
    """Request body for a status transition."""

    status: str


def request_transition(
    kind: OrderKind,
    order_id: str,
    to_status: str,
    user: CurrentUser,
) -> dict[str, Any]:
    """Apply a user-requested transition on an order the user can see.

    Raises:
        HTTPException: 404 if invisible, 403 if the role may not request
            to_status, 400 for an illegal transition.
    """
    correlation_id = get_correlation_id()
    actor = user.actor
    try:
        order = orders.get_order(kind, order_id, actor=actor)
        allowed = orders.allowed_user_targets(actor, order)
        if allowed is not None and to_status not in allowed:
            raise HTTPException(
                status_code=403,
                detail={
                    "code": "ACCESS_DENIED",
                    "message": f"Not allowed to move this order to {to_status}",
                },
            )
        return orders.transition_order(
            kind, order_id, to_status, actor=actor, correlation_id=correlation_id
        )
    except DomainError as exc:
        raise to_http(exc, correlation_id=correlation_id)


def register_order_routes(router: APIRouter, kind: OrderKind) -> None:
    """Mount GET /{id}, POST /{id}/transitions and DELETE /{id} for a kind."""

    @router.get("/{order_id}")
    def get_order(order_id: UUID, user: CurrentUser = CurrentUserDep) -> dict:
        try:
            return orders.get_order(kind, str(order_id), actor=user.actor)
        except DomainError as exc:
            raise to_http(exc, correlation_id=get_correlation_id())

    @router.post("/{order_id}/transitions")
    def transition(
        order_id: UUID,
        body: TransitionRequest,
        user: CurrentUser = CurrentUserDep,
    ) -> dict:
        return request_transition(kind, str(order_id), body.status, user)

    @router.delete("/{order_id}", status_code=204)
    def delete(order_id: UUID, user: CurrentUser = CurrentUserDep) -> Response:
        try:
            orders.delete_order(kind, str(order_id), actor=user.actor)
        except DomainError as exc:
            raise to_http(exc, correlation_id=get_correlation_id())
        return Response(status_code=204)
