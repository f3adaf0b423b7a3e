"""Order state machine application - transactional status transitions.

A transition runs inside one DB transaction:
lock order -> no-op if already there -> validate -> adjust inventory ->
compare-and-set status -> emit outbox event.

Inventory is adjusted before the status write so any stock failure aborts
the transition with nothing changed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from neolease.domain import inventory
from neolease.domain.order_state import (
    CANCELLED,
    OVERDUE,
    InventoryEffect,
    OrderKind,
    check_deletable,
    check_transition,
    inventory_effect,
)
from neolease.errors import InvalidStateError, InvalidTransitionError, OrderNotFoundError
from neolease.infra.db import read_with_retry, txn
from neolease.infra.repositories import orders_repository as orders_repo
from neolease.infra.repositories import payments_repository as payments_repo
from neolease.infra.repositories.outbox_repository import emit_order_status_changed
from neolease.infra.time import utc_today
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

logger = get_logger(__name__)

ADMIN_ROLE = "admin"
FACILITY_OWNER_ROLE = "owner"


@dataclass(frozen=True)
class ActorContext:
    """Who is driving a transition and why."""

    source: str  # user | payment | refund | sweep
    user_id: str | None = None
    role: str | None = None

    @property
    def label(self) -> str:
        return f"{self.source}:{self.user_id}" if self.user_id else self.source

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


PAYMENT_ACTOR = ActorContext(source="payment")
SWEEP_ACTOR = ActorContext(source="sweep")


def apply_transition(
    cur: PgCursor,
    kind: OrderKind,
    order_id: str,
    to_status: str,
    *,
    actor: ActorContext,
    payment_id: str | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Apply a status transition using the caller's transaction.

    Args:
        cur: Database cursor (within transaction).
        kind: Booking or rental.
        order_id: Order UUID.
        to_status: Desired status.
        actor: Who requested the transition.
        payment_id: If set, linked to the order (only if none is linked yet).
        correlation_id: Optional correlation ID for tracing.

    Returns:
        Dict with result status:
        - {"status": "noop", ...} - order already in to_status
        - {"status": "transitioned", "from": str, "to": str, "inventory": str, ...}

    Raises:
        OrderNotFoundError: If the order does not exist.
        InvalidTransitionError: If to_status is not reachable.
        InsufficientStockError: If entering active and stock is short.
    """
    kind = OrderKind(kind)
    order = orders_repo.lock_order(cur, kind, order_id)
    if order is None:
        raise OrderNotFoundError(f"{kind.value.capitalize()} {order_id} not found")

    current = order["status"]

    if payment_id:
        orders_repo.link_payment(cur, kind, order_id, payment_id)

    if current == to_status:
        return {
            "status": "noop",
            "order_id": order_id,
            "order_status": current,
            "user_id": order["user_id"],
        }

    check_transition(kind, current, to_status)

    effect = inventory_effect(kind, current, to_status)
    if effect is not InventoryEffect.NONE:
        items = orders_repo.get_rental_items(cur, order_id)
        if effect is InventoryEffect.RESERVE:
            inventory.reserve_items(cur, items)
        else:
            inventory.release_items(cur, items)

    updated = orders_repo.update_order_status(
        cur, kind, order_id, from_status=current, to_status=to_status
    )
    if not updated:
        # Row is locked above; reaching this means the lock was not held
        raise RuntimeError(f"order {order_id} status changed while locked")

    emit_order_status_changed(
        cur,
        order_kind=kind.value,
        order_id=order_id,
        from_status=current,
        to_status=to_status,
        actor=actor.label,
        correlation_id=correlation_id,
    )

    logger.info(
        "order transitioned",
        extra={
            "extra_fields": safe_log_context(
                order_kind=kind.value,
                order_id=order_id,
                from_status=current,
                to_status=to_status,
                inventory=effect.value,
                actor=actor.source,
            )
        },
    )

    return {
        "status": "transitioned",
        "order_id": order_id,
        "from": current,
        "to": to_status,
        "inventory": effect.value,
        "user_id": order["user_id"],
    }


def transition_order(
    kind: OrderKind,
    order_id: str,
    to_status: str,
    *,
    actor: ActorContext,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Apply a status transition in its own transaction."""
    with txn() as cur:
        return apply_transition(
            cur,
            kind,
            order_id,
            to_status,
            actor=actor,
            correlation_id=correlation_id,
        )


def allowed_user_targets(actor: ActorContext, order: dict[str, Any]) -> frozenset[str] | None:
    """Statuses a user-driven request may ask for on a visible order.

    Returns:
        None when any legal status may be requested (admins, facility owners
        acting on someone else's order), otherwise the restricted set.
    """
    if actor.is_admin:
        return None
    if actor.role == FACILITY_OWNER_ROLE and order["user_id"] != actor.user_id:
        return None
    return frozenset({CANCELLED})


def get_order(kind: OrderKind, order_id: str, *, actor: ActorContext) -> dict[str, Any]:
    """Fetch an order the actor may see.

    Raises:
        OrderNotFoundError: If missing or not visible to the actor.
    """
    kind = OrderKind(kind)
    order = read_with_retry(
        lambda cur: orders_repo.get_visible_order(
            cur,
            kind,
            order_id,
            viewer_id=actor.user_id or "",
            viewer_role=actor.role or "",
        )
    )
    if order is None:
        raise OrderNotFoundError(f"{kind.value.capitalize()} {order_id} not found")
    return order


def delete_order(kind: OrderKind, order_id: str, *, actor: ActorContext) -> None:
    """Delete a draft or cancelled order owned by the actor (or any, for admins).

    Pending or failed charges for the order are cancelled so a late capture
    is treated as belonging to no order. An order still funded by a
    completed charge stays until that charge is refunded.

    Raises:
        OrderNotFoundError: If missing or not owned by a non-admin actor.
        InvalidStateError: If the order is past draft and not cancelled, or
            a completed payment for it has not been refunded.
    """
    kind = OrderKind(kind)
    with txn() as cur:
        order = orders_repo.lock_order(cur, kind, order_id)
        if order is None or (not actor.is_admin and order["user_id"] != actor.user_id):
            raise OrderNotFoundError(f"{kind.value.capitalize()} {order_id} not found")

        check_deletable(order["status"])
        if payments_repo.has_completed_payment(cur, kind.value, order_id):
            raise InvalidStateError(order["status"], "delete")
        cancelled_payments = payments_repo.cancel_open_payments_for_order(
            cur, kind.value, order_id
        )
        orders_repo.delete_order(cur, kind, order_id)

    logger.info(
        "order deleted",
        extra={
            "extra_fields": safe_log_context(
                order_kind=kind.value,
                order_id=order_id,
                status=order["status"],
                cancelled_payments=cancelled_payments,
            )
        },
    )


def mark_overdue_rentals(
    *,
    today: date | None = None,
    correlation_id: str | None = None,
) -> dict[str, int]:
    """Move every active rental past its end date to overdue.

    Each rental gets its own transaction so one failure does not block the
    rest of the sweep.

    Returns:
        Dict with counts: {"checked", "marked", "skipped", "failed"}
    """
    today = today or utc_today()

    with txn() as cur:
        candidate_ids = orders_repo.list_overdue_rental_ids(cur, today)

    marked = 0
    skipped = 0
    failed = 0
    for rental_id in candidate_ids:
        try:
            result = transition_order(
                OrderKind.RENTAL,
                rental_id,
                OVERDUE,
                actor=SWEEP_ACTOR,
                correlation_id=correlation_id,
            )
        except (InvalidTransitionError, OrderNotFoundError):
            # Returned or deleted since the candidate query
            skipped += 1
            continue
        except Exception:
            logger.exception(
                "overdue sweep failed for rental",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id, order_id=rental_id
                    )
                },
            )
            failed += 1
            continue
        if result["status"] == "transitioned":
            marked += 1
        else:
            skipped += 1

    return {
        "checked": len(candidate_ids),
        "marked": marked,
        "skipped": skipped,
        "failed": failed,
    }
