"""Order lifecycle rules shared by bookings and rentals.

Pure functions only: no database access. The transactional application of a
transition lives in ``neolease.domain.orders``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from neolease.errors import InvalidStateError, InvalidTransitionError


class OrderKind(str, Enum):
    BOOKING = "booking"
    RENTAL = "rental"


class InventoryEffect(str, Enum):
    """What a transition does to the Inventory Ledger."""

    NONE = "none"
    RESERVE = "reserve"
    RELEASE = "release"


DRAFT = "draft"
CONFIRMED = "confirmed"
ACTIVE = "active"
OVERDUE = "overdue"
CANCELLED = "cancelled"
# Terminal success state is named per kind
RETURNED = "returned"
COMPLETED = "completed"

_FINISHED_BY_KIND = {
    OrderKind.RENTAL: RETURNED,
    OrderKind.BOOKING: COMPLETED,
}

DELETABLE_STATUSES = frozenset({DRAFT, CANCELLED})

# States in which the order's line items hold inventory
_HOLDING_STATUSES = frozenset({ACTIVE, OVERDUE})


@dataclass(frozen=True)
class OrderRef:
    """Typed correlation key linking a payment to the order it funds."""

    kind: OrderKind
    order_id: str

    @classmethod
    def of(cls, kind: str | OrderKind, order_id: str) -> OrderRef:
        return cls(kind=OrderKind(kind), order_id=str(order_id))


def transition_table(kind: OrderKind) -> dict[str, frozenset[str]]:
    """Legal destinations for each status of the given order kind."""
    finished = _FINISHED_BY_KIND[kind]
    return {
        DRAFT: frozenset({CONFIRMED, CANCELLED}),
        CONFIRMED: frozenset({ACTIVE, CANCELLED}),
        ACTIVE: frozenset({finished, OVERDUE}),
        OVERDUE: frozenset({finished, CANCELLED}),
        finished: frozenset(),
        CANCELLED: frozenset(),
    }


def statuses(kind: OrderKind) -> frozenset[str]:
    return frozenset(transition_table(kind))


def finished_status(kind: OrderKind) -> str:
    return _FINISHED_BY_KIND[kind]


def is_terminal(kind: OrderKind, status: str) -> bool:
    return not transition_table(kind).get(status)


def check_transition(kind: OrderKind, from_status: str, to_status: str) -> None:
    """Raise InvalidTransitionError unless from_status -> to_status is legal.

    Unknown statuses on either side are treated as illegal transitions.
    A same-status request is not checked here; callers treat it as a no-op
    before asking.
    """
    allowed = transition_table(kind).get(from_status)
    if allowed is None or to_status not in allowed:
        raise InvalidTransitionError(from_status, to_status)


def inventory_effect(kind: OrderKind, from_status: str, to_status: str) -> InventoryEffect:
    """Inventory side effect of an already-validated transition.

    Bookings have no inventory counter, so only rentals ever reserve or
    release stock.
    """
    if OrderKind(kind) is not OrderKind.RENTAL:
        return InventoryEffect.NONE
    if to_status == ACTIVE:
        return InventoryEffect.RESERVE
    if from_status in _HOLDING_STATUSES and to_status not in _HOLDING_STATUSES:
        return InventoryEffect.RELEASE
    return InventoryEffect.NONE


def check_deletable(status: str) -> None:
    if status not in DELETABLE_STATUSES:
        raise InvalidStateError(status, "delete")
