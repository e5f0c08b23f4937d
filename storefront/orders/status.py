"""
Order Status Lifecycle

    pending -> confirmed -> processing -> shipped -> delivered

Any forward move is allowed, skipping steps included. ``cancelled`` and
``refunded`` can be entered from any non-terminal state. ``delivered``,
``cancelled`` and ``refunded`` are terminal.
"""

from dataclasses import dataclass
from enum import Enum

from storefront.database.models import OrderStatus
from storefront.errors import InvalidTransitionError


FORWARD_FLOW = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

TERMINAL_STATES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED})

ABSORBING_STATES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})

# A refund only puts goods back on the shelf if they never left the warehouse
REFUND_RESTOCK_STATES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING})


class Actor(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class TransitionPlan:
    """What applying ``requested`` to an order in ``current`` will do."""
    current: OrderStatus
    requested: OrderStatus
    changed: bool
    restock: bool


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATES


def plan_transition(current: OrderStatus, requested: OrderStatus, actor: Actor = Actor.ADMIN) -> TransitionPlan:
    """
    Check a status change and work out its side effects.

    Re-applying the current status of a non-terminal order is a no-op
    (``changed`` is False and nothing fires).

    Raises:
        InvalidTransitionError: If the change is not permitted for ``actor``
    """
    current = OrderStatus(current)
    requested = OrderStatus(requested)

    if current in TERMINAL_STATES:
        raise InvalidTransitionError(current.value, requested.value, f"order is already {current.value}")

    if actor == Actor.CUSTOMER:
        if requested != OrderStatus.CANCELLED:
            raise InvalidTransitionError(current.value, requested.value, "customers can only cancel orders")
        if current != OrderStatus.PENDING:
            raise InvalidTransitionError(current.value, requested.value, "only pending orders can be cancelled")

    if requested == current:
        return TransitionPlan(current, requested, changed=False, restock=False)

    if requested in ABSORBING_STATES:
        restock = requested == OrderStatus.CANCELLED or current in REFUND_RESTOCK_STATES
        return TransitionPlan(current, requested, changed=True, restock=restock)

    if FORWARD_FLOW.index(requested) < FORWARD_FLOW.index(current):
        raise InvalidTransitionError(current.value, requested.value, "status can only move forward")

    return TransitionPlan(current, requested, changed=True, restock=False)
