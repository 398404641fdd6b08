"""
Order status transition table.

    pending -> processing -> confirmed -> shipped -> out-for-delivery -> delivered

``cancelled`` and ``failed`` are reachable from every non-terminal status;
``refunded`` only from ``delivered`` or ``cancelled``.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..models import (
    HistoryScope,
    ItemQuantity,
    Order,
    OrderStatus,
    StatusHistoryEntry,
)

CANONICAL_SEQUENCE: Tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
)

TERMINAL_STATUSES = frozenset(
    {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
        OrderStatus.REFUNDED,
    }
)

_SIDE_BRANCHES = [OrderStatus.CANCELLED, OrderStatus.FAILED]

TRANSITIONS: Dict[OrderStatus, List[OrderStatus]] = {
    OrderStatus.PENDING: [OrderStatus.PROCESSING, *_SIDE_BRANCHES],
    OrderStatus.PROCESSING: [OrderStatus.CONFIRMED, *_SIDE_BRANCHES],
    OrderStatus.CONFIRMED: [OrderStatus.SHIPPED, *_SIDE_BRANCHES],
    OrderStatus.SHIPPED: [
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        *_SIDE_BRANCHES,
    ],
    OrderStatus.OUT_FOR_DELIVERY: [OrderStatus.DELIVERED, *_SIDE_BRANCHES],
    OrderStatus.DELIVERED: [OrderStatus.REFUNDED],
    OrderStatus.CANCELLED: [OrderStatus.REFUNDED],
    OrderStatus.FAILED: [],
    OrderStatus.REFUNDED: [],
}


class InvalidTransitionError(ValueError):
    def __init__(self, current: OrderStatus, target: OrderStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from {current.value} to {target.value}")


def next_statuses(current: OrderStatus) -> List[OrderStatus]:
    return list(TRANSITIONS.get(current, []))


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(current, [])


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def apply_transition(
    order: Order,
    target: OrderStatus,
    at: datetime,
    note: Optional[str] = None,
    reason: Optional[str] = None,
    actor: Optional[str] = None,
    items: Optional[List[ItemQuantity]] = None,
) -> Order:
    """
    Return a copy of ``order`` moved to ``target`` with the transition
    appended to its history. The input order is left untouched.

    Raises:
        InvalidTransitionError: If the table does not allow the move
    """
    if not can_transition(order.status, target):
        raise InvalidTransitionError(order.status, target)

    entry = StatusHistoryEntry(
        status=target,
        timestamp=at,
        note=note,
        reason=reason,
        actor=actor,
        scope=HistoryScope.ORDER,
        items=items or [],
    )
    return order.model_copy(
        update={
            "status": target,
            "status_history": [*order.status_history, entry],
            "updated_at": at,
        },
        deep=True,
    )
