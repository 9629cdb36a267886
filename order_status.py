from enum import Enum
from typing import Dict, FrozenSet

from errors import InvalidTransitionError, StoreError


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise StoreError(f"Unknown order status '{value}'. Expected one of: {allowed}", status_code=400)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return current == target or target in TRANSITIONS[current]


def check_transition(current: str, target: str) -> OrderStatus:
    """Return the parsed target status, or raise if the move is not allowed."""
    current_status = parse_status(current or OrderStatus.PENDING.value)
    target_status = parse_status(target)
    if not can_transition(current_status, target_status):
        raise InvalidTransitionError(current_status.value, target_status.value)
    return target_status


def is_terminal(status: OrderStatus) -> bool:
    return not TRANSITIONS[status]
