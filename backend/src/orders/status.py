"""Order status state machine.

State Flow:
    OPEN → CONFIRMED → PROCESSING → SHIPPED → DELIVERED
    OPEN|CONFIRMED|PROCESSING → CANCELLED
    CONFIRMED|PROCESSING|SHIPPED|DELIVERED → REFUNDED

Terminal States: CANCELLED, REFUNDED

ERP-driven updates may skip intermediate steps (e.g. CONFIRMED → SHIPPED),
so forward jumps along the fulfilment chain are allowed.
"""

from enum import Enum
from typing import List


class OrderStatus(str, Enum):
    """Local order status enumeration."""
    OPEN = "OPEN"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


ALLOWED_TRANSITIONS = {
    OrderStatus.OPEN: [
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.CONFIRMED: [
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    ],
    OrderStatus.PROCESSING: [
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    ],
    OrderStatus.SHIPPED: [
        OrderStatus.DELIVERED,
        OrderStatus.REFUNDED,
    ],
    OrderStatus.DELIVERED: [OrderStatus.REFUNDED],
    OrderStatus.CANCELLED: [],  # Terminal state
    OrderStatus.REFUNDED: [],  # Terminal state
}

TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})

# Statuses in which the goods have physically left the warehouse
SHIPPED_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})


class OrderTransitionError(Exception):
    """Raised when an invalid order status transition is attempted."""
    pass


def validate_transition(current_status: OrderStatus, new_status: OrderStatus) -> None:
    """Validate that a state transition is allowed.

    Args:
        current_status: Current order status
        new_status: Target status to transition to

    Raises:
        OrderTransitionError: If transition is not allowed
    """
    current_status = OrderStatus(current_status)
    new_status = OrderStatus(new_status)
    allowed = ALLOWED_TRANSITIONS.get(current_status, [])
    if new_status not in allowed:
        raise OrderTransitionError(
            f"Invalid transition: {current_status.value} -> {new_status.value}. "
            f"Allowed transitions from {current_status.value}: "
            f"{[s.value for s in allowed]}"
        )


def can_transition(current_status: OrderStatus, new_status: OrderStatus) -> bool:
    """Check if a state transition is allowed without raising exception."""
    allowed = ALLOWED_TRANSITIONS.get(OrderStatus(current_status), [])
    return OrderStatus(new_status) in allowed


def get_allowed_transitions(status: OrderStatus) -> List[OrderStatus]:
    return ALLOWED_TRANSITIONS.get(OrderStatus(status), [])
