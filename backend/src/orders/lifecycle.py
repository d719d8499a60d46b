"""Local order lifecycle.

Every status change goes through transition_order(), which updates the
current status, applies the inventory side effects and appends a status
history row in the caller's transaction. Callers commit.

Inventory effects (q = line quantity):
    checkout                      reserved += q
    OPEN/CONFIRMED/PROCESSING
        -> SHIPPED/DELIVERED      quantity -= q, reserved -= q
        -> CANCELLED/REFUNDED     reserved -= q
    SHIPPED/DELIVERED -> REFUNDED quantity += q
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from models import Order, OrderStatusHistory
from models.base import utcnow
from .inventory import adjust_inventory
from .status import (
    OrderStatus,
    PaymentStatus,
    SHIPPED_STATUSES,
    TERMINAL_STATUSES,
    validate_transition,
)


logger = logging.getLogger(__name__)

PRE_SHIPMENT_STATUSES = frozenset({OrderStatus.OPEN, OrderStatus.CONFIRMED, OrderStatus.PROCESSING})


def append_history(
    db: Session,
    order: Order,
    status: OrderStatus,
    previous_status: Optional[str],
    source: str,
    note: Optional[str] = None,
) -> OrderStatusHistory:
    entry = OrderStatusHistory(
        order_id=order.id,
        status=OrderStatus(status).value,
        previous_status=previous_status,
        payment_status=order.payment_status,
        source=source,
        note=note,
    )
    db.add(entry)
    return entry


def reserve_order_stock(db: Session, order: Order) -> None:
    """Hold stock for a freshly placed order."""
    for line in order.lines:
        adjust_inventory(db, line.variant_id, reserved_delta=line.quantity)
    append_history(db, order, OrderStatus(order.status), None, "local", "Order placed")


def _apply_stock_effects(db: Session, order: Order, old: OrderStatus, new: OrderStatus) -> None:
    if old in PRE_SHIPMENT_STATUSES and new in SHIPPED_STATUSES:
        for line in order.lines:
            adjust_inventory(db, line.variant_id, quantity_delta=-line.quantity, reserved_delta=-line.quantity)
    elif old in PRE_SHIPMENT_STATUSES and new in TERMINAL_STATUSES:
        for line in order.lines:
            adjust_inventory(db, line.variant_id, reserved_delta=-line.quantity)
    elif old in SHIPPED_STATUSES and new == OrderStatus.REFUNDED:
        for line in order.lines:
            adjust_inventory(db, line.variant_id, quantity_delta=line.quantity)


def transition_order(
    db: Session,
    order: Order,
    new_status: OrderStatus,
    source: str = "local",
    note: Optional[str] = None,
    enforce: bool = True,
) -> bool:
    """Move an order to a new status with inventory effects and history.

    Args:
        db: Database session (caller commits)
        order: Order to update
        new_status: Target status
        source: Who caused the change (local|payment|erp|admin)
        note: Free-text history note
        enforce: Validate against ALLOWED_TRANSITIONS. ERP-driven updates
            pass False (last writer wins), but never leave a terminal status.

    Returns:
        False if the order already had that status

    Raises:
        OrderTransitionError: Transition not allowed
    """
    old = OrderStatus(order.status)
    new = OrderStatus(new_status)
    if old == new:
        return False

    if enforce or old in TERMINAL_STATUSES:
        validate_transition(old, new)

    _apply_stock_effects(db, order, old, new)
    order.status = new.value
    append_history(db, order, new, old.value, source, note)

    logger.info(
        f"Order {order.number}: {old.value} -> {new.value} ({source})",
        extra={"order_id": str(order.id)}
    )
    return True


def confirm_payment(db: Session, order: Order) -> bool:
    """Record a successful payment. Returns False if the order was already paid."""
    if order.payment_status == PaymentStatus.PAID.value:
        return False

    order.payment_status = PaymentStatus.PAID.value
    order.paid_at = utcnow()
    if OrderStatus(order.status) == OrderStatus.OPEN:
        transition_order(db, order, OrderStatus.CONFIRMED, source="payment", note="Payment confirmed")
    else:
        append_history(db, order, OrderStatus(order.status), order.status, "payment", "Payment confirmed")
    return True


def mark_payment_failed(db: Session, order: Order, note: Optional[str] = None) -> bool:
    if order.payment_status in (PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value):
        logger.warning(
            f"Ignoring payment failure for order {order.number} in payment status {order.payment_status}",
            extra={"order_id": str(order.id)}
        )
        return False
    order.payment_status = PaymentStatus.FAILED.value
    append_history(db, order, OrderStatus(order.status), order.status, "payment", note or "Payment failed")
    return True


def cancel_order(db: Session, order: Order, reason: Optional[str] = None, source: str = "local") -> bool:
    """Cancel an order before shipment, releasing its reservation."""
    changed = transition_order(db, order, OrderStatus.CANCELLED, source=source, note=reason)
    if changed and order.payment_status in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value):
        order.payment_status = PaymentStatus.CANCELLED.value
    return changed


def ship_order(db: Session, order: Order, tracking_number: Optional[str] = None, source: str = "local") -> bool:
    if tracking_number:
        order.tracking_number = tracking_number
    return transition_order(db, order, OrderStatus.SHIPPED, source=source, note="Shipped")


def deliver_order(db: Session, order: Order, source: str = "local") -> bool:
    return transition_order(db, order, OrderStatus.DELIVERED, source=source, note="Delivered")


def refund_order(db: Session, order: Order, reason: Optional[str] = None, source: str = "local") -> bool:
    """Mark an order refunded and restore inventory.

    Shipped/delivered orders return their quantities to stock; orders refunded
    before shipment release their reservation. An already cancelled order
    only gets its payment status updated.

    Returns:
        False if the order was already refunded
    """
    if order.status == OrderStatus.REFUNDED.value:
        return False
    if order.status == OrderStatus.CANCELLED.value and order.payment_status == PaymentStatus.REFUNDED.value:
        return False

    order.payment_status = PaymentStatus.REFUNDED.value
    if order.status == OrderStatus.CANCELLED.value:
        append_history(db, order, OrderStatus.CANCELLED, order.status, source, reason or "Payment refunded")
        return True

    return transition_order(db, order, OrderStatus.REFUNDED, source=source, note=reason)
