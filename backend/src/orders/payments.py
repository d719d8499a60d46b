"""Checkout and payment hooks.

Called by the storefront checkout and the payment provider integration.
Every hook commits the local change first, then enqueues the ERP job. ERP
problems (and a broker outage) never surface to the caller: the periodic
pending-order sweep pushes whatever was missed.
"""

import logging
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from models import Order
from .lifecycle import cancel_order, confirm_payment, mark_payment_failed, refund_order, reserve_order_stock


logger = logging.getLogger(__name__)


class PaymentOutcome(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


def _default_enqueue(order_id: UUID, action: str, reason: Optional[str] = None) -> None:
    from workers.order_push_worker import enqueue_order_push
    enqueue_order_push(order_id, action=action, reason=reason)


def _enqueue(enqueue: Optional[Callable], order: Order, action: str, reason: Optional[str] = None) -> bool:
    try:
        (enqueue or _default_enqueue)(order.id, action, reason)
        return True
    except Exception as e:
        logger.error(
            f"Could not enqueue ERP {action} for order {order.number}: {e}",
            extra={"order_id": str(order.id)}
        )
        return False


def _get_order(db: Session, order_id: UUID) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise LookupError(f"Order {order_id} not found")
    return order


def handle_order_created(db: Session, order_id: UUID, enqueue: Optional[Callable] = None) -> Order:
    """Reserve stock for a new order and create it in the ERP as unpaid."""
    order = _get_order(db, order_id)
    reserve_order_stock(db, order)
    db.commit()

    _enqueue(enqueue, order, "create_unpaid")
    return order


def handle_payment_result(
    db: Session,
    order_id: UUID,
    outcome: PaymentOutcome,
    reason: Optional[str] = None,
    enqueue: Optional[Callable] = None,
) -> bool:
    """
    Apply a verified payment result.

    Returns:
        True if the order changed (repeated notifications return False)

    Raises:
        LookupError: Unknown order
        OrderTransitionError: Refund of an order that cannot be refunded
    """
    order = _get_order(db, order_id)
    outcome = PaymentOutcome(outcome)

    if outcome == PaymentOutcome.SUCCEEDED:
        changed = confirm_payment(db, order)
        db.commit()
        if changed:
            _enqueue(enqueue, order, "mark_paid")
        return changed

    if outcome == PaymentOutcome.FAILED:
        changed = mark_payment_failed(db, order, note=reason)
        db.commit()
        return changed

    changed = refund_order(db, order, reason=reason, source="payment")
    db.commit()
    if changed:
        _enqueue(enqueue, order, "refund", reason)
    return changed


def handle_order_cancelled(
    db: Session,
    order_id: UUID,
    reason: Optional[str] = None,
    enqueue: Optional[Callable] = None,
) -> bool:
    """Cancel an order before shipment and cancel it in the ERP."""
    order = _get_order(db, order_id)
    changed = cancel_order(db, order, reason=reason)
    db.commit()
    if changed:
        _enqueue(enqueue, order, "cancel", reason)
    return changed
