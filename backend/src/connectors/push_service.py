"""
Order Push Service - Coordinates outbound order operations with the ERP

Handles the complete outbound workflow:
- Payment gating (stock is decremented in the ERP only for paid orders)
- Idempotent creation (one ERP order per local order, also across crashes)
- Mark-as-paid, refund and cancellation pushes
- Sweep of paid orders that never reached the ERP

Every operation returns an OrderSyncResult instead of raising, records the
failure on the order (external_sync_error) and never calls the ERP while a
local write transaction is open.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from auth.roles import UserRole
from config import get_settings
from models import Order
from models.base import as_utc, utcnow
from observability.metrics import erp_order_pushes_total
from orders.lifecycle import refund_order
from orders.status import OrderStatus, OrderTransitionError, PaymentStatus, TERMINAL_STATUSES
from .config_service import build_client, build_router, require_active_configuration
from .erp_statuses import ErpOrderStatus
from .order_payload import OrderPayloadBuilder
from .ports import ErpClientPort, ErpError, OrderSyncResult, TransportError, UnroutableProductError
from .warehouse_router import WarehouseRouter


logger = logging.getLogger(__name__)

# How far before order.created_at the crash-recovery lookup starts
RECOVERY_LOOKBACK = timedelta(hours=1)

PENDING_PUSH_STATUSES = (
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
)


def order_marker(order_number: str) -> str:
    """Prefix of admin_comments identifying the local order in the ERP."""
    return f"Order: {order_number}"


class OrderPushService:
    """
    Outbound order sync.

    Args:
        db: SQLAlchemy session. The service commits its own changes.
        client_factory: configuration -> ErpClientPort (default: decrypting build_client)
        router_factory: configuration -> WarehouseRouter (default: build_router)

    Usage:
        service = OrderPushService(db)
        result = service.sync_order(order.id)
        if not result.success:
            ...  # order.external_sync_error holds the reason
    """

    def __init__(
        self,
        db: Session,
        client_factory: Optional[Callable[[Any], ErpClientPort]] = None,
        router_factory: Optional[Callable[[Any], WarehouseRouter]] = None,
    ):
        self.db = db
        self.client_factory = client_factory or build_client
        self.router_factory = router_factory or build_router

    # Public operations

    def sync_order(
        self,
        order_id: UUID,
        skip_payment_check: bool = False,
        force: bool = False,
        order_status_id: Optional[int] = None,
        actor_role: Optional[str] = None,
    ) -> OrderSyncResult:
        """
        Create the order in the ERP, or complete its payment there.

        Args:
            order_id: Local order id
            skip_payment_check: Create an unpaid order (status UNPAID, no stock effect)
            force: Push regardless of payment status (ADMIN only)
            order_status_id: Explicit ERP status for a new paid or forced order
            actor_role: Role of the admin requesting the push

        Returns:
            OrderSyncResult; success with skipped=True when nothing had to be done
        """
        order = self._load(order_id)
        if order is None:
            return self._result("create", OrderSyncResult(
                success=False, order_id=str(order_id), error="Order not found"
            ))

        if force and not self._is_admin(actor_role):
            logger.warning(
                f"Rejected force push of order {order.number} by role {actor_role}",
                extra={"order_id": str(order.id)}
            )
            return self._result("create", OrderSyncResult(
                success=False, order_id=str(order.id),
                error="Force push requires the ADMIN role",
            ))

        if order.external_order_id:
            if order.is_paid and order.external_paid_at is None:
                return self.mark_order_as_paid(order.id)
            return self._result("none", OrderSyncResult(
                success=True, order_id=str(order.id),
                external_order_id=order.external_order_id, skipped=True,
            ))

        if not (order.is_paid or skip_payment_check or force):
            logger.info(
                f"Order {order.number} not pushed: payment status {order.payment_status}",
                extra={"order_id": str(order.id)}
            )
            return self._result("create", OrderSyncResult(
                success=False, order_id=str(order.id), skipped=True,
                error=f"Order is not paid (payment status {order.payment_status})",
            ))

        # An explicit status only applies to paid or force-pushed orders
        if order_status_id is None or not (order.is_paid or force):
            order_status_id = ErpOrderStatus.NEW_ORDER if order.is_paid else ErpOrderStatus.UNPAID
        return self._create(order, int(order_status_id))

    def mark_order_as_paid(self, order_id: UUID) -> OrderSyncResult:
        """
        Move the ERP order to NEW_ORDER and record the payment.

        An order that never reached the ERP is created as paid instead.
        Idempotent once external_paid_at is set.
        """
        order = self._load(order_id)
        if order is None:
            return self._result("mark_paid", OrderSyncResult(
                success=False, order_id=str(order_id), error="Order not found"
            ))

        if not order.is_paid:
            return self._result("mark_paid", OrderSyncResult(
                success=False, order_id=str(order.id), skipped=True,
                error=f"Order is not paid (payment status {order.payment_status})",
            ))

        if not order.external_order_id:
            return self._create(order, int(ErpOrderStatus.NEW_ORDER))

        if order.external_paid_at is not None:
            return self._result("mark_paid", OrderSyncResult(
                success=True, order_id=str(order.id),
                external_order_id=order.external_order_id, skipped=True, action="mark_paid",
            ))

        try:
            client, _ = self._connect()
            self._push_payment(client, order, set_status=True)
        except ErpError as e:
            return self._failure(order, "mark_paid", e)

        order.external_paid_at = utcnow()
        order.external_sync_error = None
        self.db.commit()

        logger.info(
            f"Order {order.number} marked as paid in ERP order {order.external_order_id}",
            extra={"order_id": str(order.id), "external_order_id": order.external_order_id}
        )
        return self._result("mark_paid", OrderSyncResult(
            success=True, order_id=str(order.id),
            external_order_id=order.external_order_id, action="mark_paid",
        ))

    def mark_order_as_refunded(self, order_id: UUID, reason: Optional[str] = None) -> OrderSyncResult:
        """
        Refund locally (status, payment, inventory, history), then cancel the ERP order.
        """
        order = self._load(order_id)
        if order is None:
            return self._result("refund", OrderSyncResult(
                success=False, order_id=str(order_id), error="Order not found"
            ))

        try:
            if refund_order(self.db, order, reason=reason, source="payment"):
                self.db.commit()
        except OrderTransitionError as e:
            self.db.rollback()
            return self._failure(order, "refund", e)

        return self._push_cancellation(order, reason or "Refunded", "refund")

    def mark_order_as_cancelled(self, order_id: UUID, reason: Optional[str] = None) -> OrderSyncResult:
        """Cancel the ERP order of a locally cancelled order."""
        order = self._load(order_id)
        if order is None:
            return self._result("cancel", OrderSyncResult(
                success=False, order_id=str(order_id), error="Order not found"
            ))

        if order.status != OrderStatus.CANCELLED.value:
            return self._result("cancel", OrderSyncResult(
                success=False, order_id=str(order.id), skipped=True,
                error=f"Order is not cancelled (status {order.status})",
            ))

        return self._push_cancellation(order, reason or "Cancelled", "cancel")

    def sync_pending_orders(self, batch_size: Optional[int] = None) -> Dict[str, int]:
        """
        Push paid orders the ERP has not seen yet, and payments it has not recorded.

        Returns:
            {"processed", "synced", "failed", "skipped"} counters
        """
        batch_size = batch_size or get_settings().PENDING_ORDERS_BATCH_SIZE
        summary = {"processed": 0, "synced": 0, "failed": 0, "skipped": 0}

        unsynced = self.db.query(Order.id).filter(
            Order.payment_status == PaymentStatus.PAID.value,
            Order.external_order_id.is_(None),
            Order.status.in_(PENDING_PUSH_STATUSES),
        ).order_by(Order.created_at.asc()).limit(batch_size).all()

        unpaid_in_erp = self.db.query(Order.id).filter(
            Order.payment_status == PaymentStatus.PAID.value,
            Order.external_order_id.isnot(None),
            Order.external_paid_at.is_(None),
            Order.status.notin_([s.value for s in TERMINAL_STATUSES]),
        ).order_by(Order.created_at.asc()).limit(batch_size).all()
        self.db.commit()

        for (order_id,) in unsynced + unpaid_in_erp:
            result = self.sync_order(order_id)
            summary["processed"] += 1
            if result.success and not result.skipped:
                summary["synced"] += 1
            elif result.skipped:
                summary["skipped"] += 1
            else:
                summary["failed"] += 1

        if summary["processed"]:
            logger.info(f"Pending order sweep finished: {summary}")
        return summary

    # Internals

    def _load(self, order_id: UUID) -> Optional[Order]:
        # Always read current state, never a stale identity-map copy
        return self.db.query(Order).filter(Order.id == order_id).populate_existing().first()

    def _is_admin(self, actor_role: Optional[str]) -> bool:
        try:
            return actor_role is not None and UserRole(actor_role) == UserRole.ADMIN
        except ValueError:
            return False

    def _connect(self) -> Tuple[ErpClientPort, WarehouseRouter]:
        configuration = require_active_configuration(self.db)
        return self.client_factory(configuration), self.router_factory(configuration)

    def _create(self, order: Order, order_status_id: int) -> OrderSyncResult:
        try:
            client, router = self._connect()
            params = OrderPayloadBuilder(router).build(order).to_add_order_params(order_status_id)
        except UnroutableProductError as e:
            logger.warning(
                f"Order {order.number} skipped: {e}",
                extra={"order_id": str(order.id)}
            )
            return self._failure(order, "create", e, skipped=True)
        except ErpError as e:
            return self._failure(order, "create", e)

        # Remember that an addOrder may be in flight before calling the ERP
        previous_attempt = order.external_push_started_at is not None
        if not previous_attempt:
            order.external_push_started_at = utcnow()
        self.db.commit()

        try:
            external_id = None
            if previous_attempt:
                external_id = self._find_existing(client, order.number, order.created_at)
            if external_id is None:
                external_id = client.add_order(params)
        except ErpError as e:
            return self._failure(order, "create", e)

        order.external_order_id = external_id
        order.external_synced_at = utcnow()
        order.external_sync_error = None
        self.db.commit()

        logger.info(
            f"Order {order.number} created in ERP as {external_id} (status {order_status_id})",
            extra={"order_id": str(order.id), "external_order_id": external_id}
        )

        if order_status_id == ErpOrderStatus.NEW_ORDER and order.is_paid:
            try:
                self._push_payment(client, order, set_status=False)
            except ErpError as e:
                # The order exists in the ERP; the pending sweep completes the payment
                return self._failure(order, "mark_paid", e)
            order.external_paid_at = utcnow()
            self.db.commit()

        return self._result("create", OrderSyncResult(
            success=True, order_id=str(order.id), external_order_id=external_id, action="create",
        ))

    def _find_existing(self, client: ErpClientPort, order_number: str, created_at) -> Optional[str]:
        """ERP order id of an earlier addOrder whose response was lost."""
        date_from = as_utc(created_at) - RECOVERY_LOOKBACK if created_at else None
        marker = order_marker(order_number)
        for erp_order in client.get_orders(date_from=date_from):
            comment = erp_order.get("admin_comments") or ""
            if comment.split(" | ", 1)[0] == marker:
                logger.warning(
                    f"Recovered ERP order {erp_order.get('order_id')} for order {order_number}",
                    extra={"external_order_id": str(erp_order.get("order_id"))}
                )
                return str(erp_order["order_id"])
        return None

    def _push_payment(self, client: ErpClientPort, order: Order, set_status: bool) -> None:
        external_id = order.external_order_id
        total = order.total
        paid_at = as_utc(order.paid_at) if order.paid_at else utcnow()
        comment = f"{order_marker(order.number)} paid ({order.payment_method or 'unknown'})"
        if set_status:
            client.set_order_status(external_id, int(ErpOrderStatus.NEW_ORDER))
        client.set_order_payment(external_id, float(total), paid_at, comment)

    def _push_cancellation(self, order: Order, reason: str, action: str) -> OrderSyncResult:
        if not order.external_order_id or order.external_cancelled_at is not None:
            return self._result(action, OrderSyncResult(
                success=True, order_id=str(order.id),
                external_order_id=order.external_order_id, skipped=True, action=action,
            ))

        external_id = order.external_order_id
        comment = f"{order_marker(order.number)} | {reason}"
        self.db.commit()
        try:
            client, _ = self._connect()
            client.set_order_status(external_id, int(ErpOrderStatus.CANCELLED))
            client.set_order_fields(external_id, admin_comments=comment)
        except ErpError as e:
            return self._failure(order, action, e)

        order.external_cancelled_at = utcnow()
        order.external_sync_error = None
        self.db.commit()

        logger.info(
            f"ERP order {external_id} cancelled ({action}) for order {order.number}",
            extra={"order_id": str(order.id), "external_order_id": external_id}
        )
        return self._result(action, OrderSyncResult(
            success=True, order_id=str(order.id), external_order_id=external_id, action=action,
        ))

    def _failure(self, order: Order, action: str, error: Exception, skipped: bool = False) -> OrderSyncResult:
        message = str(error)
        order.external_sync_error = message[:2000]
        self.db.commit()

        if not skipped:
            logger.error(
                f"ERP {action} failed for order {order.number}: {message}",
                extra={"order_id": str(order.id), "external_order_id": order.external_order_id}
            )
        return self._result(action, OrderSyncResult(
            success=False, order_id=str(order.id), external_order_id=order.external_order_id,
            error=message, skipped=skipped, action=action,
            retryable=isinstance(error, TransportError),
        ))

    def _result(self, action: str, result: OrderSyncResult) -> OrderSyncResult:
        if result.skipped:
            outcome = "skipped"
        else:
            outcome = "success" if result.success else "failed"
        erp_order_pushes_total.labels(action=action, outcome=outcome).inc()
        return result
