"""
Order status sync - ERP order statuses -> local orders

ERP status ids are mapped through a fixed table (connectors.erp_statuses).
The ERP wins for non-terminal local orders; orders already CANCELLED or
REFUNDED locally are left alone. Unmapped ERP statuses are reported and
skipped, as are moves from SHIPPED/DELIVERED back to a pre-shipment status
and ERP UNPAID for an order already paid locally.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from config import get_settings
from connectors.baselinker_client import BaselinkerClient
from connectors.erp_statuses import map_erp_status
from models import Order, SyncLog
from models.base import utcnow
from orders.lifecycle import PRE_SHIPMENT_STATUSES, transition_order
from orders.status import OrderStatus, OrderTransitionError, SHIPPED_STATUSES, TERMINAL_STATUSES
from .runs import check_cancelled, record_error


logger = logging.getLogger(__name__)


class OrderStatusSync:
    """
    Applies ERP order statuses to local orders.

    Args:
        db: Session; committed per applied order
        client: ERP client for this run
        log: SyncLog of the run, if any
    """

    def __init__(self, db: Session, client: BaselinkerClient, log: Optional[SyncLog] = None):
        self.db = db
        self.client = client
        self.log = log
        self.stats = {"processed": 0, "changed": 0, "skipped": 0, "unmapped": 0}
        self.unmapped_statuses: Dict[int, int] = {}

    def run(self, window_hours: Optional[int] = None) -> Dict[str, int]:
        """Sync orders confirmed in the ERP within the last window_hours."""
        window_hours = window_hours or get_settings().ORDER_STATUS_SYNC_WINDOW_HOURS
        since = utcnow() - timedelta(hours=window_hours)

        erp_orders = self.client.get_orders(date_confirmed_from=since, include_unconfirmed=False)
        logger.info(f"Order status sync: {len(erp_orders)} ERP orders confirmed since {since.isoformat()}")

        by_external_id = {str(o.get("order_id")): o for o in erp_orders if o.get("order_id") is not None}
        if by_external_id:
            local_orders = self.db.query(Order).filter(
                Order.external_order_id.in_(list(by_external_id))
            ).all()
        else:
            local_orders = []

        for order in local_orders:
            self.stats["processed"] += 1
            self._apply(order, by_external_id[order.external_order_id])
            if self.log is not None:
                self.log.items_processed = self.stats["processed"]
                self.log.items_changed = self.stats["changed"]
                self.db.commit()
                check_cancelled(self.db, self.log)

        if self.unmapped_statuses:
            logger.warning(f"Unmapped ERP order statuses skipped: {self.unmapped_statuses}")
        return self.stats

    def sync_single_order(self, order_id: UUID) -> Dict[str, Any]:
        """
        Sync one order on demand.

        Returns:
            {"changed": bool, "status": local status, "erp_status_id": id or None}
        """
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            raise LookupError(f"Order {order_id} not found")
        if not order.external_order_id:
            return {"changed": False, "status": order.status, "erp_status_id": None}

        external_id = order.external_order_id
        self.db.commit()
        erp_orders = self.client.get_orders(order_id=external_id)
        if not erp_orders:
            logger.warning(
                f"ERP order {external_id} not found",
                extra={"order_id": str(order.id), "external_order_id": external_id}
            )
            return {"changed": False, "status": order.status, "erp_status_id": None}

        erp_order = erp_orders[0]
        changed = self._apply(order, erp_order)
        return {"changed": changed, "status": order.status, "erp_status_id": erp_order.get("order_status_id")}

    def _apply(self, order: Order, erp_order: Dict[str, Any]) -> bool:
        status_id = erp_order.get("order_status_id")
        new_status = map_erp_status(status_id)
        if new_status is None:
            self.stats["unmapped"] += 1
            self.unmapped_statuses[status_id] = self.unmapped_statuses.get(status_id, 0) + 1
            if self.log is not None:
                record_error(self.log, f"Order {order.number}: unmapped ERP status {status_id}")
            return False

        if OrderStatus(order.status) in TERMINAL_STATUSES or order.status == new_status.value:
            self.stats["skipped"] += 1
            return False

        held_back = self._held_back_reason(order, new_status)
        if held_back:
            self.stats["skipped"] += 1
            message = f"Order {order.number}: ERP status {status_id} not applied, {held_back}"
            logger.warning(message, extra={"order_id": str(order.id)})
            if self.log is not None:
                record_error(self.log, message)
            return False

        try:
            transition_order(
                self.db, order, new_status,
                source="erp", note=f"ERP status {status_id}", enforce=False,
            )
        except OrderTransitionError as e:
            self.db.rollback()
            self.stats["skipped"] += 1
            logger.warning(f"Order {order.number}: {e}", extra={"order_id": str(order.id)})
            return False

        tracking = erp_order.get("delivery_package_nr")
        if tracking and not order.tracking_number:
            order.tracking_number = tracking
        self.db.commit()
        self.stats["changed"] += 1
        return True

    @staticmethod
    def _held_back_reason(order: Order, new_status: OrderStatus) -> Optional[str]:
        old = OrderStatus(order.status)
        # Shipment already consumed the stock; a move back would consume it again
        if old in SHIPPED_STATUSES and new_status in PRE_SHIPMENT_STATUSES:
            return f"order already {old.value}"
        # The ERP order stays UNPAID until the queued mark_paid job promotes it
        if new_status == OrderStatus.OPEN and order.is_paid:
            return "order is paid locally"
        return None
