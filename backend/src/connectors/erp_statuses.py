"""
ERP order status ids and their mapping onto local order statuses.

The mapping is an explicit table. ERP statuses missing from it are reported
and skipped by the status sync, never guessed.
"""

from enum import IntEnum
from typing import Dict, Optional

from orders.status import OrderStatus


class ErpOrderStatus(IntEnum):
    """ERP statuses the shop writes."""
    UNPAID = 65823  # awaiting payment, no stock effect
    NEW_ORDER = 65342  # paid, decrements ERP stock
    CANCELLED = 65816  # refund/cancel bucket


ERP_TO_LOCAL_STATUS: Dict[int, OrderStatus] = {
    65823: OrderStatus.OPEN,
    65342: OrderStatus.CONFIRMED,
    # Fulfilment pipeline (picking, packing, awaiting courier, ...)
    65804: OrderStatus.PROCESSING,
    110412: OrderStatus.PROCESSING,
    65817: OrderStatus.PROCESSING,
    65818: OrderStatus.PROCESSING,
    65819: OrderStatus.PROCESSING,
    65820: OrderStatus.PROCESSING,
    67214: OrderStatus.PROCESSING,
    109553: OrderStatus.PROCESSING,
    65344: OrderStatus.SHIPPED,
    117968: OrderStatus.DELIVERED,
    65816: OrderStatus.REFUNDED,
    65815: OrderStatus.CANCELLED,
}


def map_erp_status(status_id) -> Optional[OrderStatus]:
    """Local status for an ERP status id, or None when unmapped."""
    try:
        return ERP_TO_LOCAL_STATUS.get(int(status_id))
    except (TypeError, ValueError):
        return None
