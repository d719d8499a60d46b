"""Atomic inventory counter updates.

Counters are changed with `UPDATE ... SET col = col + :delta` so concurrent
checkouts never overwrite each other's reservations.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from models import InventoryRecord
from models.base import utcnow


logger = logging.getLogger(__name__)


def adjust_inventory(
    db: Session,
    variant_id: Optional[UUID],
    quantity_delta: int = 0,
    reserved_delta: int = 0,
) -> bool:
    """Atomically add deltas to a variant's quantity and reserved counters.

    Args:
        db: Database session (caller commits)
        variant_id: Product variant id
        quantity_delta: Change of owned stock
        reserved_delta: Change of reserved stock

    Returns:
        True if an inventory row was updated
    """
    if variant_id is None or (not quantity_delta and not reserved_delta):
        return False

    result = db.execute(
        update(InventoryRecord)
        .where(InventoryRecord.variant_id == variant_id)
        .values(
            quantity=InventoryRecord.quantity + quantity_delta,
            reserved=InventoryRecord.reserved + reserved_delta,
            updated_at=utcnow(),
        )
    )

    if result.rowcount == 0:
        logger.warning(
            f"No inventory row for variant {variant_id}, "
            f"skipped quantity {quantity_delta:+d} / reserved {reserved_delta:+d}"
        )
        return False
    return True
