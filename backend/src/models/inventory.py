"""InventoryRecord model - per-variant stock counters."""

import uuid

from sqlalchemy import Column, Integer, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class InventoryRecord(Base):
    """Stock counters for one product variant.

    quantity is owned stock, reserved is held by unconfirmed or unshipped
    orders. reserved <= quantity is a target rather than a constraint:
    concurrent checkouts may briefly overshoot and the stock sync reconciles.
    Counters must only be changed through orders.inventory.adjust_inventory
    (atomic SQL increments).
    """

    __tablename__ = "inventory"
    __table_args__ = (
        Index("uq_inventory_variant", "variant_id", unique=True),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    variant_id = Column(Uuid, ForeignKey("product_variant.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    reserved = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    variant = relationship("ProductVariant", back_populates="inventory")

    @property
    def available(self) -> int:
        return (self.quantity or 0) - (self.reserved or 0)

    def __repr__(self):
        return f"<InventoryRecord(variant_id={self.variant_id}, quantity={self.quantity}, reserved={self.reserved})>"
