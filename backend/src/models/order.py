"""Order, OrderLine and OrderStatusHistory models."""

import uuid

from sqlalchemy import (
    Column, Text, String, Integer, Boolean, Numeric, DateTime, ForeignKey,
    Index, CheckConstraint, Uuid, event, inspect,
)
from sqlalchemy.orm import relationship, validates

from orders.status import OrderStatus, PaymentStatus
from .base import Base, PortableJSONB, utcnow


class Order(Base):
    """Local order aggregate.

    Current state lives in status/payment_status; every transition is also
    appended to order_status_history. The ERP-side identifier
    (external_order_id) is assigned at most once and never overwritten, which
    makes it the idempotency key for outbound pushes.

    Attributes:
        number: Human-facing order number (e.g. "WB-2024-000123")
        status: OrderStatus value
        payment_status: PaymentStatus value
        shipping_total: Total shipping cost across all packages
        package_shipping: Per-package shipping breakdown for multi-warehouse orders,
            list of {package_id, wholesaler, method, price,
            parcel_locker_code, parcel_locker_address}
        external_order_id: ERP order id, set once
        external_synced_at: When the order was created in the ERP
        external_paid_at: When the ERP order was promoted to paid
        external_cancelled_at: When the ERP order was moved to the cancelled bucket
        external_sync_error: Last outbound sync error, cleared on success
    """

    __tablename__ = "shop_order"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    number = Column(Text, nullable=False, unique=True)
    customer_email = Column(Text, nullable=False)
    customer_phone = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=OrderStatus.OPEN.value)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    currency = Column(String(3), nullable=False, default="PLN")
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_total = Column(Numeric(12, 2), nullable=False, default=0)
    discount_total = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_method = Column(Text, nullable=True, comment="Shipping method code, e.g. inpost_paczkomat")
    payment_method = Column(Text, nullable=True, comment="Payment method code, e.g. payu, cod")
    shipping_address = Column(PortableJSONB, nullable=True)
    billing_address = Column(PortableJSONB, nullable=True)
    want_invoice = Column(Boolean, nullable=False, default=False)
    package_shipping = Column(PortableJSONB, nullable=True)
    parcel_locker_code = Column(Text, nullable=True)
    parcel_locker_address = Column(Text, nullable=True)
    customer_notes = Column(Text, nullable=True)
    tracking_number = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    external_order_id = Column(Text, nullable=True, unique=True, comment="ERP order id, assigned once")
    external_push_started_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set before addOrder is sent; lets a retry detect an unrecorded ERP order"
    )
    external_synced_at = Column(DateTime(timezone=True), nullable=True)
    external_paid_at = Column(DateTime(timezone=True), nullable=True)
    external_cancelled_at = Column(DateTime(timezone=True), nullable=True)
    external_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    lines = relationship(
        "OrderLine",
        back_populates="order",
        order_by="OrderLine.position",
        cascade="all, delete-orphan",
    )
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('OPEN', 'CONFIRMED', 'PROCESSING', 'SHIPPED', 'DELIVERED', 'CANCELLED', 'REFUNDED')",
            name="ck_shop_order_status"
        ),
        CheckConstraint(
            "payment_status IN ('PENDING', 'PAID', 'FAILED', 'REFUNDED', 'CANCELLED')",
            name="ck_shop_order_payment_status"
        ),
        Index("idx_shop_order_payment_status", "payment_status", "status"),
        Index("idx_shop_order_created", "created_at"),
    )

    @validates("status")
    def validate_status(self, key, value):
        return OrderStatus(value).value

    @validates("payment_status")
    def validate_payment_status(self, key, value):
        return PaymentStatus(value).value

    @validates("external_order_id")
    def validate_external_order_id(self, key, value):
        """External order id may be assigned once and never replaced."""
        if value is not None:
            value = str(value)
        current = self.external_order_id
        if current is not None and value != current:
            raise ValueError(
                f"external_order_id already assigned ({current}), refusing to overwrite with {value}"
            )
        return value

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    def __repr__(self):
        return (
            f"<Order(id={self.id}, number={self.number}, status={self.status}, "
            f"payment_status={self.payment_status}, external_order_id={self.external_order_id})>"
        )


class OrderLine(Base):
    """Order line item. Immutable once persisted."""

    __tablename__ = "order_line"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("shop_order.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    variant_id = Column(Uuid, ForeignKey("product_variant.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(Text, nullable=False)
    sku = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    order = relationship("Order", back_populates="lines")
    variant = relationship("ProductVariant")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_line_quantity"),
        Index("idx_order_line_order", "order_id"),
    )

    @validates("variant_id", "product_name", "sku", "quantity", "unit_price", "line_total")
    def validate_immutable(self, key, value):
        state = inspect(self)
        if state.persistent or state.detached:
            raise ValueError(f"OrderLine.{key} cannot be changed once the line is stored")
        if key == "quantity" and value is not None and value <= 0:
            raise ValueError("quantity must be positive")
        return value

    def __repr__(self):
        return f"<OrderLine(id={self.id}, order_id={self.order_id}, sku={self.sku}, quantity={self.quantity})>"


class OrderStatusHistory(Base):
    """Append-only status history entry."""

    __tablename__ = "order_status_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("shop_order.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False)
    previous_status = Column(String(20), nullable=True)
    payment_status = Column(String(20), nullable=True)
    source = Column(String(20), nullable=False, default="local", comment="local|payment|erp|admin")
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    order = relationship("Order", back_populates="status_history")

    __table_args__ = (
        Index("idx_order_status_history_order", "order_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderStatusHistory(order_id={self.order_id}, "
            f"{self.previous_status} -> {self.status}, source={self.source})>"
        )


@event.listens_for(OrderStatusHistory, "before_update")
def reject_history_update(mapper, connection, target):
    """Status history is append-only."""
    raise ValueError(f"order_status_history rows are append-only (id={target.id})")
