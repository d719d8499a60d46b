"""Catalog models fed by the ERP catalog sync."""

import uuid

from sqlalchemy import Column, Text, Integer, Boolean, Numeric, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship

from .base import Base, PortableJSONB, utcnow


class Product(Base):
    """Product imported from an ERP inventory.

    external_product_id is the ERP product id, optionally prefixed with the
    warehouse key for products living in a wholesaler inventory
    (e.g. "btp-48213"). tags carry wholesaler names used for routing.
    """
    __tablename__ = "product"
    __table_args__ = (
        Index("uq_product_external_id", "external_product_id", unique=True),
        Index("ix_product_category", "category_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    external_product_id = Column(Text, nullable=True, comment="ERP product id, optionally warehouse-prefixed")
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    sku = Column(Text, nullable=True)
    ean = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    weight = Column(Numeric(10, 3), nullable=True)
    tax_rate = Column(Integer, nullable=False, default=23)
    tags = Column(PortableJSONB, nullable=True, comment="List of tag names (wholesaler names among them)")
    category_id = Column(Uuid, ForeignKey("category.id", ondelete="SET NULL"), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    category = relationship("Category", back_populates="products")
    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")
    images = relationship(
        "ProductImage",
        back_populates="product",
        order_by="ProductImage.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Product(id={self.id}, external_product_id={self.external_product_id}, sku={self.sku})>"


class ProductVariant(Base):
    """Sellable variant. Products without ERP variants get one default variant."""
    __tablename__ = "product_variant"
    __table_args__ = (
        Index("ix_product_variant_product", "product_id"),
        Index("uq_product_variant_external_id", "external_variant_id", unique=True),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("product.id", ondelete="CASCADE"), nullable=False)
    external_variant_id = Column(Text, nullable=True, comment="ERP variant id (None for default variants)")
    name = Column(Text, nullable=True)
    sku = Column(Text, nullable=True)
    barcode = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    weight = Column(Numeric(10, 3), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    product = relationship("Product", back_populates="variants")
    inventory = relationship("InventoryRecord", back_populates="variant", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<ProductVariant(id={self.id}, product_id={self.product_id}, sku={self.sku})>"


class ProductImage(Base):
    __tablename__ = "product_image"
    __table_args__ = (
        Index("ix_product_image_product", "product_id", "position"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("product.id", ondelete="CASCADE"), nullable=False)
    url = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    product = relationship("Product", back_populates="images")

    def __repr__(self):
        return f"<ProductImage(product_id={self.product_id}, position={self.position})>"
