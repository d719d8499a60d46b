"""Category model synced from the ERP category tree."""

import uuid

from sqlalchemy import Column, Text, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class Category(Base):
    __tablename__ = "category"
    __table_args__ = (
        Index("uq_category_external_id", "external_category_id", unique=True),
        Index("uq_category_slug", "slug", unique=True),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    external_category_id = Column(Text, nullable=True, comment="ERP category id")
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False)
    parent_id = Column(Uuid, ForeignKey("category.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    parent = relationship("Category", remote_side=[id])
    products = relationship("Product", back_populates="category")

    def __repr__(self):
        return f"<Category(id={self.id}, name={self.name}, external_category_id={self.external_category_id})>"
