"""ERP Configuration model - stores the encrypted ERP API token and sync settings."""

import uuid

from sqlalchemy import (
    Column, Text, String, Boolean, Integer, DateTime, Index, CheckConstraint, Uuid,
)
from sqlalchemy.orm import validates

from .base import Base, utcnow


class ERPConfiguration(Base):
    """ERP connection configuration.

    The API token is stored encrypted (AES-256-GCM) as three hex columns:
    ciphertext, IV and authentication tag. Rows are upserted by inventory_id
    and disabled via sync_enabled rather than deleted.

    Attributes:
        id: Primary key UUID
        inventory_id: Default ERP inventory used for routing and stock sync
        token_ciphertext: Hex-encoded encrypted API token
        token_iv: Hex-encoded 16-byte IV
        token_auth_tag: Hex-encoded 16-byte GCM authentication tag
        sync_enabled: Whether scheduled and on-demand syncs may use this row
        sync_interval_minutes: Interval for the scheduled catalog sync
        last_sync_at: Completion time of the last successful catalog sync
    """

    __tablename__ = "erp_configuration"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    inventory_id = Column(
        Text,
        nullable=False,
        comment="Default ERP inventory id (catalog id)"
    )
    token_ciphertext = Column(Text, nullable=False, comment="Encrypted API token (hex)")
    token_iv = Column(String(32), nullable=False, comment="AES-GCM IV (hex, 16 bytes)")
    token_auth_tag = Column(String(32), nullable=False, comment="AES-GCM auth tag (hex, 16 bytes)")
    sync_enabled = Column(Boolean, nullable=False, default=True)
    sync_interval_minutes = Column(Integer, nullable=False, default=60)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("uq_erp_configuration_inventory", "inventory_id", unique=True),
        Index("idx_erp_configuration_enabled", "sync_enabled", "created_at"),
        CheckConstraint("sync_interval_minutes > 0", name="ck_erp_configuration_interval"),
    )

    @validates("inventory_id")
    def validate_inventory_id(self, key, value):
        """Inventory id must be a non-empty numeric string."""
        value = str(value).strip() if value is not None else ""
        if not value.isdigit():
            raise ValueError(f"inventory_id must be numeric, got '{value}'")
        return value

    def __repr__(self):
        return (
            f"<ERPConfiguration(id={self.id}, inventory_id={self.inventory_id}, "
            f"sync_enabled={self.sync_enabled})>"
        )
