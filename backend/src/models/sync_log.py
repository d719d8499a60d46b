"""SyncLog model - one row per inbound sync run."""

import uuid
from enum import Enum

from sqlalchemy import Column, Text, String, Integer, DateTime, Index, CheckConstraint, Uuid, text
from sqlalchemy.orm import validates

from .base import Base, PortableJSONB, as_utc, utcnow


class SyncType(str, Enum):
    """Kinds of sync runs."""
    FULL = "FULL"
    PRODUCTS = "PRODUCTS"
    CATEGORIES = "CATEGORIES"
    STOCK = "STOCK"
    IMAGES = "IMAGES"
    ORDER_STATUS = "ORDER_STATUS"
    ORDERS = "ORDERS"


class SyncStatus(str, Enum):
    """Sync run status.

    RUNNING doubles as the per-type mutual exclusion flag.
    """
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class SyncMode(str, Enum):
    """Catalog sync modes (None means create and update)."""
    NEW_ONLY = "new_only"
    UPDATE_ONLY = "update_only"


class SyncLog(Base):
    """Sync run record.

    Created RUNNING at start and finalized at the end of the run. A crash
    mid-run leaves the row RUNNING, which is how stuck runs are detected and
    cancelled by an operator.
    """

    __tablename__ = "sync_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sync_type = Column(String(20), nullable=False, comment="FULL|PRODUCTS|CATEGORIES|STOCK|IMAGES|ORDER_STATUS|ORDERS")
    mode = Column(String(20), nullable=True, comment="new_only|update_only (catalog syncs)")
    status = Column(String(20), nullable=False, default=SyncStatus.RUNNING.value)
    items_processed = Column(Integer, nullable=False, default=0)
    items_changed = Column(Integer, nullable=False, default=0)
    errors = Column(PortableJSONB, nullable=True, comment="List of error messages collected during the run")
    triggered_by = Column(Text, nullable=False, default="schedule", comment="schedule|admin:<user>|system")
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('RUNNING', 'SUCCESS', 'FAILED', 'CANCELLED')",
            name="ck_sync_log_status"
        ),
        Index("idx_sync_log_type_started", "sync_type", "started_at"),
        Index(
            "uq_sync_log_running_type",
            "sync_type",
            unique=True,
            postgresql_where=text("status = 'RUNNING'"),
            sqlite_where=text("status = 'RUNNING'"),
        ),
    )

    @validates("sync_type")
    def validate_sync_type(self, key, value):
        if isinstance(value, SyncType):
            return value.value
        try:
            return SyncType(value).value
        except ValueError:
            raise ValueError(f"Invalid sync_type: {value}")

    @validates("status")
    def validate_status(self, key, value):
        if isinstance(value, SyncStatus):
            return value.value
        try:
            return SyncStatus(value).value
        except ValueError:
            raise ValueError(f"Invalid sync status: {value}")

    @property
    def duration_seconds(self):
        if self.completed_at is None or self.started_at is None:
            return None
        return (as_utc(self.completed_at) - as_utc(self.started_at)).total_seconds()

    def __repr__(self):
        return (
            f"<SyncLog(id={self.id}, type={self.sync_type}, status={self.status}, "
            f"processed={self.items_processed}, changed={self.items_changed})>"
        )
