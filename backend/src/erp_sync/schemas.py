"""Pydantic schemas for the ERP admin API."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from models import SyncMode, SyncType


class SyncTypeParam(str, Enum):
    """Sync types an admin can trigger."""
    FULL = "full"
    PRODUCTS = "products"
    CATEGORIES = "categories"
    STOCK = "stock"
    IMAGES = "images"
    ORDER_STATUS = "order_status"

    def to_sync_type(self) -> SyncType:
        return SyncType(self.value.upper())


class ConfigSaveRequest(BaseModel):
    """Create or update the ERP configuration."""

    api_token: str = Field(..., min_length=1, description="ERP API token (stored encrypted)")
    inventory_id: str = Field(..., description="Default ERP inventory id")
    sync_enabled: bool = True
    sync_interval_minutes: int = Field(default=60, ge=5, le=10080)

    @field_validator("inventory_id")
    @classmethod
    def inventory_id_numeric(cls, v: str) -> str:
        v = str(v).strip()
        if not v.isdigit():
            raise ValueError("inventory_id must be numeric")
        return v


class ConfigResponse(BaseModel):
    id: str
    inventory_id: str
    sync_enabled: bool
    sync_interval_minutes: int
    last_sync_at: Optional[datetime] = None
    api_token_masked: str


class ConnectionTestRequest(BaseModel):
    """Optional token to test before saving; the stored token is used otherwise."""
    api_token: Optional[str] = None


class ConnectionTestResponse(BaseModel):
    success: bool
    error_message: Optional[str] = None
    latency_ms: int
    inventories: List[Dict[str, Any]] = []
    test_timestamp: datetime


class SyncTriggerRequest(BaseModel):
    type: SyncTypeParam
    mode: Optional[SyncMode] = None


class SyncTriggerResponse(BaseModel):
    sync_log_id: str
    sync_type: str
    status: str


class SyncLogResponse(BaseModel):
    id: str
    sync_type: str
    mode: Optional[str] = None
    status: str
    items_processed: int
    items_changed: int
    errors: List[str] = []
    triggered_by: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None


class SyncStatusResponse(BaseModel):
    configured: bool
    sync_enabled: bool
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    current_sync: Optional[SyncLogResponse] = None
    recent_logs: List[SyncLogResponse] = []


class OrderPushRequest(BaseModel):
    force: bool = Field(default=False, description="Push even if unpaid (ADMIN only)")


class EnqueuedResponse(BaseModel):
    status: str = "enqueued"
    task_id: Optional[str] = None
    order_id: Optional[str] = None


class OrderStatusSyncResponse(BaseModel):
    changed: bool
    status: str
    erp_status_id: Optional[int] = None


class ErpOrderStatusEntry(BaseModel):
    id: int
    name: str
    color: Optional[str] = None
    local_status: Optional[str] = None
