"""SQLAlchemy models for the shop backend and ERP sync"""

from .base import Base, PortableJSONB
from .category import Category
from .product import Product, ProductVariant, ProductImage
from .inventory import InventoryRecord
from .order import Order, OrderLine, OrderStatusHistory
from .erp_configuration import ERPConfiguration
from .sync_log import SyncLog, SyncType, SyncStatus, SyncMode

__all__ = [
    "Base",
    "PortableJSONB",
    "Category",
    "Product",
    "ProductVariant",
    "ProductImage",
    "InventoryRecord",
    "Order",
    "OrderLine",
    "OrderStatusHistory",
    "ERPConfiguration",
    "SyncLog",
    "SyncType",
    "SyncStatus",
    "SyncMode",
]
