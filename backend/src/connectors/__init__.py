"""
Connectors module - ERP integration

Everything that talks to the ERP goes through the ErpClientPort interface.
The module provides:
- Secure credential storage via AES-256-GCM encryption
- A rate-limited, retrying BaseLinker client
- Warehouse routing of products to ERP inventories
- Outbound order push with payment gating and idempotency
"""

from .ports import (
    ErpClientPort,
    ErpError,
    ConfigurationError,
    CredentialIntegrityError,
    ErpApiError,
    TransportError,
    UnroutableProductError,
    OrderSyncResult,
    ConnectionTestResult,
)
from .encryption import CredentialVault, EncryptedSecret, mask_for_display
from .rate_limiter import TokenBucket, get_rate_limiter
from .baselinker_client import BaselinkerClient
from .warehouse_router import WarehouseRouter
from .push_service import OrderPushService

__all__ = [
    "ErpClientPort",
    "ErpError",
    "ConfigurationError",
    "CredentialIntegrityError",
    "ErpApiError",
    "TransportError",
    "UnroutableProductError",
    "OrderSyncResult",
    "ConnectionTestResult",
    "CredentialVault",
    "EncryptedSecret",
    "mask_for_display",
    "TokenBucket",
    "get_rate_limiter",
    "BaselinkerClient",
    "WarehouseRouter",
    "OrderPushService",
]
