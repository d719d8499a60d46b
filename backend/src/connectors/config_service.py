"""
ERP configuration management

- save/read/disable the ERP configuration (token encrypted at rest)
- select the active configuration for a run
- build per-operation clients with a just-in-time decrypted token
- build the warehouse router from settings and the configured default inventory
"""

import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from config import get_settings
from models import ERPConfiguration
from models.base import utcnow
from .baselinker_client import BaselinkerClient
from .encryption import CredentialVault, mask_for_display
from .ports import ConfigurationError, ConnectionTestResult, ErpError
from .warehouse_router import WarehouseRouter


logger = logging.getLogger(__name__)


def get_active_configuration(db: Session) -> Optional[ERPConfiguration]:
    """First sync-enabled configuration, oldest first."""
    return db.query(ERPConfiguration).filter(
        ERPConfiguration.sync_enabled.is_(True)
    ).order_by(ERPConfiguration.created_at.asc(), ERPConfiguration.id.asc()).first()


def require_active_configuration(db: Session) -> ERPConfiguration:
    configuration = get_active_configuration(db)
    if configuration is None:
        raise ConfigurationError("ERP integration is not configured or sync is disabled")
    return configuration


def decrypt_token(configuration: ERPConfiguration, vault: Optional[CredentialVault] = None) -> str:
    vault = vault or CredentialVault()
    return vault.decrypt(
        configuration.token_ciphertext,
        configuration.token_iv,
        configuration.token_auth_tag,
    )


def build_client(
    configuration: ERPConfiguration,
    vault: Optional[CredentialVault] = None,
    **client_kwargs: Any,
) -> BaselinkerClient:
    """Client for one operation. The plaintext token lives only on the returned instance."""
    return BaselinkerClient(decrypt_token(configuration, vault), **client_kwargs)


def build_router(configuration: Optional[ERPConfiguration] = None) -> WarehouseRouter:
    settings = get_settings()
    default_inventory = configuration.inventory_id if configuration else None
    return WarehouseRouter(
        settings.ERP_WAREHOUSE_INVENTORIES,
        default_inventory_id=default_inventory or settings.ERP_DEFAULT_INVENTORY_ID,
    )


def save_config(
    db: Session,
    api_token: str,
    inventory_id: str,
    sync_enabled: bool = True,
    sync_interval_minutes: int = 60,
    vault: Optional[CredentialVault] = None,
) -> ERPConfiguration:
    """
    Create or update the configuration for an inventory.

    The token is encrypted with a fresh IV on every save.

    Raises:
        ConfigurationError: Empty token or invalid master key
    """
    if not api_token or not api_token.strip():
        raise ConfigurationError("API token is required")

    secret = (vault or CredentialVault()).encrypt(api_token.strip())

    configuration = db.query(ERPConfiguration).filter(
        ERPConfiguration.inventory_id == str(inventory_id)
    ).first()
    if configuration is None:
        configuration = ERPConfiguration(inventory_id=str(inventory_id))
        db.add(configuration)

    configuration.token_ciphertext = secret.ciphertext
    configuration.token_iv = secret.iv
    configuration.token_auth_tag = secret.auth_tag
    configuration.sync_enabled = sync_enabled
    configuration.sync_interval_minutes = sync_interval_minutes
    db.commit()
    db.refresh(configuration)

    logger.info(f"ERP configuration saved for inventory {configuration.inventory_id}",
                extra={"inventory_id": configuration.inventory_id})
    return configuration


def describe_config(configuration: ERPConfiguration, vault: Optional[CredentialVault] = None) -> Dict[str, Any]:
    """Configuration as shown in the admin UI (token masked)."""
    try:
        masked = mask_for_display(decrypt_token(configuration, vault))
    except ConfigurationError as e:
        logger.error(f"Cannot decrypt stored ERP token: {e}")
        masked = "****"

    return {
        "id": str(configuration.id),
        "inventory_id": configuration.inventory_id,
        "sync_enabled": configuration.sync_enabled,
        "sync_interval_minutes": configuration.sync_interval_minutes,
        "last_sync_at": configuration.last_sync_at,
        "api_token_masked": masked,
    }


def disable_config(db: Session, configuration: ERPConfiguration) -> ERPConfiguration:
    configuration.sync_enabled = False
    db.commit()
    logger.info(f"ERP configuration {configuration.id} disabled")
    return configuration


def check_connection(
    db: Session,
    api_token: Optional[str] = None,
    client_factory=BaselinkerClient,
) -> ConnectionTestResult:
    """
    Verify a token by listing inventories.

    Uses api_token when given (testing before save), otherwise the active
    configuration's stored token.
    """
    start_time = time.time()
    try:
        if api_token is None:
            api_token = decrypt_token(require_active_configuration(db))
        inventories = client_factory(api_token).get_inventories()
    except ErpError as e:
        return ConnectionTestResult(
            success=False,
            error_message=str(e),
            latency_ms=int((time.time() - start_time) * 1000),
        )

    return ConnectionTestResult(
        success=True,
        latency_ms=int((time.time() - start_time) * 1000),
        inventories=[
            {"inventory_id": str(inv.get("inventory_id")), "name": inv.get("name")}
            for inv in inventories
        ],
        test_timestamp=utcnow(),
    )
