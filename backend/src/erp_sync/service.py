"""
ERP sync service - triggers, runs and reports inbound syncs

Request handlers only create the RUNNING SyncLog and enqueue the job; the
worker executes run_sync() with a client built just for that run.

Sync types:
    FULL          categories -> products -> stock
    CATEGORIES    category tree
    PRODUCTS      products, variants, images (mode new_only|update_only)
    IMAGES        images of existing products
    STOCK         stock of all inventories
    ORDER_STATUS  ERP order statuses -> local orders
    ORDERS        sweep of paid orders missing in the ERP
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from connectors.config_service import build_client, build_router, get_active_configuration, require_active_configuration
from connectors.push_service import OrderPushService
from models import ERPConfiguration, SyncLog, SyncStatus, SyncType
from models.base import as_utc, utcnow
from .catalog_sync import CatalogSync
from .order_status_sync import OrderStatusSync
from .runs import (
    SyncAlreadyRunningError,
    SyncCancelled,
    fail_run,
    finish_run,
    get_running,
    recent_runs,
    start_run,
)
from .stock_sync import StockSync


logger = logging.getLogger(__name__)

CATALOG_SYNC_TYPES = (SyncType.FULL.value, SyncType.CATEGORIES.value, SyncType.PRODUCTS.value, SyncType.IMAGES.value)


def _enqueue_run(log_id: UUID) -> None:
    from .tasks import run_sync_task
    run_sync_task.delay(str(log_id))


def trigger_sync(
    db: Session,
    sync_type: SyncType,
    mode: Optional[str] = None,
    triggered_by: str = "admin",
    enqueue: Optional[Callable[[UUID], None]] = None,
) -> SyncLog:
    """
    Create a RUNNING log and enqueue the run.

    Raises:
        ConfigurationError: No active ERP configuration
        SyncAlreadyRunningError: A run of this type is in progress
    """
    require_active_configuration(db)
    log = start_run(db, sync_type, mode=mode, triggered_by=triggered_by)
    (enqueue or _enqueue_run)(log.id)
    return log


def run_sync(
    db: Session,
    log_id: UUID,
    client_factory: Callable[[ERPConfiguration], Any] = build_client,
    router_factory: Callable[[Optional[ERPConfiguration]], Any] = build_router,
) -> SyncLog:
    """
    Execute a RUNNING sync log.

    Errors mark the log FAILED and are re-raised for the task layer.
    An operator cancel ends the run quietly.
    """
    log = db.query(SyncLog).filter(SyncLog.id == log_id).first()
    if log is None:
        raise LookupError(f"Sync log {log_id} not found")
    if log.status != SyncStatus.RUNNING.value:
        logger.info(f"Sync log {log_id} is {log.status}, nothing to run", extra={"sync_log_id": str(log_id)})
        return log

    try:
        configuration = require_active_configuration(db)
        configuration_id = configuration.id
        client = client_factory(configuration)
        router = router_factory(configuration)
        db.commit()

        stats = _dispatch(db, log, client, router)

        if log.sync_type in CATALOG_SYNC_TYPES:
            db.query(ERPConfiguration).filter(ERPConfiguration.id == configuration_id).update(
                {ERPConfiguration.last_sync_at: utcnow()}
            )
        return finish_run(db, log, processed=stats.get("processed"), changed=stats.get("changed"))
    except SyncCancelled:
        db.rollback()
        logger.info(f"{log.sync_type} sync {log.id} stopped after cancel", extra={"sync_log_id": str(log.id)})
        return log
    except Exception as e:
        fail_run(db, log, e)
        raise


def _dispatch(db: Session, log: SyncLog, client, router) -> Dict[str, int]:
    sync_type = SyncType(log.sync_type)

    if sync_type == SyncType.STOCK:
        return StockSync(db, client, router, log).run()

    if sync_type == SyncType.ORDER_STATUS:
        return OrderStatusSync(db, client, log).run()

    if sync_type == SyncType.ORDERS:
        service = OrderPushService(db, client_factory=lambda _: client, router_factory=lambda _: router)
        summary = service.sync_pending_orders()
        return {"processed": summary["processed"], "changed": summary["synced"]}

    catalog = CatalogSync(db, client, router, log)
    if sync_type == SyncType.CATEGORIES:
        return catalog.sync_categories()
    if sync_type == SyncType.PRODUCTS:
        return catalog.sync_products(log.mode)
    if sync_type == SyncType.IMAGES:
        return catalog.sync_images(log.mode)

    # FULL: categories first so products can link to them, stock last
    catalog.sync_categories()
    catalog.sync_products(log.mode)
    stock = StockSync(db, client, router, log)
    stock.stats = catalog.stats
    return stock.run()


def run_scheduled(db: Session, sync_type: SyncType, **run_kwargs) -> Optional[SyncLog]:
    """Start and run a scheduled sync; skipped when unconfigured or already running."""
    if get_active_configuration(db) is None:
        logger.info(f"Scheduled {SyncType(sync_type).value} sync skipped: ERP not configured")
        return None
    try:
        log = start_run(db, sync_type, triggered_by="schedule")
    except SyncAlreadyRunningError as e:
        logger.info(f"Scheduled sync skipped: {e}")
        return None
    return run_sync(db, log.id, **run_kwargs)


def next_sync_at(configuration: Optional[ERPConfiguration]) -> Optional[datetime]:
    if configuration is None or not configuration.sync_enabled or configuration.last_sync_at is None:
        return None
    return as_utc(configuration.last_sync_at) + timedelta(minutes=configuration.sync_interval_minutes)


def should_run_scheduled_sync(configuration: Optional[ERPConfiguration], now: Optional[datetime] = None) -> bool:
    """True when the catalog sync interval has elapsed (or it never ran)."""
    if configuration is None or not configuration.sync_enabled:
        return False
    due = next_sync_at(configuration)
    return due is None or (now or utcnow()) >= due


def serialize_log(log: SyncLog) -> Dict[str, Any]:
    return {
        "id": str(log.id),
        "sync_type": log.sync_type,
        "mode": log.mode,
        "status": log.status,
        "items_processed": log.items_processed,
        "items_changed": log.items_changed,
        "errors": log.errors or [],
        "triggered_by": log.triggered_by,
        "started_at": as_utc(log.started_at),
        "completed_at": as_utc(log.completed_at),
        "duration_seconds": log.duration_seconds,
    }


def get_status(db: Session, limit: int = 10) -> Dict[str, Any]:
    """Overview for the admin dashboard."""
    configuration = get_active_configuration(db)
    current = db.query(SyncLog).filter(
        SyncLog.status == SyncStatus.RUNNING.value
    ).order_by(SyncLog.started_at.desc()).first()

    return {
        "configured": configuration is not None,
        "sync_enabled": bool(configuration and configuration.sync_enabled),
        "last_sync_at": as_utc(configuration.last_sync_at) if configuration else None,
        "next_sync_at": next_sync_at(configuration),
        "current_sync": serialize_log(current) if current else None,
        "recent_logs": [serialize_log(log) for log in recent_runs(db, limit=limit)],
    }


def is_running(db: Session, sync_type: SyncType) -> bool:
    return get_running(db, sync_type) is not None
