"""FastAPI router for the ERP integration admin surface.

Provides admin APIs for:
- ERP configuration (token stored encrypted, shown masked) and connection test
- Triggering, monitoring and cancelling sync runs
- Pushing single orders and sweeping pending orders
- On-demand status sync of one order and the ERP status list

Long-running work is enqueued; the endpoints return immediately.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from auth.dependencies import Actor, require_role
from auth.roles import UserRole
from config import get_settings
from connectors.config_service import (
    build_client,
    check_connection,
    describe_config,
    disable_config,
    get_active_configuration,
    require_active_configuration,
    save_config,
)
from connectors.erp_statuses import map_erp_status
from connectors.ports import ConfigurationError, ErpError
from database import get_db
from models import ERPConfiguration, Order, SyncType
from workers.order_push_worker import enqueue_order_push, sync_pending_orders_task
from .order_status_sync import OrderStatusSync
from .runs import SyncAlreadyRunningError, cancel_run, find_stuck_runs, recent_runs
from .schemas import (
    ConfigResponse,
    ConfigSaveRequest,
    ConnectionTestRequest,
    ConnectionTestResponse,
    EnqueuedResponse,
    ErpOrderStatusEntry,
    OrderPushRequest,
    OrderStatusSyncResponse,
    SyncLogResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
    SyncTriggerResponse,
)
from .service import get_status, serialize_log, trigger_sync

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/erp", tags=["erp"])


def _configuration_error(e: ConfigurationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _latest_configuration(db: Session) -> Optional[ERPConfiguration]:
    return get_active_configuration(db) or db.query(ERPConfiguration).order_by(
        ERPConfiguration.updated_at.desc()
    ).first()


# Configuration

@router.put("/config", response_model=ConfigResponse)
def put_config(
    request: ConfigSaveRequest,
    actor: Actor = Depends(require_role(UserRole.INTEGRATOR)),
    db: Session = Depends(get_db),
) -> ConfigResponse:
    """Create or update the ERP configuration.

    Raises:
        HTTPException 400: Invalid token or master key not configured
    """
    try:
        configuration = save_config(
            db,
            api_token=request.api_token,
            inventory_id=request.inventory_id,
            sync_enabled=request.sync_enabled,
            sync_interval_minutes=request.sync_interval_minutes,
        )
    except ConfigurationError as e:
        raise _configuration_error(e)

    logger.info(
        f"ERP configuration saved by {actor.label}",
        extra={"user_id": actor.user_id, "inventory_id": configuration.inventory_id}
    )
    return ConfigResponse(**describe_config(configuration))


@router.get("/config", response_model=ConfigResponse)
def get_config(
    actor: Actor = Depends(require_role(UserRole.INTEGRATOR)),
    db: Session = Depends(get_db),
) -> ConfigResponse:
    """Current configuration with the token masked.

    Raises:
        HTTPException 404: Not configured
    """
    configuration = _latest_configuration(db)
    if configuration is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ERP integration is not configured")
    return ConfigResponse(**describe_config(configuration))


@router.post("/config/disable", response_model=ConfigResponse)
def post_config_disable(
    actor: Actor = Depends(require_role(UserRole.INTEGRATOR)),
    db: Session = Depends(get_db),
) -> ConfigResponse:
    configuration = get_active_configuration(db)
    if configuration is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active ERP configuration")

    disable_config(db, configuration)
    logger.info(f"ERP sync disabled by {actor.label}", extra={"user_id": actor.user_id})
    return ConfigResponse(**describe_config(configuration))


@router.post("/config/test", response_model=ConnectionTestResponse)
def post_config_test(
    request: ConnectionTestRequest,
    actor: Actor = Depends(require_role(UserRole.INTEGRATOR)),
    db: Session = Depends(get_db),
) -> ConnectionTestResponse:
    """Test a token (or the stored one) by listing inventories."""
    result = check_connection(db, api_token=request.api_token)
    return ConnectionTestResponse(
        success=result.success,
        error_message=result.error_message,
        latency_ms=result.latency_ms,
        inventories=result.inventories,
        test_timestamp=result.test_timestamp,
    )


# Sync runs

@router.post("/sync", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
def post_sync(
    request: SyncTriggerRequest,
    actor: Actor = Depends(require_role(UserRole.OPS)),
    db: Session = Depends(get_db),
) -> SyncTriggerResponse:
    """Start a sync run in the background.

    Raises:
        HTTPException 400: ERP not configured
        HTTPException 409: A run of this type is already in progress
    """
    try:
        log = trigger_sync(
            db,
            request.type.to_sync_type(),
            mode=request.mode.value if request.mode else None,
            triggered_by=actor.label,
        )
    except ConfigurationError as e:
        raise _configuration_error(e)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return SyncTriggerResponse(sync_log_id=str(log.id), sync_type=log.sync_type, status=log.status)


@router.get("/sync/status", response_model=SyncStatusResponse)
def get_sync_status(
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(require_role(UserRole.VIEWER)),
    db: Session = Depends(get_db),
) -> SyncStatusResponse:
    return SyncStatusResponse(**get_status(db, limit=limit))


@router.get("/sync/logs", response_model=List[SyncLogResponse])
def get_sync_logs(
    sync_type: Optional[SyncType] = Query(None),
    limit: int = Query(20, ge=1, le=200),
    actor: Actor = Depends(require_role(UserRole.VIEWER)),
    db: Session = Depends(get_db),
) -> List[SyncLogResponse]:
    return [SyncLogResponse(**serialize_log(log)) for log in recent_runs(db, sync_type=sync_type, limit=limit)]


@router.post("/sync/logs/{log_id}/cancel", response_model=SyncLogResponse)
def post_cancel_sync(
    log_id: UUID,
    actor: Actor = Depends(require_role(UserRole.OPS)),
    db: Session = Depends(get_db),
) -> SyncLogResponse:
    """Cancel a running sync. In-flight ERP calls finish; the run stops at its next page.

    Raises:
        HTTPException 404: Sync log not found
    """
    log = cancel_run(db, log_id)
    if log is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Sync log {log_id} not found")

    logger.info(
        f"Sync {log_id} cancel requested by {actor.label}",
        extra={"sync_log_id": str(log_id), "user_id": actor.user_id}
    )
    return SyncLogResponse(**serialize_log(log))


@router.get("/sync/stuck", response_model=List[SyncLogResponse])
def get_stuck_syncs(
    older_than_minutes: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(require_role(UserRole.VIEWER)),
    db: Session = Depends(get_db),
) -> List[SyncLogResponse]:
    minutes = older_than_minutes or get_settings().SYNC_STUCK_AFTER_MINUTES
    return [SyncLogResponse(**serialize_log(log)) for log in find_stuck_runs(db, minutes)]


# Orders

@router.post("/orders/sync-pending", response_model=EnqueuedResponse, status_code=status.HTTP_202_ACCEPTED)
def post_sync_pending_orders(
    actor: Actor = Depends(require_role(UserRole.OPS)),
) -> EnqueuedResponse:
    task = sync_pending_orders_task.delay()
    logger.info(f"Pending order sweep enqueued by {actor.label}", extra={"task_id": task.id})
    return EnqueuedResponse(task_id=task.id)


@router.post("/orders/{order_id}/push", response_model=EnqueuedResponse, status_code=status.HTTP_202_ACCEPTED)
def post_order_push(
    order_id: UUID,
    request: OrderPushRequest,
    actor: Actor = Depends(require_role(UserRole.OPS)),
    db: Session = Depends(get_db),
) -> EnqueuedResponse:
    """Push one order to the ERP (or complete its payment there).

    Raises:
        HTTPException 403: force requested by a non-ADMIN
        HTTPException 404: Order not found
    """
    if request.force and actor.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Force push requires the ADMIN role",
        )

    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Order {order_id} not found")

    task = enqueue_order_push(
        order.id,
        action="force" if request.force else "sync",
        actor_role=actor.role.value,
    )
    logger.info(
        f"Push of order {order.number} enqueued by {actor.label} (force={request.force})",
        extra={"order_id": str(order.id), "user_id": actor.user_id, "task_id": task.id}
    )
    return EnqueuedResponse(task_id=task.id, order_id=str(order.id))


@router.post("/orders/{order_id}/status-sync", response_model=OrderStatusSyncResponse)
def post_order_status_sync(
    order_id: UUID,
    actor: Actor = Depends(require_role(UserRole.OPS)),
    db: Session = Depends(get_db),
) -> OrderStatusSyncResponse:
    """Pull the ERP status of one order now.

    Raises:
        HTTPException 400: ERP not configured
        HTTPException 404: Order not found
        HTTPException 502: ERP call failed
    """
    try:
        client = build_client(require_active_configuration(db))
        result = OrderStatusSync(db, client).sync_single_order(order_id)
    except ConfigurationError as e:
        raise _configuration_error(e)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ErpError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return OrderStatusSyncResponse(**result)


@router.get("/order-statuses", response_model=List[ErpOrderStatusEntry])
def get_order_statuses(
    actor: Actor = Depends(require_role(UserRole.VIEWER)),
    db: Session = Depends(get_db),
) -> List[ErpOrderStatusEntry]:
    """ERP order statuses with the local status each one maps to."""
    try:
        client = build_client(require_active_configuration(db))
        statuses = client.get_order_status_list()
    except ConfigurationError as e:
        raise _configuration_error(e)
    except ErpError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    entries = []
    for entry in statuses:
        local = map_erp_status(entry.get("id"))
        entries.append(ErpOrderStatusEntry(
            id=int(entry.get("id")),
            name=entry.get("name") or "",
            color=entry.get("color"),
            local_status=local.value if local else None,
        ))
    return entries
