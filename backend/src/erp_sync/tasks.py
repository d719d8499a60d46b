"""Celery tasks for inbound ERP sync.

Tasks:
- run_sync_task: executes a RUNNING SyncLog created by trigger_sync
- scheduled_stock_sync: daily at STOCK_SYNC_HOUR (UTC)
- scheduled_order_status_sync: every 15 minutes
- scheduled_catalog_sync: checked hourly, runs when sync_interval_minutes elapsed
- cancel_stuck_runs: cancels RUNNING logs older than SYNC_STUCK_AFTER_MINUTES
"""

import logging
from typing import Any, Dict
from uuid import UUID

from celery import shared_task

from config import get_settings
from connectors.config_service import get_active_configuration
from models import SyncType
from workers.base import SyncTask, should_retry_error, task_session
from .runs import cancel_run, find_stuck_runs
from .service import run_scheduled, run_sync, serialize_log, should_run_scheduled_sync

logger = logging.getLogger(__name__)


def _summary(log) -> Dict[str, Any]:
    if log is None:
        return {"status": "skipped"}
    return {
        "status": log.status,
        "sync_log_id": str(log.id),
        "sync_type": log.sync_type,
        "items_processed": log.items_processed,
        "items_changed": log.items_changed,
    }


@shared_task(base=SyncTask, bind=True, name="erp_sync.run_sync")
def run_sync_task(self, sync_log_id: str) -> Dict[str, Any]:
    """Execute a sync run triggered from the admin API.

    The run itself is not retried: a failed run is visible as FAILED in the
    sync log and the admin triggers a new one.
    """
    with task_session() as session:
        try:
            log = run_sync(session, UUID(sync_log_id))
        except Exception as e:
            logger.error(
                f"Sync run {sync_log_id} failed: {e}",
                extra={"sync_log_id": sync_log_id, "task_id": self.request.id}
            )
            return {"status": "FAILED", "sync_log_id": sync_log_id, "error": str(e)}
        return _summary(log)


def _scheduled(sync_type: SyncType) -> Dict[str, Any]:
    with task_session() as session:
        try:
            return _summary(run_scheduled(session, sync_type))
        except Exception as e:
            if should_retry_error(e):
                logger.warning(f"Scheduled {sync_type.value} sync failed transiently: {e}")
            else:
                logger.error(f"Scheduled {sync_type.value} sync failed: {e}")
            # The next scheduled run starts a fresh attempt
            return {"status": "FAILED", "sync_type": sync_type.value, "error": str(e)}


@shared_task(base=SyncTask, bind=True, name="erp_sync.scheduled_stock_sync")
def scheduled_stock_sync(self) -> Dict[str, Any]:
    return _scheduled(SyncType.STOCK)


@shared_task(base=SyncTask, bind=True, name="erp_sync.scheduled_order_status_sync")
def scheduled_order_status_sync(self) -> Dict[str, Any]:
    return _scheduled(SyncType.ORDER_STATUS)


@shared_task(base=SyncTask, bind=True, name="erp_sync.scheduled_catalog_sync")
def scheduled_catalog_sync(self) -> Dict[str, Any]:
    """Full catalog sync, but only once the configured interval has elapsed."""
    with task_session() as session:
        due = should_run_scheduled_sync(get_active_configuration(session))
    if not due:
        return {"status": "skipped", "reason": "interval not elapsed"}
    return _scheduled(SyncType.FULL)


@shared_task(base=SyncTask, bind=True, name="erp_sync.cancel_stuck_runs")
def cancel_stuck_runs(self) -> Dict[str, Any]:
    """Cancel runs left RUNNING by a crashed worker, so new runs can start."""
    minutes = get_settings().SYNC_STUCK_AFTER_MINUTES
    with task_session() as session:
        stuck = find_stuck_runs(session, minutes)
        cancelled = []
        for log in stuck:
            logger.warning(
                f"Cancelling {log.sync_type} sync {log.id} running for more than {minutes} minutes",
                extra={"sync_log_id": str(log.id)}
            )
            cancelled.append(serialize_log(cancel_run(session, log.id))["id"])
    return {"status": "completed", "cancelled": cancelled}
