"""Sync run bookkeeping (SyncLog rows)."""

import logging
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import SyncLog, SyncStatus, SyncType
from models.base import utcnow
from observability.metrics import sync_items_changed_total, sync_runs_total


logger = logging.getLogger(__name__)

# Errors kept per run; the rest are only counted
MAX_RECORDED_ERRORS = 100


class SyncAlreadyRunningError(Exception):
    """Raised when a run of the same type is already RUNNING."""

    def __init__(self, sync_type: str, running_id: Optional[UUID] = None):
        self.sync_type = sync_type
        self.running_id = running_id
        super().__init__(f"A {sync_type} sync is already running" + (f" ({running_id})" if running_id else ""))


class SyncCancelled(Exception):
    """Raised inside a run when an operator cancelled it."""
    pass


def get_running(db: Session, sync_type: SyncType) -> Optional[SyncLog]:
    return db.query(SyncLog).filter(
        SyncLog.sync_type == SyncType(sync_type).value,
        SyncLog.status == SyncStatus.RUNNING.value,
    ).first()


def start_run(
    db: Session,
    sync_type: SyncType,
    mode: Optional[str] = None,
    triggered_by: str = "schedule",
) -> SyncLog:
    """
    Create a RUNNING SyncLog.

    Raises:
        SyncAlreadyRunningError: A run of this type is already RUNNING
    """
    running = get_running(db, sync_type)
    if running is not None:
        raise SyncAlreadyRunningError(SyncType(sync_type).value, running.id)

    log = SyncLog(
        sync_type=SyncType(sync_type).value,
        mode=mode,
        status=SyncStatus.RUNNING.value,
        triggered_by=triggered_by,
        errors=[],
    )
    db.add(log)
    try:
        db.commit()
    except IntegrityError:
        # Lost the race against a concurrent start (partial unique index)
        db.rollback()
        raise SyncAlreadyRunningError(SyncType(sync_type).value)

    logger.info(
        f"Started {log.sync_type} sync ({triggered_by})",
        extra={"sync_log_id": str(log.id), "sync_type": log.sync_type}
    )
    return log


def record_error(log: SyncLog, message: str) -> None:
    errors = list(log.errors or [])
    if len(errors) < MAX_RECORDED_ERRORS:
        errors.append(message)
        # Reassign so the JSON column is flagged dirty
        log.errors = errors


def _complete(db: Session, log: SyncLog, status: SyncStatus) -> SyncLog:
    log.status = status.value
    log.completed_at = utcnow()
    db.commit()
    sync_runs_total.labels(sync_type=log.sync_type, status=status.value).inc()
    if log.items_changed:
        sync_items_changed_total.labels(sync_type=log.sync_type).inc(log.items_changed)
    return log


def finish_run(db: Session, log: SyncLog, processed: int = None, changed: int = None) -> SyncLog:
    """Mark a run SUCCESS, unless it was cancelled meanwhile."""
    if processed is not None:
        log.items_processed = processed
    if changed is not None:
        log.items_changed = changed

    if is_cancelled(db, log.id):
        logger.info(f"{log.sync_type} sync {log.id} was cancelled, keeping CANCELLED")
        log.status = SyncStatus.CANCELLED.value
        db.commit()
        return log

    _complete(db, log, SyncStatus.SUCCESS)
    logger.info(
        f"Finished {log.sync_type} sync: {log.items_processed} processed, {log.items_changed} changed",
        extra={"sync_log_id": str(log.id), "sync_type": log.sync_type}
    )
    return log


def fail_run(db: Session, log: SyncLog, error: Exception) -> SyncLog:
    db.rollback()
    record_error(log, str(error))
    _complete(db, log, SyncStatus.FAILED)
    logger.error(
        f"{log.sync_type} sync failed: {error}",
        extra={"sync_log_id": str(log.id), "sync_type": log.sync_type}
    )
    return log


def cancel_run(db: Session, log_id: UUID) -> Optional[SyncLog]:
    """
    Cancel a RUNNING run. In-flight ERP calls are not aborted; the run
    stops at its next cancellation check.

    Returns:
        The log, or None if it does not exist. Finished runs are returned unchanged.
    """
    log = db.query(SyncLog).filter(SyncLog.id == log_id).first()
    if log is None:
        return None
    if log.status != SyncStatus.RUNNING.value:
        return log

    record_error(log, "Cancelled by operator")
    _complete(db, log, SyncStatus.CANCELLED)
    logger.info(
        f"{log.sync_type} sync {log.id} cancelled",
        extra={"sync_log_id": str(log.id), "sync_type": log.sync_type}
    )
    return log


def is_cancelled(db: Session, log_id: UUID) -> bool:
    status = db.query(SyncLog.status).filter(SyncLog.id == log_id).scalar()
    return status == SyncStatus.CANCELLED.value


def check_cancelled(db: Session, log: SyncLog) -> None:
    """Raise SyncCancelled when an operator cancelled the run."""
    if is_cancelled(db, log.id):
        raise SyncCancelled(f"{log.sync_type} sync {log.id} cancelled")


def find_stuck_runs(db: Session, older_than_minutes: int) -> List[SyncLog]:
    """RUNNING runs started more than older_than_minutes ago."""
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)
    return db.query(SyncLog).filter(
        SyncLog.status == SyncStatus.RUNNING.value,
        SyncLog.started_at < cutoff,
    ).order_by(SyncLog.started_at.asc()).all()


def recent_runs(db: Session, sync_type: Optional[SyncType] = None, limit: int = 20) -> List[SyncLog]:
    query = db.query(SyncLog)
    if sync_type is not None:
        query = query.filter(SyncLog.sync_type == SyncType(sync_type).value)
    return query.order_by(SyncLog.started_at.desc()).limit(limit).all()
