"""ERP Order Push Worker - Background jobs for outbound order sync.

Checkout and payment handlers commit their local changes and enqueue a job
here; the ERP is never called from a request. A job that fails on a
transient error is retried with exponential backoff, and the pending-order
sweep picks up anything that still slipped through.
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from celery import shared_task

from connectors.push_service import OrderPushService
from .base import SyncTask, task_session

logger = logging.getLogger(__name__)

PUSH_ACTIONS = ("create_unpaid", "sync", "mark_paid", "refund", "cancel", "force")


def _run_action(
    service: OrderPushService,
    order_id: UUID,
    action: str,
    reason: Optional[str],
    actor_role: Optional[str],
):
    if action == "create_unpaid":
        return service.sync_order(order_id, skip_payment_check=True)
    if action == "sync":
        return service.sync_order(order_id)
    if action == "mark_paid":
        return service.mark_order_as_paid(order_id)
    if action == "refund":
        return service.mark_order_as_refunded(order_id, reason=reason)
    if action == "cancel":
        return service.mark_order_as_cancelled(order_id, reason=reason)
    if action == "force":
        return service.sync_order(order_id, force=True, actor_role=actor_role)
    raise ValueError(f"Unknown push action '{action}'. Expected one of {PUSH_ACTIONS}")


@shared_task(base=SyncTask, bind=True, name="erp_sync.push_order_to_erp", max_retries=5)
def push_order_to_erp(
    self,
    order_id: str,
    action: str = "sync",
    reason: Optional[str] = None,
    actor_role: Optional[str] = None,
) -> Dict[str, Any]:
    """Run one outbound order operation.

    Args:
        order_id: UUID string of the local order
        action: create_unpaid | sync | mark_paid | refund | cancel | force
        reason: Refund/cancel reason written to the ERP order
        actor_role: Role of the admin who requested a force push

    Returns:
        OrderSyncResult as a dict

    Example:
        from workers.order_push_worker import enqueue_order_push
        enqueue_order_push(order.id, action="mark_paid")
    """
    with task_session() as session:
        result = _run_action(OrderPushService(session), UUID(order_id), action, reason, actor_role)

    if result.retryable and self.request.retries < self.max_retries:
        countdown = 60 * (2 ** self.request.retries)
        logger.warning(
            f"Order push {action} failed transiently, retrying in {countdown}s: {result.error}",
            extra={"order_id": order_id, "attempt": self.request.retries + 1}
        )
        raise self.retry(countdown=countdown)

    return result.to_dict()


@shared_task(base=SyncTask, bind=True, name="erp_sync.sync_pending_orders")
def sync_pending_orders_task(self, batch_size: Optional[int] = None) -> Dict[str, int]:
    """Push paid orders missing in the ERP (scheduled every 10 minutes)."""
    with task_session() as session:
        return OrderPushService(session).sync_pending_orders(batch_size)


def enqueue_order_push(
    order_id: UUID,
    action: str = "sync",
    reason: Optional[str] = None,
    actor_role: Optional[str] = None,
):
    """Enqueue an outbound order job.

    Returns:
        Celery AsyncResult
    """
    if action not in PUSH_ACTIONS:
        raise ValueError(f"Unknown push action '{action}'")
    return push_order_to_erp.delay(
        order_id=str(order_id),
        action=action,
        reason=reason,
        actor_role=actor_role,
    )
