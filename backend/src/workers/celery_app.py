"""Celery application for ERP sync jobs.

All ERP traffic runs on the dedicated `erp_sync` queue, consumed by a worker
with concurrency 1, so pushes and inbound runs never race each other for the
ERP rate limit. Tasks are acknowledged late: a worker crash redelivers the job.

Run:
    celery -A workers.celery_app worker -Q erp_sync --concurrency=1
    celery -A workers.celery_app beat
"""

from celery import Celery
from celery.schedules import crontab

from config import settings

ERP_SYNC_QUEUE = "erp_sync"

celery_app = Celery(
    "shop_erp_sync",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["workers.order_push_worker", "erp_sync.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue=ERP_SYNC_QUEUE,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_concurrency=1,
    worker_prefetch_multiplier=1,
)

celery_app.conf.beat_schedule = {
    "erp-stock-sync-daily": {
        "task": "erp_sync.scheduled_stock_sync",
        "schedule": crontab(hour=settings.STOCK_SYNC_HOUR, minute=0),
        "options": {"expires": 3600},
    },
    "erp-order-status-sync": {
        "task": "erp_sync.scheduled_order_status_sync",
        "schedule": crontab(minute="*/15"),
        "options": {"expires": 600},
    },
    "erp-pending-orders-sweep": {
        "task": "erp_sync.sync_pending_orders",
        "schedule": crontab(minute="*/10"),
        "options": {"expires": 600},
    },
    "erp-catalog-sync-check": {
        "task": "erp_sync.scheduled_catalog_sync",
        "schedule": crontab(minute=30),
        "options": {"expires": 3600},
    },
    "erp-stuck-runs": {
        "task": "erp_sync.cancel_stuck_runs",
        "schedule": crontab(minute=45),
    },
}
