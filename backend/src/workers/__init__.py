"""Background workers for ERP sync jobs.

All tasks run on the `erp_sync` queue (see celery_app). Tasks open their own
session via task_session() and retry only transient ERP failures.
"""

from .base import SyncTask, task_session, should_retry_error

__all__ = [
    "SyncTask",
    "task_session",
    "should_retry_error",
]
