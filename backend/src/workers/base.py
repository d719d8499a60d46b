"""Base utilities for ERP sync background tasks.

Every task:
- runs with the Celery task id as request id, so all log lines of one job
  can be correlated
- opens its own database session and closes it when done
- retries only transient ERP failures (see should_retry_error)

Task Signature Pattern:
======================

@shared_task(base=SyncTask, bind=True, name="erp_sync.my_task")
def my_task(self, order_id: str) -> Dict[str, Any]:
    with task_session() as session:
        ...
        return {"status": "success"}
"""

from contextlib import contextmanager
from typing import Generator

from celery import Task
from sqlalchemy.orm import Session

from connectors.ports import ConfigurationError, ErpApiError, TransportError, UnroutableProductError
from database import SessionLocal
from observability.request_id import bound_request_id


@contextmanager
def task_session() -> Generator[Session, None, None]:
    """Session for one task run. Services commit their own work."""
    session = SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def should_retry_error(error: Exception) -> bool:
    """Determine if an error is transient and the job should be retried.

    Retry:
    - TransportError (network failure, timeout, 5xx or 429 budget exhausted)

    Do not retry:
    - ConfigurationError (missing/invalid credentials or master key)
    - ErpApiError (the ERP rejected the request; resending cannot help)
    - UnroutableProductError (needs a catalog or configuration fix)
    """
    if isinstance(error, (ConfigurationError, ErpApiError, UnroutableProductError)):
        return False
    return isinstance(error, TransportError)


class SyncTask(Task):
    """Base Celery task binding the task id as request id for log correlation."""

    def __call__(self, *args, **kwargs):
        task_id = getattr(self.request, "id", None)
        with bound_request_id(task_id):
            return super().__call__(*args, **kwargs)
