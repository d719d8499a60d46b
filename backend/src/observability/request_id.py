"""Correlation ID management.

A single ContextVar carries the correlation id for the current HTTP request
or background task, so every log line of one order push or sync run can be
grouped together.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID.

    Returns:
        str: UUID v4 request ID
    """
    return str(uuid.uuid4())


def get_request_id() -> str:
    """Get current request ID from context.

    Returns:
        str: Current request ID or "no-request-id" if not set
    """
    return request_id_var.get() or "no-request-id"


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


@contextmanager
def bound_request_id(request_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for the duration of a block (used by workers).

    Example:
        with bound_request_id(task.request.id):
            run_sync(...)
    """
    token = request_id_var.set(request_id or generate_request_id())
    try:
        yield request_id_var.get()
    finally:
        request_id_var.reset(token)
