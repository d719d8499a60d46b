"""Observability module.

Provides structured logging, correlation ids, metrics and health checks.
"""

from .logging_config import configure_logging, get_logger
from .metrics import (
    erp_calls_total,
    erp_call_latency_ms,
    erp_rate_limit_wait_seconds,
    erp_order_pushes_total,
    sync_runs_total,
    sync_items_changed_total,
)
from .request_id import request_id_var, get_request_id, set_request_id, generate_request_id, bound_request_id

__all__ = [
    "configure_logging",
    "get_logger",
    "erp_calls_total",
    "erp_call_latency_ms",
    "erp_rate_limit_wait_seconds",
    "erp_order_pushes_total",
    "sync_runs_total",
    "sync_items_changed_total",
    "request_id_var",
    "get_request_id",
    "set_request_id",
    "generate_request_id",
    "bound_request_id",
]
