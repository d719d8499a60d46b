"""Prometheus metrics for the ERP sync engine.

Defines and exposes operational metrics for monitoring and alerting.
"""

from prometheus_client import Counter, Histogram

# ERP client metrics
erp_calls_total = Counter(
    "shop_erp_calls_total",
    "Total ERP remote calls",
    ["method", "outcome"]  # outcome: success|api_error|transport_error|rate_limited|retry
)

erp_call_latency_ms = Histogram(
    "shop_erp_call_latency_ms",
    "ERP call latency in milliseconds (single HTTP attempt)",
    ["method"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000]
)

erp_rate_limit_wait_seconds = Histogram(
    "shop_erp_rate_limit_wait_seconds",
    "Time spent waiting for a rate limiter token",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0]
)

# Outbound order sync metrics
erp_order_pushes_total = Counter(
    "shop_erp_order_pushes_total",
    "Outbound order operations",
    ["action", "outcome"]  # action: create|mark_paid|refund|cancel, outcome: success|failed|skipped
)

# Inbound sync metrics
sync_runs_total = Counter(
    "shop_sync_runs_total",
    "Finished sync runs",
    ["sync_type", "status"]
)

sync_items_changed_total = Counter(
    "shop_sync_items_changed_total",
    "Local records changed by inbound sync",
    ["sync_type"]
)
