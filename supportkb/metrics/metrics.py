"""Prometheus metrics for monitoring collection and learning."""

import prometheus_client as _prom

Counter = _prom.Counter
Histogram = _prom.Histogram


# Platform API metrics
API_LATENCY = Histogram(
    "platform_api_latency_seconds",
    "Messaging platform API latency in seconds by method and status",
    ["source", "method", "status"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf")),
)
API_CALLS = Counter(
    "platform_api_calls_total",
    "Messaging platform API call count by method and status",
    ["source", "method", "status"],
)

# Operation metrics (collection runs, channel drains, learning sessions)
OP_LATENCY = Histogram(
    "pipeline_operation_latency_seconds",
    "Total latency of pipeline operations by operation",
    ["operation"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float("inf")),
)
OP_ITEMS = Histogram(
    "pipeline_operation_items",
    "Total number of items handled by pipeline operations",
    ["operation"],
    buckets=(0, 1, 5, 10, 20, 50, 100, 200, 500, 1000, 5000, float("inf")),
)

LEARNING_SESSIONS = Counter(
    "learning_sessions_total",
    "Learning sessions by outcome",
    ["status"],
)
CURSOR_REJECTIONS = Counter(
    "collection_cursor_rejections_total",
    "Collection cursor writes refused by the store",
    ["reason"],
)
