"""
Prometheus metrics for reconciliation, providers and the work queue.

Provides observability into the operator's control loop.
"""
from prometheus_client import Counter, Histogram, Gauge

# Reconciliation metrics
reconcile_total = Counter(
    "rds_operator_reconcile_total",
    "Total number of reconciliations processed",
    ["operation", "result"],
)

reconcile_duration_seconds = Histogram(
    "rds_operator_reconcile_duration_seconds",
    "Time spent processing a reconciliation",
    ["operation"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1200, 1800, 3600),  # 1s to 1h
)

status_transitions_total = Counter(
    "rds_operator_status_transitions_total",
    "Total number of Database status writes by state",
    ["state"],
)

# Provider metrics
provider_operation_total = Counter(
    "rds_operator_provider_operation_total",
    "Total provider calls",
    ["provider", "operation", "result"],
)

# Queue metrics
queue_depth = Gauge(
    "rds_operator_queue_depth",
    "Number of reconciliations waiting in the work queue",
)

queue_processing = Gauge(
    "rds_operator_queue_processing",
    "Number of resources currently being reconciled",
)

# Controller metrics
watch_restarts_total = Counter(
    "rds_operator_watch_restarts_total",
    "Total number of watch restarts",
    ["reason"],
)

relist_total = Counter(
    "rds_operator_relist_total",
    "Total number of full Database relists",
)

invalid_objects_total = Counter(
    "rds_operator_invalid_objects_total",
    "Total number of Database objects skipped because they failed validation",
)
