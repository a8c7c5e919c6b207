"""Prometheus metrics for ledger operations and revolving-window usage"""

from prometheus_client import Counter, Histogram

# Lifecycle metrics
operation_counter = Counter(
    "ledger_operation_total",
    "Loan ledger operations by outcome",
    ["operation", "outcome"],  # committed | rejected
)

operation_duration_histogram = Histogram(
    "ledger_operation_duration_seconds",
    "Time spent inside a ledger unit of work",
    ["operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

rejection_counter = Counter(
    "ledger_rejection_total",
    "Rejected ledger operations by error class",
    ["error"],
)

# Revolving window metrics
revolving_status_counter = Counter(
    "revolving_usage_status_total",
    "Revolving usage queries by derived status",
    ["status"],  # available | warning | critical | expired
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_operation(operation: str, duration_seconds: float) -> None:
    """Record a committed operation and its duration"""
    operation_counter.labels(operation=operation, outcome="committed").inc()
    operation_duration_histogram.labels(operation=operation).observe(duration_seconds)


def record_rejection(operation: str, error: Exception) -> None:
    operation_counter.labels(operation=operation, outcome="rejected").inc()
    rejection_counter.labels(error=type(error).__name__).inc()
