"""Prometheus metrics for payment volume, credit flow and commit failures"""

from prometheus_client import Counter, Histogram

# Payment metrics
payment_counter = Counter(
    "bisyaroh_payments_total",
    "Payments processed through the allocation engine",
    ["method", "outcome"],  # manual | digital | custom, committed | rejected | failed
)

periods_allocated_counter = Counter(
    "bisyaroh_periods_allocated_total",
    "Periods marked lunas by allocation",
)

credit_generated_counter = Counter(
    "bisyaroh_credit_generated_rupiah_total",
    "Overflow turned into credit (Rupiah)",
)

credit_used_counter = Counter(
    "bisyaroh_credit_used_rupiah_total",
    "Credit consumed by allocations (Rupiah)",
)

# Commit metrics
concurrency_conflict_counter = Counter(
    "bisyaroh_concurrency_conflicts_total",
    "Credit balance version conflicts detected on commit",
)

persistence_failure_counter = Counter(
    "bisyaroh_persistence_failures_total",
    "Payment commits rolled back after a store failure",
)

# Digital payments
digital_notification_counter = Counter(
    "bisyaroh_digital_notifications_total",
    "Midtrans notifications handled",
    ["transaction_status"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_payment(method: str, periods_completed: int, credit_used: int, new_credit_generated: int) -> None:
    """Record committed payment metrics"""
    payment_counter.labels(method=method, outcome="committed").inc()
    periods_allocated_counter.inc(periods_completed)
    credit_used_counter.inc(credit_used)
    credit_generated_counter.inc(new_credit_generated)
