"""Prometheus metrics for monitoring schedule changes, reconciliation health, and webhook performance"""

from prometheus_client import Counter, Histogram

from repayment_engine.domain.models import ScheduleChangeResult

# Schedule metrics
schedule_change_counter = Counter(
    "schedule_recalculation_total",
    "Schedule events handled",
    ["trigger", "outcome"],  # outcome: success | partial | rejected | error
)

schedule_rows_counter = Counter(
    "schedule_rows_total",
    "Schedule rows written by action",
    ["action"],  # updated | inserted | cancelled
)

reconciliation_row_errors_counter = Counter(
    "reconciliation_row_errors_total",
    "Schedule rows that failed to persist",
)

nonconvergence_counter = Counter(
    "schedule_nonconvergence_total",
    "Recalculations that hit the period cap before reaching zero",
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Schedule webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_schedule_change(result: ScheduleChangeResult) -> None:
    """Record counters for one handled schedule event"""
    outcome = "success" if result.success else "partial"
    schedule_change_counter.labels(trigger=result.trigger, outcome=outcome).inc()

    schedule_rows_counter.labels(action="updated").inc(result.updated_count)
    schedule_rows_counter.labels(action="inserted").inc(result.inserted_count)
    schedule_rows_counter.labels(action="cancelled").inc(result.cancelled_count)

    if result.errors:
        reconciliation_row_errors_counter.inc(len(result.errors))
    if not result.converged:
        nonconvergence_counter.inc()


def record_schedule_rejection(trigger: str, outcome: str = "rejected") -> None:
    schedule_change_counter.labels(trigger=trigger, outcome=outcome).inc()
