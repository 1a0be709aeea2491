"""Prometheus metrics for monitoring schedule builds, postal reconciliation and webhook performance"""

from prometheus_client import Counter, Histogram

# Schedule metrics
schedule_build_counter = Counter(
    "installment_schedule_builds_total",
    "Schedule builds attempted",
    ["operation", "outcome"],  # create | rebuild ; success | rejected | conflict
)

schedule_reference_histogram = Histogram(
    "installment_schedule_references",
    "Payment references issued per schedule",
    buckets=[0, 1, 2, 3, 4, 5],
)

reference_conflict_counter = Counter(
    "installment_reference_conflicts_total",
    "Reference codes that collided at commit time",
)

# Postal metrics
postal_import_lines_counter = Counter(
    "installment_postal_import_lines_total",
    "Postal status batch lines by outcome",
    ["outcome"],  # cleared | waiting | blocked | unresolved | unprocessed
)

postal_export_records_counter = Counter(
    "installment_postal_export_records_total",
    "Records written to postal export files",
    ["payer_account"],  # present | missing
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Ledger webhook response time",
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


def record_schedule_build(operation: str, outcome: str, reference_count: int = 0) -> None:
    """Record a schedule build attempt and, on success, how many references it issued"""
    schedule_build_counter.labels(operation=operation, outcome=outcome).inc()
    if outcome == "success":
        schedule_reference_histogram.observe(reference_count)
    elif outcome == "conflict":
        reference_conflict_counter.inc()


def record_reconciliation(cleared: int, waiting: int, blocked: int, unresolved: int, unprocessed: int) -> None:
    """Record postal import line outcomes"""
    for outcome, count in (
        ("cleared", cleared),
        ("waiting", waiting),
        ("blocked", blocked),
        ("unresolved", unresolved),
        ("unprocessed", unprocessed),
    ):
        if count:
            postal_import_lines_counter.labels(outcome=outcome).inc(count)
