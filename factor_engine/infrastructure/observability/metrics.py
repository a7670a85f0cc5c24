"""Prometheus metrics for operation lifecycle, settlement volume and webhook performance"""

from prometheus_client import Counter, Histogram

# Lifecycle metrics
transition_counter = Counter(
    "factor_operation_transitions_total",
    "Factor operation status transitions",
    ["from_status", "to_status"],
)

version_counter = Counter(
    "factor_operation_versions_total",
    "Package versions generated",
)

conclusion_counter = Counter(
    "factor_operation_conclusions_total",
    "Conclude attempts by outcome",
    ["outcome"],  # completed | idempotent | failed
)

# Settlement metrics
posted_cents_counter = Counter(
    "factor_posted_cents_total",
    "Cents posted to the ledger by settlement",
    ["kind"],  # ar_settlement | ap_entry | cost_entry
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


def record_transition(from_status: str, to_status: str) -> None:
    transition_counter.labels(from_status=from_status, to_status=to_status).inc()


def record_conclusion(outcome: str, postings=()) -> None:
    """Record conclude outcome and the cents posted per posting kind"""
    conclusion_counter.labels(outcome=outcome).inc()
    for posting in postings:
        posted_cents_counter.labels(kind=posting.kind).inc(posting.amount_cents)
