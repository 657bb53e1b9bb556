"""Prometheus metrics definitions for Hookrelay."""

from prometheus_client import Counter, Gauge, Histogram

# HTTP Request metrics
REQUEST_TOTAL = Counter(
    "hookrelay_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "hookrelay_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Webhook delivery metrics
WEBHOOK_DISPATCHED_TOTAL = Counter(
    "hookrelay_webhook_dispatched_total",
    "Delivery jobs created by dispatch",
    ["event"],
)

WEBHOOK_ATTEMPTS_TOTAL = Counter(
    "hookrelay_webhook_attempts_total",
    "Webhook delivery attempts",
    ["outcome"],  # delivered, rejected, network_error, timed_out, skipped
)

WEBHOOK_ATTEMPT_DURATION = Histogram(
    "hookrelay_webhook_attempt_duration_seconds",
    "Webhook delivery attempt duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

WEBHOOK_RETRIES_TOTAL = Counter(
    "hookrelay_webhook_retries_total",
    "Retry jobs scheduled after a failed attempt",
)

WEBHOOK_EXHAUSTED_TOTAL = Counter(
    "hookrelay_webhook_exhausted_total",
    "Deliveries abandoned after reaching the attempt ceiling",
)

# Queue metrics
QUEUE_DEPTH = Gauge(
    "hookrelay_queue_depth",
    "Number of delivery job records",
    ["status"],  # pending, delayed, active, completed, failed
)
