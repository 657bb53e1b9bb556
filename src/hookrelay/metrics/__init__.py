"""Hookrelay Prometheus metrics."""

from hookrelay.metrics.definitions import (
    QUEUE_DEPTH,
    REQUEST_DURATION,
    REQUEST_TOTAL,
    WEBHOOK_ATTEMPT_DURATION,
    WEBHOOK_ATTEMPTS_TOTAL,
    WEBHOOK_DISPATCHED_TOTAL,
    WEBHOOK_EXHAUSTED_TOTAL,
    WEBHOOK_RETRIES_TOTAL,
)
from hookrelay.metrics.middleware import MetricsMiddleware

__all__ = [
    "MetricsMiddleware",
    "QUEUE_DEPTH",
    "REQUEST_DURATION",
    "REQUEST_TOTAL",
    "WEBHOOK_ATTEMPTS_TOTAL",
    "WEBHOOK_ATTEMPT_DURATION",
    "WEBHOOK_DISPATCHED_TOTAL",
    "WEBHOOK_EXHAUSTED_TOTAL",
    "WEBHOOK_RETRIES_TOTAL",
]
