"""Webhook delivery pipeline."""

from hookrelay.webhook.delivery_log import DeliveryLogWriter, list_deliveries
from hookrelay.webhook.dispatcher import Dispatcher
from hookrelay.webhook.executor import DeliveryExecutor, TestDeliveryResult
from hookrelay.webhook.models import DeliveryJob, DeliveryOutcome
from hookrelay.webhook.pipeline import DeliveryPipeline, RetrySchedulingError
from hookrelay.webhook.queue import DeliveryQueue, QueueCounts
from hookrelay.webhook.registry import (
    EndpointConfigError,
    EndpointInfo,
    EndpointRegistry,
    SqlEndpointRegistry,
    create_endpoint,
    delete_endpoint,
    rotate_secret,
    set_endpoint_active,
    update_endpoint,
)
from hookrelay.webhook.retry import GiveUp, RetryAfter, next_action
from hookrelay.webhook.signing import compute_signature, format_signature_header, verify_signature
from hookrelay.webhook.url_validator import SSRFError, validate_endpoint_url

__all__ = [
    "DeliveryExecutor",
    "DeliveryJob",
    "DeliveryLogWriter",
    "DeliveryOutcome",
    "DeliveryPipeline",
    "DeliveryQueue",
    "Dispatcher",
    "EndpointConfigError",
    "EndpointInfo",
    "EndpointRegistry",
    "GiveUp",
    "QueueCounts",
    "RetryAfter",
    "RetrySchedulingError",
    "SSRFError",
    "SqlEndpointRegistry",
    "TestDeliveryResult",
    "compute_signature",
    "create_endpoint",
    "delete_endpoint",
    "format_signature_header",
    "list_deliveries",
    "next_action",
    "rotate_secret",
    "set_endpoint_active",
    "update_endpoint",
    "validate_endpoint_url",
    "verify_signature",
]
