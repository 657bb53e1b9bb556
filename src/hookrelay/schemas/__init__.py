"""Pydantic schemas for the operations API."""

from hookrelay.schemas.common import ErrorResponse, HealthResponse, QueueStats, ReadyResponse
from hookrelay.schemas.webhook import DeliveryLogResponse, TestWebhookResponse

__all__ = [
    "DeliveryLogResponse",
    "ErrorResponse",
    "HealthResponse",
    "QueueStats",
    "ReadyResponse",
    "TestWebhookResponse",
]
