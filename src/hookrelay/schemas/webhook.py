"""Delivery log and test delivery schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class DeliveryLogResponse(BaseModel):
    """Schema for delivery log response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    endpoint_id: uuid.UUID
    event_type: str
    outcome: str
    http_status: int
    error_message: str | None
    attempt: int
    created_at: datetime


class TestWebhookResponse(BaseModel):
    """Schema for test webhook response."""

    success: bool
    status_code: int | None = None
    error: str | None = None
    response_time_ms: float | None = None
