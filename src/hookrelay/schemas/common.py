"""Common Pydantic schemas."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    instance_id: str


class QueueStats(BaseModel):
    """Delivery queue statistics."""

    pending: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0


class ReadyResponse(BaseModel):
    """Readiness check response."""

    status: str = "ok"
    database: str = "ok"
    queue: QueueStats | None = None  # Optional queue statistics


class ErrorResponse(BaseModel):
    """Error response."""

    detail: str
