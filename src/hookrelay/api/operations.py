"""Operations API endpoints (health, ready, delivery logs, test delivery)."""

import uuid
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay import __version__
from hookrelay.config import Settings, get_settings
from hookrelay.db.models import WebhookEndpoint
from hookrelay.db.session import get_async_session_factory, get_session
from hookrelay.schemas import (
    DeliveryLogResponse,
    HealthResponse,
    QueueStats,
    ReadyResponse,
    TestWebhookResponse,
)
from hookrelay.webhook.delivery_log import DeliveryLogWriter, list_deliveries
from hookrelay.webhook.executor import DeliveryExecutor
from hookrelay.webhook.queue import count_jobs
from hookrelay.webhook.registry import EndpointInfo, SqlEndpointRegistry

router = APIRouter(tags=["operations"])


async def get_executor(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[DeliveryExecutor, None]:
    """Dependency providing a delivery executor for one-off test sends."""
    session_factory = get_async_session_factory()
    executor = DeliveryExecutor(
        SqlEndpointRegistry(session_factory),
        DeliveryLogWriter(session_factory),
        settings=settings,
    )
    try:
        yield executor
    finally:
        await executor.aclose()


async def _get_endpoint_or_404(session: AsyncSession, endpoint_id: uuid.UUID) -> WebhookEndpoint:
    endpoint = await session.get(WebhookEndpoint, endpoint_id)
    if endpoint is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Endpoint not found",
        )
    return endpoint


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """Health check endpoint - returns server status."""
    return HealthResponse(
        status="ok",
        version=__version__,
        instance_id=settings.instance_id,
    )


@router.get("/ready", response_model=ReadyResponse)
async def ready_check(
    session: AsyncSession = Depends(get_session),
    include_queue: bool = Query(False, description="Include queue statistics"),
) -> ReadyResponse:
    """Readiness check endpoint - verifies database connectivity.

    Query parameters:
    - include_queue: Include delivery queue statistics (counts by job state)
    """
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not ready",
        ) from e

    response = ReadyResponse(status="ok", database="ok")

    if include_queue:
        counts = await count_jobs(session)
        response.queue = QueueStats(
            pending=counts.pending,
            delayed=counts.delayed,
            active=counts.active,
            completed=counts.completed,
            failed=counts.failed,
        )

    return response


@router.get("/endpoints/{endpoint_id}/deliveries", response_model=list[DeliveryLogResponse])
async def list_endpoint_deliveries(
    endpoint_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    limit: int = Query(50, ge=1, le=500),
) -> list[DeliveryLogResponse]:
    """List the most recent delivery attempts for an endpoint."""
    await _get_endpoint_or_404(session, endpoint_id)
    entries = await list_deliveries(session, endpoint_id, limit=limit)
    return [DeliveryLogResponse.model_validate(entry) for entry in entries]


@router.post("/endpoints/{endpoint_id}/test", response_model=TestWebhookResponse)
async def test_endpoint(
    endpoint_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    executor: DeliveryExecutor = Depends(get_executor),
) -> TestWebhookResponse:
    """Send a signed webhook.test event to an endpoint.

    Test sends are not written to the delivery log and are never retried.
    """
    endpoint = await _get_endpoint_or_404(session, endpoint_id)
    result = await executor.send_test(EndpointInfo.from_model(endpoint))

    return TestWebhookResponse(
        success=result.success,
        status_code=result.status_code,
        error=result.error,
        response_time_ms=result.response_time_ms,
    )
