"""Fan-out of domain events into delivery jobs."""

import asyncio
import logging
import uuid
from typing import Any

from hookrelay.db.enums import WebhookEvent
from hookrelay.metrics.definitions import WEBHOOK_DISPATCHED_TOTAL
from hookrelay.webhook.models import DeliveryJob
from hookrelay.webhook.queue import DeliveryQueue
from hookrelay.webhook.registry import EndpointRegistry

logger = logging.getLogger(__name__)


class Dispatcher:
    """Turns one event into one queued job per subscribed endpoint."""

    def __init__(self, registry: EndpointRegistry, queue: DeliveryQueue):
        self.registry = registry
        self.queue = queue
        self._background_tasks: set[asyncio.Task] = set()

    async def dispatch(
        self,
        tenant_id: uuid.UUID,
        event_type: str | WebhookEvent,
        payload: dict[str, Any],
    ) -> int:
        """Enqueue a delivery job for every active endpoint subscribed to the event.

        Lookup and enqueue failures are logged, never raised; delivery is
        best effort from the caller's point of view.

        Args:
            tenant_id: Tenant whose endpoints receive the event
            event_type: One of the WebhookEvent names
            payload: Event data, placed under "data" in the envelope

        Returns:
            Number of jobs enqueued

        Raises:
            ValueError: If event_type is not a known event name
        """
        event = WebhookEvent(event_type).value

        try:
            endpoints = await self.registry.list_active_endpoints(tenant_id)
        except Exception:
            logger.exception(f"Failed to look up endpoints for tenant {tenant_id} ({event})")
            return 0

        enqueued = 0
        for endpoint in endpoints:
            if not endpoint.is_active or not endpoint.subscribes_to(event):
                continue

            job = DeliveryJob(endpoint_id=endpoint.id, event_type=event, payload=payload)
            try:
                await self.queue.enqueue(job)
            except Exception:
                logger.exception(f"Failed to enqueue {event} for endpoint {endpoint.id}")
                continue
            enqueued += 1

        if enqueued:
            WEBHOOK_DISPATCHED_TOTAL.labels(event=event).inc(enqueued)
            logger.info(f"Dispatched {event} for tenant {tenant_id} to {enqueued} endpoint(s)")
        return enqueued

    def dispatch_nowait(
        self,
        tenant_id: uuid.UUID,
        event_type: str | WebhookEvent,
        payload: dict[str, Any],
    ) -> asyncio.Task:
        """Schedule dispatch() without awaiting it.

        The task is kept referenced until it finishes and its exception, if
        any, is logged.
        """
        task = asyncio.create_task(self.dispatch(tenant_id, event_type, payload))
        self._background_tasks.add(task)
        task.add_done_callback(self._on_dispatch_done)
        return task

    def _on_dispatch_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background dispatch failed: {exc!r}", exc_info=exc)

    async def drain(self) -> None:
        """Wait for outstanding background dispatches."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
