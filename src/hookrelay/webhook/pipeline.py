"""Delivery pipeline: queue consumers, retry scheduling and lifecycle."""

import asyncio
import contextlib
import logging
import uuid
from datetime import datetime
from typing import Any

import httpx

from hookrelay.config import Settings, get_settings
from hookrelay.db.session import SessionFactory, get_async_session_factory
from hookrelay.metrics.definitions import WEBHOOK_EXHAUSTED_TOTAL, WEBHOOK_RETRIES_TOTAL
from hookrelay.webhook.delivery_log import DeliveryLogWriter
from hookrelay.webhook.dispatcher import Dispatcher
from hookrelay.webhook.executor import DeliveryExecutor
from hookrelay.webhook.models import DeliveryJob, DeliveryOutcome
from hookrelay.webhook.queue import DeliveryQueue
from hookrelay.webhook.registry import EndpointRegistry, SqlEndpointRegistry
from hookrelay.webhook.retry import GiveUp, RetryAfter, next_action

logger = logging.getLogger(__name__)


class RetrySchedulingError(Exception):
    """The attempt after a failed one could not be enqueued."""

    def __init__(self, job: DeliveryJob, cause: Exception):
        self.job = job
        super().__init__(
            f"Could not schedule attempt {job.attempt + 1} of {job.event_type} "
            f"for endpoint {job.endpoint_id}: {cause}"
        )


class DeliveryPipeline:
    """Owns the queue, executor, dispatcher and the pool of queue consumers.

    Nothing here is a module-level singleton: create a pipeline, start() it,
    and stop() it on shutdown.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: SessionFactory | None = None,
        registry: EndpointRegistry | None = None,
        client: httpx.AsyncClient | None = None,
        queue: DeliveryQueue | None = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or get_async_session_factory()
        self.registry = registry or SqlEndpointRegistry(self.session_factory)
        self.queue = queue or DeliveryQueue(self.session_factory, self.settings)
        self.delivery_log = DeliveryLogWriter(self.session_factory)
        self.executor = DeliveryExecutor(
            self.registry,
            self.delivery_log,
            settings=self.settings,
            client=client,
        )
        self.dispatcher = Dispatcher(self.registry, self.queue)

        self._running = False
        self._tasks: list[asyncio.Task] = []

    async def dispatch(self, tenant_id: uuid.UUID, event_type: str, payload: dict[str, Any]) -> int:
        return await self.dispatcher.dispatch(tenant_id, event_type, payload)

    def dispatch_nowait(
        self, tenant_id: uuid.UUID, event_type: str, payload: dict[str, Any]
    ) -> asyncio.Task:
        return self.dispatcher.dispatch_nowait(tenant_id, event_type, payload)

    async def process_job(self, job: DeliveryJob) -> DeliveryOutcome:
        """Run one attempt and schedule what follows it.

        A failed attempt below the ceiling enqueues a new job for the next
        attempt with exponential backoff. At the ceiling the delivery is
        abandoned and reported.

        Raises:
            RetrySchedulingError: If the next attempt could not be enqueued
        """
        outcome = await self.executor.attempt(job)

        decision = next_action(
            outcome.kind,
            job.attempt,
            max_attempts=self.settings.webhook_max_attempts,
            base_delay_ms=int(self.settings.webhook_retry_base_delay * 1000),
        )

        if isinstance(decision, RetryAfter):
            try:
                await self.queue.enqueue(job.next_attempt(), delay_ms=decision.delay_ms)
            except Exception as e:
                raise RetrySchedulingError(job, e) from e
            WEBHOOK_RETRIES_TOTAL.inc()
            logger.info(
                f"Scheduled attempt {job.attempt + 1} of {job.event_type} for endpoint "
                f"{job.endpoint_id} in {decision.delay_ms}ms"
            )
        elif isinstance(decision, GiveUp) and decision.exhausted:
            WEBHOOK_EXHAUSTED_TOTAL.inc()
            logger.warning(
                f"Giving up on {job.event_type} for endpoint {job.endpoint_id} after "
                f"{job.attempt} attempts: {outcome.error}"
            )
            await self.executor.send_dead_letter_alert(job, outcome)

        return outcome

    async def _run_job(self, job: DeliveryJob) -> None:
        """Process a claimed job and record its terminal state in the queue.

        A job whose retry could not be enqueued is left active, so stalled
        recovery runs it again instead of ending the retry chain.
        """
        try:
            outcome = await self.process_job(job)
        except RetrySchedulingError as e:
            logger.error(f"{e}; job {job.id} left active for stalled recovery")
            return
        except Exception as e:
            logger.exception(f"Processing job {job.id} for endpoint {job.endpoint_id} failed")
            await self.queue.fail(job.id, f"Processing error: {e}")
            return

        if outcome.is_failure:
            await self.queue.fail(job.id, outcome.error or outcome.kind.value)
        else:
            await self.queue.complete(job.id)

    async def run_once(self, now: datetime | None = None) -> int:
        """Claim up to worker_concurrency due jobs and process them concurrently.

        Returns:
            Number of jobs processed
        """
        jobs = await self.queue.claim_batch(
            self.settings.worker_concurrency,
            instance_id=self.settings.instance_id,
            now=now,
        )
        if not jobs:
            return 0

        results = await asyncio.gather(
            *(self._run_job(job) for job in jobs),
            return_exceptions=True,
        )
        for job, result in zip(jobs, results, strict=True):
            if isinstance(result, Exception):
                logger.error(f"Job {job.id} processing failed: {result}", exc_info=result)
        return len(jobs)

    async def _consume(self, worker_number: int) -> None:
        """One queue consumer: claim, process, repeat."""
        logger.debug(f"Consumer {worker_number} started")
        while self._running:
            try:
                job = await self.queue.claim(instance_id=self.settings.instance_id)
                if job is None:
                    # No work available, wait before checking again
                    await asyncio.sleep(self.settings.worker_poll_interval)
                    continue
                await self._run_job(job)
            except Exception:
                logger.exception("Error in delivery consumer loop")
                await asyncio.sleep(self.settings.worker_poll_interval)
        logger.debug(f"Consumer {worker_number} stopped")

    async def _maintain(self) -> None:
        """Periodically recover stalled jobs and trim finished records."""
        while self._running:
            try:
                await self.queue.recover_stalled()
                result = await self.queue.trim()
                if result.deleted_count:
                    logger.debug(f"Trimmed {result.deleted_count} finished job records")
            except Exception:
                logger.exception("Error in queue maintenance")
            await asyncio.sleep(self.settings.queue_maintenance_interval)

    def start(self) -> None:
        """Start the consumers and the maintenance task in the background."""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._consume(n)) for n in range(self.settings.worker_concurrency)
        ]
        self._tasks.append(asyncio.create_task(self._maintain()))
        logger.info(
            f"Delivery pipeline started with {self.settings.worker_concurrency} consumers "
            f"(instance: {self.settings.instance_id})"
        )

    async def stop(self) -> None:
        """Stop the consumers and release the HTTP client.

        Jobs interrupted mid-attempt stay active and are returned to pending
        by stalled-job recovery.
        """
        self._running = False
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await self.wait()
        self._tasks = []
        await self.dispatcher.drain()
        await self.executor.aclose()
        logger.info("Delivery pipeline stopped")

    async def wait(self) -> None:
        """Wait for the background tasks to finish."""
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
