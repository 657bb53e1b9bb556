"""Database-backed delivery job queue."""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.cleanup.service import QueueRetentionService, TrimResult
from hookrelay.config import Settings, get_settings
from hookrelay.db.enums import JobStatus
from hookrelay.db.models import DeliveryJobRecord
from hookrelay.db.session import SessionFactory
from hookrelay.metrics.definitions import QUEUE_DEPTH
from hookrelay.webhook.models import DeliveryJob

logger = logging.getLogger(__name__)

JOB_NAME = "deliver-webhook"


@dataclass
class QueueCounts:
    """Job record counts by state."""

    pending: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0


class DeliveryQueue:
    """Durable queue of delivery jobs.

    Every job record lives in the delivery_jobs table, so pending and
    delayed jobs survive restarts and can be claimed by any instance.
    Claims use SELECT FOR UPDATE SKIP LOCKED so concurrent consumers never
    receive the same record.
    """

    def __init__(self, session_factory: SessionFactory, settings: Settings | None = None):
        self._session_factory = session_factory
        self.settings = settings or get_settings()

    async def enqueue(self, job: DeliveryJob, delay_ms: int = 0) -> uuid.UUID:
        """Add a job, eligible for consumption after ``delay_ms`` milliseconds.

        Returns:
            The id of the created job record
        """
        run_at = datetime.now(UTC) + timedelta(milliseconds=max(delay_ms, 0))
        record = DeliveryJobRecord(
            name=JOB_NAME,
            endpoint_id=job.endpoint_id,
            event_type=job.event_type,
            payload=job.payload,
            attempt=job.attempt,
            status=JobStatus.PENDING.value,
            run_at=run_at,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()

        if delay_ms > 0:
            logger.debug(
                f"Enqueued job {record.id} (attempt {job.attempt}) for endpoint "
                f"{job.endpoint_id}, delayed {delay_ms}ms"
            )
        else:
            logger.debug(
                f"Enqueued job {record.id} (attempt {job.attempt}) for endpoint {job.endpoint_id}"
            )
        return record.id

    async def claim(
        self,
        instance_id: str | None = None,
        now: datetime | None = None,
    ) -> DeliveryJob | None:
        """Claim the oldest due job and mark it active.

        Args:
            instance_id: Identifier of the claiming worker instance
            now: Eligibility cutoff (defaults to the current time)

        Returns:
            The claimed job, or None if nothing is due
        """
        now = now or datetime.now(UTC)
        instance_id = instance_id or self.settings.instance_id

        async with self._session_factory() as session:
            stmt = (
                select(DeliveryJobRecord)
                .where(
                    DeliveryJobRecord.name == JOB_NAME,
                    DeliveryJobRecord.status == JobStatus.PENDING.value,
                    DeliveryJobRecord.run_at <= now,
                )
                .order_by(DeliveryJobRecord.run_at)
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            result = await session.execute(stmt)
            record = result.scalar_one_or_none()

            if record is None:
                return None

            record.status = JobStatus.ACTIVE.value
            record.locked_by = instance_id
            record.locked_at = datetime.now(UTC)
            await session.commit()

            return DeliveryJob(
                endpoint_id=record.endpoint_id,
                event_type=record.event_type,
                payload=record.payload,
                attempt=record.attempt,
                id=record.id,
            )

    async def claim_batch(
        self,
        limit: int,
        instance_id: str | None = None,
        now: datetime | None = None,
    ) -> list[DeliveryJob]:
        """Claim up to ``limit`` due jobs."""
        jobs = []
        for _ in range(limit):
            job = await self.claim(instance_id=instance_id, now=now)
            if job is None:
                break
            jobs.append(job)
        return jobs

    async def complete(self, job_id: uuid.UUID) -> None:
        """Mark a job record as completed."""
        await self._finish(job_id, JobStatus.COMPLETED, error=None)

    async def fail(self, job_id: uuid.UUID, error: str) -> None:
        """Mark a job record as failed.

        Failed is terminal for this record; a retry is a separate record.
        """
        await self._finish(job_id, JobStatus.FAILED, error=error)

    async def _finish(self, job_id: uuid.UUID, status: JobStatus, error: str | None) -> None:
        now = datetime.now(UTC)
        async with self._session_factory() as session:
            stmt = (
                update(DeliveryJobRecord)
                .where(DeliveryJobRecord.id == job_id)
                .values(
                    status=status.value,
                    finished_at=now,
                    last_error=error,
                    locked_by=None,
                    updated_at=now,  # Explicit update since onupdate doesn't trigger
                )
            )
            await session.execute(stmt)
            await session.commit()

    async def recover_stalled(self, now: datetime | None = None) -> int:
        """Return active jobs whose worker stopped responding to pending.

        Returns:
            Number of recovered jobs
        """
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.settings.queue_stalled_after)

        async with self._session_factory() as session:
            stmt = (
                update(DeliveryJobRecord)
                .where(
                    DeliveryJobRecord.status == JobStatus.ACTIVE.value,
                    DeliveryJobRecord.locked_at < cutoff,
                )
                .values(
                    status=JobStatus.PENDING.value,
                    locked_by=None,
                    locked_at=None,
                    updated_at=now,
                )
            )
            result = await session.execute(stmt)
            await session.commit()

        recovered = result.rowcount or 0
        if recovered:
            logger.warning(f"Recovered {recovered} stalled delivery jobs")
        return recovered

    async def trim(self) -> TrimResult:
        """Drop old completed and failed records beyond the retention limits."""
        async with self._session_factory() as session:
            service = QueueRetentionService(self.settings, session)
            return await service.trim()

    async def counts(self, now: datetime | None = None) -> QueueCounts:
        """Count job records by state and update the queue depth gauge."""
        async with self._session_factory() as session:
            return await count_jobs(session, now=now)


async def count_jobs(session: AsyncSession, now: datetime | None = None) -> QueueCounts:
    """Count job records by state and update the queue depth gauge.

    Pending jobs whose run_at is still in the future are reported as delayed.
    """
    now = now or datetime.now(UTC)

    stmt = select(DeliveryJobRecord.status, func.count(DeliveryJobRecord.id)).group_by(
        DeliveryJobRecord.status
    )
    result = await session.execute(stmt)
    by_status = {row[0]: row[1] for row in result.fetchall()}

    delayed_stmt = (
        select(func.count())
        .select_from(DeliveryJobRecord)
        .where(
            DeliveryJobRecord.status == JobStatus.PENDING.value,
            DeliveryJobRecord.run_at > now,
        )
    )
    delayed = (await session.execute(delayed_stmt)).scalar() or 0

    counts = QueueCounts(
        pending=by_status.get(JobStatus.PENDING.value, 0) - delayed,
        delayed=delayed,
        active=by_status.get(JobStatus.ACTIVE.value, 0),
        completed=by_status.get(JobStatus.COMPLETED.value, 0),
        failed=by_status.get(JobStatus.FAILED.value, 0),
    )

    for status in ("pending", "delayed", "active", "completed", "failed"):
        QUEUE_DEPTH.labels(status=status).set(getattr(counts, status))

    return counts
