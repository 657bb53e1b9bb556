"""Retention trimming for finished queue job records."""

import logging
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.config import Settings
from hookrelay.db.enums import JobStatus
from hookrelay.db.models import DeliveryJobRecord

logger = logging.getLogger(__name__)


@dataclass
class TrimResult:
    """Result of a trim operation."""

    completed_deleted: int = 0
    failed_deleted: int = 0

    @property
    def deleted_count(self) -> int:
        return self.completed_deleted + self.failed_deleted


class QueueRetentionService:
    """Keeps only the most recent completed and failed job records.

    Pending, delayed and active records are never touched. The delivery
    log is a separate table and is not affected.
    """

    def __init__(self, settings: Settings, session: AsyncSession):
        self.settings = settings
        self.session = session

    async def _trim_status(self, status: JobStatus, keep: int) -> int:
        """Delete records of one status beyond the ``keep`` newest.

        Deletion is performed in batches so a large backlog does not hold
        one long transaction.
        """
        batch_size = self.settings.queue_trim_batch_size
        total_deleted = 0

        while True:
            select_stmt = (
                select(DeliveryJobRecord.id)
                .where(DeliveryJobRecord.status == status.value)
                .order_by(DeliveryJobRecord.finished_at.desc(), DeliveryJobRecord.id)
                .offset(keep)
                .limit(batch_size)
            )
            result = await self.session.execute(select_stmt)
            ids_to_delete = [row[0] for row in result.fetchall()]

            if not ids_to_delete:
                break

            delete_stmt = delete(DeliveryJobRecord).where(DeliveryJobRecord.id.in_(ids_to_delete))
            await self.session.execute(delete_stmt)
            await self.session.commit()

            total_deleted += len(ids_to_delete)
            logger.debug(f"Deleted batch of {len(ids_to_delete)} {status.value} job records")

        return total_deleted

    async def trim(self) -> TrimResult:
        """Apply the completed and failed retention limits.

        Returns:
            TrimResult with the number of deleted records per status.
        """
        result = TrimResult(
            completed_deleted=await self._trim_status(
                JobStatus.COMPLETED, self.settings.queue_keep_completed
            ),
            failed_deleted=await self._trim_status(
                JobStatus.FAILED, self.settings.queue_keep_failed
            ),
        )

        if result.deleted_count:
            logger.info(
                f"Trimmed {result.completed_deleted} completed and "
                f"{result.failed_deleted} failed job records"
            )
        return result
