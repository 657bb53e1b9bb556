"""Append-only delivery log."""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.db.models import DeliveryLogEntry
from hookrelay.db.session import SessionFactory
from hookrelay.webhook.models import DeliveryOutcome

logger = logging.getLogger(__name__)


class DeliveryLogWriter:
    """Records one entry per delivery attempt.

    Writes never fail the delivery: errors are logged and discarded.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def record(
        self,
        endpoint_id: uuid.UUID,
        event_type: str,
        outcome: DeliveryOutcome,
        attempt: int = 1,
    ) -> None:
        try:
            async with self._session_factory() as session:
                session.add(
                    DeliveryLogEntry(
                        endpoint_id=endpoint_id,
                        event_type=event_type,
                        outcome=outcome.kind.value,
                        http_status=outcome.http_status,
                        error_message=outcome.error,
                        attempt=attempt,
                        created_at=datetime.now(UTC),
                    )
                )
                await session.commit()
        except Exception:
            logger.exception(
                f"Failed to record delivery log for endpoint {endpoint_id} ({event_type})"
            )


async def list_deliveries(
    session: AsyncSession,
    endpoint_id: uuid.UUID,
    limit: int = 50,
) -> list[DeliveryLogEntry]:
    """Most recent delivery log entries for an endpoint, newest first."""
    stmt = (
        select(DeliveryLogEntry)
        .where(DeliveryLogEntry.endpoint_id == endpoint_id)
        .order_by(DeliveryLogEntry.created_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
