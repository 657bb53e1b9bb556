"""Value types passed between the dispatcher, queue, executor and retry scheduler."""

import uuid
from dataclasses import dataclass, field, replace
from typing import Any

from hookrelay.db.enums import DeliveryOutcomeKind

FAILURE_KINDS = frozenset(
    {
        DeliveryOutcomeKind.REJECTED,
        DeliveryOutcomeKind.NETWORK_ERROR,
        DeliveryOutcomeKind.TIMED_OUT,
    }
)


@dataclass(frozen=True)
class DeliveryJob:
    """A single delivery attempt for one endpoint.

    Fresh dispatches start at attempt 1; retries are copies with the
    attempt incremented. ``id`` is the queue record id once enqueued.
    """

    endpoint_id: uuid.UUID
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    attempt: int = 1
    id: uuid.UUID | None = None

    def next_attempt(self) -> "DeliveryJob":
        """Return the job for the following attempt, detached from any queue record."""
        return replace(self, attempt=self.attempt + 1, id=None)


@dataclass(frozen=True)
class DeliveryOutcome:
    """Classified result of one delivery attempt."""

    kind: DeliveryOutcomeKind
    status_code: int | None = None
    error: str | None = None

    @property
    def is_failure(self) -> bool:
        return self.kind in FAILURE_KINDS

    @property
    def http_status(self) -> int:
        """Status code for the delivery log (0 when no response was received)."""
        return self.status_code or 0

    @classmethod
    def delivered(cls, status_code: int) -> "DeliveryOutcome":
        return cls(DeliveryOutcomeKind.DELIVERED, status_code=status_code)

    @classmethod
    def rejected(cls, status_code: int, error: str) -> "DeliveryOutcome":
        return cls(DeliveryOutcomeKind.REJECTED, status_code=status_code, error=error)

    @classmethod
    def network_error(cls, error: str) -> "DeliveryOutcome":
        return cls(DeliveryOutcomeKind.NETWORK_ERROR, error=error)

    @classmethod
    def timed_out(cls, error: str = "Request timed out") -> "DeliveryOutcome":
        return cls(DeliveryOutcomeKind.TIMED_OUT, error=error)

    @classmethod
    def skipped(cls, reason: str) -> "DeliveryOutcome":
        return cls(DeliveryOutcomeKind.SKIPPED, error=reason)
