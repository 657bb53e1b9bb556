"""Retry decisions with exponential backoff."""

from dataclasses import dataclass

from hookrelay.db.enums import DeliveryOutcomeKind
from hookrelay.webhook.models import FAILURE_KINDS

MAX_ATTEMPTS = 5
BASE_DELAY_MS = 1000


@dataclass(frozen=True)
class RetryAfter:
    """Schedule the next attempt after a delay."""

    delay_ms: int


@dataclass(frozen=True)
class GiveUp:
    """Stop the retry chain.

    ``exhausted`` is True when the chain ends because the attempt ceiling
    was reached after a failure, False for success or skip.
    """

    exhausted: bool = False


RetryDecision = RetryAfter | GiveUp


def next_action(
    kind: DeliveryOutcomeKind,
    attempt: int,
    max_attempts: int = MAX_ATTEMPTS,
    base_delay_ms: int = BASE_DELAY_MS,
) -> RetryDecision:
    """Decide what follows an attempt.

    Failures before the ceiling retry after ``base_delay_ms * 2**attempt``
    (2s, 4s, 8s, 16s with the defaults).
    """
    if kind not in FAILURE_KINDS:
        return GiveUp(exhausted=False)

    if attempt >= max_attempts:
        return GiveUp(exhausted=True)

    return RetryAfter(delay_ms=base_delay_ms * 2**attempt)
