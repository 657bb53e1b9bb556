"""Queue retention module."""

from hookrelay.cleanup.service import QueueRetentionService, TrimResult

__all__ = [
    "QueueRetentionService",
    "TrimResult",
]
