"""Database module."""

from hookrelay.db.models import Base, DeliveryJobRecord, DeliveryLogEntry, WebhookEndpoint
from hookrelay.db.session import (
    SessionFactory,
    async_session,
    build_engine,
    build_session_factory,
    get_async_session_factory,
    get_engine,
    get_session,
)

__all__ = [
    "Base",
    "DeliveryJobRecord",
    "DeliveryLogEntry",
    "SessionFactory",
    "WebhookEndpoint",
    "async_session",
    "build_engine",
    "build_session_factory",
    "get_async_session_factory",
    "get_engine",
    "get_session",
]
