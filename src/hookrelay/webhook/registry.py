"""Subscriber endpoint lookup and registration."""

import logging
import secrets
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.db.enums import WebhookEvent
from hookrelay.db.models import WebhookEndpoint
from hookrelay.db.session import SessionFactory
from hookrelay.webhook.url_validator import validate_endpoint_url

logger = logging.getLogger(__name__)

# Matches the webhook_endpoints.secret column
SECRET_MAX_LENGTH = 255


class EndpointConfigError(ValueError):
    """Raised when an endpoint is registered with an unusable configuration."""


@dataclass(frozen=True)
class EndpointInfo:
    """Read-only view of a subscriber endpoint."""

    id: uuid.UUID
    tenant_id: uuid.UUID
    url: str
    secret: str
    events: tuple[str, ...] = ()
    is_active: bool = True

    def subscribes_to(self, event_type: str) -> bool:
        """An endpoint with no event list receives every event."""
        return not self.events or event_type in self.events

    @classmethod
    def from_model(cls, endpoint: WebhookEndpoint) -> "EndpointInfo":
        return cls(
            id=endpoint.id,
            tenant_id=endpoint.tenant_id,
            url=endpoint.url,
            secret=endpoint.secret,
            events=tuple(endpoint.events or ()),
            is_active=endpoint.is_active,
        )


class EndpointRegistry(Protocol):
    """Lookups the pipeline needs from endpoint management."""

    async def list_active_endpoints(self, tenant_id: uuid.UUID) -> list[EndpointInfo]: ...

    async def get_endpoint(self, endpoint_id: uuid.UUID) -> EndpointInfo | None: ...


class SqlEndpointRegistry:
    """Endpoint registry backed by the webhook_endpoints table."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def list_active_endpoints(self, tenant_id: uuid.UUID) -> list[EndpointInfo]:
        async with self._session_factory() as session:
            stmt = (
                select(WebhookEndpoint)
                .where(
                    WebhookEndpoint.tenant_id == tenant_id,
                    WebhookEndpoint.is_active.is_(True),
                )
                .order_by(WebhookEndpoint.created_at)
            )
            result = await session.execute(stmt)
            return [EndpointInfo.from_model(ep) for ep in result.scalars().all()]

    async def get_endpoint(self, endpoint_id: uuid.UUID) -> EndpointInfo | None:
        async with self._session_factory() as session:
            endpoint = await session.get(WebhookEndpoint, endpoint_id)
            return EndpointInfo.from_model(endpoint) if endpoint else None


def generate_secret() -> str:
    """Generate a new endpoint signing secret (32 random bytes, hex)."""
    return secrets.token_hex(32)


def _normalize_events(events: Iterable[str] | None) -> list[str] | None:
    if events is None:
        return None

    normalized = []
    for event in events:
        try:
            normalized.append(WebhookEvent(event).value)
        except ValueError as e:
            raise EndpointConfigError(f"Unknown event type: {event}") from e
    # Preserve order, drop duplicates
    return list(dict.fromkeys(normalized))


def _check_secret(secret: str) -> None:
    if not secret.strip():
        raise EndpointConfigError("Endpoint secret must not be empty")
    if len(secret) > SECRET_MAX_LENGTH:
        raise EndpointConfigError(
            f"Endpoint secret must be at most {SECRET_MAX_LENGTH} characters"
        )


def _validate_url(url: str, allowed_hosts: Iterable[str]) -> str:
    try:
        return validate_endpoint_url(url, allowed_hosts=allowed_hosts)
    except ValueError as e:
        raise EndpointConfigError(f"Invalid endpoint URL: {e}") from e


async def create_endpoint(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    url: str,
    events: Iterable[str] | None = None,
    secret: str | None = None,
    allowed_hosts: Iterable[str] = (),
) -> WebhookEndpoint:
    """Register a subscriber endpoint.

    Args:
        session: Database session
        tenant_id: Owning tenant
        url: Destination URL
        events: Event names to subscribe to (None or empty = all events)
        secret: Signing secret; generated when not provided
        allowed_hosts: Hostnames exempt from SSRF checks

    Returns:
        The created endpoint

    Raises:
        EndpointConfigError: If the URL, secret or event list is invalid
    """
    if secret is not None:
        _check_secret(secret)
    url = _validate_url(url, allowed_hosts)

    endpoint = WebhookEndpoint(
        tenant_id=tenant_id,
        url=url,
        secret=secret if secret is not None else generate_secret(),
        events=_normalize_events(events),
        is_active=True,
    )
    session.add(endpoint)
    await session.flush()
    await session.refresh(endpoint)

    logger.info(f"Registered endpoint {endpoint.id} for tenant {tenant_id}")
    return endpoint


async def set_endpoint_active(
    session: AsyncSession,
    endpoint_id: uuid.UUID,
    is_active: bool,
) -> WebhookEndpoint | None:
    """Activate or deactivate an endpoint.

    Deactivation stops new jobs immediately; queued jobs for the endpoint
    resolve as skipped when they run.
    """
    endpoint = await session.get(WebhookEndpoint, endpoint_id)
    if endpoint is None:
        return None

    endpoint.is_active = is_active
    await session.flush()
    logger.info(f"Endpoint {endpoint_id} {'activated' if is_active else 'deactivated'}")
    return endpoint


async def rotate_secret(session: AsyncSession, endpoint_id: uuid.UUID) -> str | None:
    """Replace an endpoint's signing secret, returning the new one."""
    endpoint = await session.get(WebhookEndpoint, endpoint_id)
    if endpoint is None:
        return None

    endpoint.secret = generate_secret()
    await session.flush()
    logger.info(f"Rotated secret for endpoint {endpoint_id}")
    return endpoint.secret


async def update_endpoint(
    session: AsyncSession,
    endpoint_id: uuid.UUID,
    url: str | None = None,
    events: Iterable[str] | None = None,
    allowed_hosts: Iterable[str] = (),
) -> WebhookEndpoint | None:
    """Change an endpoint's URL or subscription list.

    Only the given fields change. A new URL goes through the same checks as
    at registration, and an empty event list subscribes to every event.
    Jobs already queued keep their endpoint id and see the change when they run.

    Raises:
        EndpointConfigError: If the URL or event list is invalid
    """
    endpoint = await session.get(WebhookEndpoint, endpoint_id)
    if endpoint is None:
        return None

    if url is not None:
        endpoint.url = _validate_url(url, allowed_hosts)
    if events is not None:
        endpoint.events = _normalize_events(events) or None

    await session.flush()
    logger.info(f"Updated endpoint {endpoint_id}")
    return endpoint


async def delete_endpoint(session: AsyncSession, endpoint_id: uuid.UUID) -> bool:
    """Delete an endpoint. Queued jobs for it resolve as skipped."""
    endpoint = await session.get(WebhookEndpoint, endpoint_id)
    if endpoint is None:
        return False

    await session.delete(endpoint)
    await session.flush()
    logger.info(f"Deleted endpoint {endpoint_id}")
    return True
