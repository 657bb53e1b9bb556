"""Tests for endpoint registration and lookup."""

import uuid

import pytest

from hookrelay.db.models import WebhookEndpoint
from hookrelay.webhook.registry import (
    SECRET_MAX_LENGTH,
    EndpointConfigError,
    EndpointInfo,
    create_endpoint,
    delete_endpoint,
    generate_secret,
    rotate_secret,
    set_endpoint_active,
    update_endpoint,
)


class TestEndpointInfo:
    """Tests for subscription matching."""

    def _info(self, events=()):
        return EndpointInfo(
            id=uuid.uuid4(),
            tenant_id=uuid.uuid4(),
            url="https://example.com/hook",
            secret="s",
            events=tuple(events),
        )

    def test_empty_events_subscribes_to_all(self):
        info = self._info()
        assert info.subscribes_to("email.sent")
        assert info.subscribes_to("campaign.paused")

    def test_explicit_events_filter(self):
        info = self._info(["reply.interested"])
        assert info.subscribes_to("reply.interested")
        assert not info.subscribes_to("email.sent")


class TestCreateEndpoint:
    """Tests for create_endpoint."""

    @pytest.mark.asyncio
    async def test_generates_secret(self, test_session, tenant_id):
        endpoint = await create_endpoint(test_session, tenant_id, "https://example.com/hook")
        assert len(endpoint.secret) == 64
        assert endpoint.is_active is True
        assert endpoint.events is None

    @pytest.mark.asyncio
    async def test_explicit_secret_and_events(self, test_session, tenant_id):
        endpoint = await create_endpoint(
            test_session,
            tenant_id,
            "https://example.com/hook",
            events=["email.sent", "reply.received", "email.sent"],
            secret="my-secret",
        )
        assert endpoint.secret == "my-secret"
        assert endpoint.events == ["email.sent", "reply.received"]

    @pytest.mark.asyncio
    async def test_empty_secret_rejected(self, test_session, tenant_id):
        with pytest.raises(EndpointConfigError, match="secret"):
            await create_endpoint(test_session, tenant_id, "https://example.com/hook", secret=" ")

    @pytest.mark.asyncio
    async def test_overlong_secret_rejected(self, test_session, tenant_id):
        with pytest.raises(EndpointConfigError, match="at most 255"):
            await create_endpoint(
                test_session,
                tenant_id,
                "https://example.com/hook",
                secret="x" * (SECRET_MAX_LENGTH + 1),
            )

    @pytest.mark.asyncio
    async def test_secret_at_column_limit_accepted(self, test_session, tenant_id):
        endpoint = await create_endpoint(
            test_session,
            tenant_id,
            "https://example.com/hook",
            secret="x" * SECRET_MAX_LENGTH,
        )
        assert len(endpoint.secret) == SECRET_MAX_LENGTH

    @pytest.mark.asyncio
    async def test_unknown_event_rejected(self, test_session, tenant_id):
        with pytest.raises(EndpointConfigError, match="Unknown event type"):
            await create_endpoint(
                test_session, tenant_id, "https://example.com/hook", events=["email.read"]
            )

    @pytest.mark.asyncio
    async def test_blocked_url_rejected(self, test_session, tenant_id):
        with pytest.raises(EndpointConfigError, match="Invalid endpoint URL"):
            await create_endpoint(test_session, tenant_id, "http://127.0.0.1:9000/hook")

    @pytest.mark.asyncio
    async def test_allowed_internal_host(self, test_session, tenant_id):
        endpoint = await create_endpoint(
            test_session,
            tenant_id,
            "http://receiver:9000/hook",
            allowed_hosts=["receiver"],
        )
        assert endpoint.url == "http://receiver:9000/hook"

    def test_generate_secret_unique(self):
        assert generate_secret() != generate_secret()


class TestEndpointUpdates:
    """Tests for activation and secret rotation."""

    @pytest.mark.asyncio
    async def test_deactivate_and_activate(self, test_session, make_endpoint):
        endpoint = await make_endpoint()

        updated = await set_endpoint_active(test_session, endpoint.id, False)
        assert updated.is_active is False

        updated = await set_endpoint_active(test_session, endpoint.id, True)
        assert updated.is_active is True

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, test_session):
        assert await set_endpoint_active(test_session, uuid.uuid4(), False) is None
        assert await rotate_secret(test_session, uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_rotate_secret(self, test_session, make_endpoint):
        endpoint = await make_endpoint(secret="old")

        new_secret = await rotate_secret(test_session, endpoint.id)

        assert new_secret is not None
        assert new_secret != "old"
        stored = await test_session.get(WebhookEndpoint, endpoint.id)
        assert stored.secret == new_secret

    @pytest.mark.asyncio
    async def test_update_url_and_events(self, test_session, make_endpoint, registry):
        endpoint = await make_endpoint(events=["email.sent"])

        updated = await update_endpoint(
            test_session,
            endpoint.id,
            url="https://new.example.com/hook",
            events=["reply.received", "email.bounced"],
        )
        await test_session.commit()

        assert updated.url == "https://new.example.com/hook"
        info = await registry.get_endpoint(endpoint.id)
        assert info.events == ("reply.received", "email.bounced")
        assert info.subscribes_to("reply.received")
        assert not info.subscribes_to("email.sent")

    @pytest.mark.asyncio
    async def test_update_keeps_unspecified_fields(self, test_session, make_endpoint):
        endpoint = await make_endpoint(events=["email.sent"])

        updated = await update_endpoint(
            test_session, endpoint.id, url="https://other.example.com/hook"
        )

        assert updated.events == ["email.sent"]
        assert updated.secret == "s"

    @pytest.mark.asyncio
    async def test_update_empty_events_subscribes_to_all(
        self, test_session, make_endpoint, registry
    ):
        endpoint = await make_endpoint(events=["email.sent"])

        await update_endpoint(test_session, endpoint.id, events=[])
        await test_session.commit()

        info = await registry.get_endpoint(endpoint.id)
        assert info.events == ()
        assert info.subscribes_to("campaign.started")

    @pytest.mark.asyncio
    async def test_update_revalidates_url(self, test_session, make_endpoint):
        endpoint = await make_endpoint()

        with pytest.raises(EndpointConfigError, match="Invalid endpoint URL"):
            await update_endpoint(test_session, endpoint.id, url="http://169.254.169.254/")

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_event(self, test_session, make_endpoint):
        endpoint = await make_endpoint()

        with pytest.raises(EndpointConfigError, match="Unknown event type"):
            await update_endpoint(test_session, endpoint.id, events=["email.read"])

    @pytest.mark.asyncio
    async def test_delete_endpoint(self, test_session, make_endpoint, registry):
        endpoint = await make_endpoint()

        assert await delete_endpoint(test_session, endpoint.id) is True
        await test_session.commit()

        assert await registry.get_endpoint(endpoint.id) is None

    @pytest.mark.asyncio
    async def test_update_and_delete_missing_endpoint(self, test_session):
        assert await update_endpoint(test_session, uuid.uuid4(), events=[]) is None
        assert await delete_endpoint(test_session, uuid.uuid4()) is False


class TestSqlEndpointRegistry:
    """Tests for the database-backed registry."""

    @pytest.mark.asyncio
    async def test_list_active_endpoints(self, registry, make_endpoint, tenant_id):
        active = await make_endpoint(url="https://a.example.com/hook")
        await make_endpoint(url="https://b.example.com/hook", is_active=False)
        await make_endpoint(url="https://c.example.com/hook", tenant=uuid.uuid4())

        endpoints = await registry.list_active_endpoints(tenant_id)

        assert [e.id for e in endpoints] == [active.id]
        assert endpoints[0].secret == "s"
        assert endpoints[0].events == ()

    @pytest.mark.asyncio
    async def test_get_endpoint(self, registry, make_endpoint):
        endpoint = await make_endpoint(events=["email.sent"], is_active=False)

        info = await registry.get_endpoint(endpoint.id)

        assert info.id == endpoint.id
        assert info.events == ("email.sent",)
        assert info.is_active is False

    @pytest.mark.asyncio
    async def test_get_missing_endpoint(self, registry):
        assert await registry.get_endpoint(uuid.uuid4()) is None
