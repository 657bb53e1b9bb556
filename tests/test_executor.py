"""Tests for single delivery attempts."""

import asyncio
import json
import re
import uuid

import httpx
import pytest
from sqlalchemy import select

from hookrelay.db.enums import DeliveryOutcomeKind
from hookrelay.db.models import DeliveryLogEntry
from hookrelay.webhook.delivery_log import DeliveryLogWriter
from hookrelay.webhook.executor import DeliveryExecutor, encode_envelope, iso_timestamp
from hookrelay.webhook.models import DeliveryJob, DeliveryOutcome
from hookrelay.webhook.registry import EndpointInfo
from hookrelay.webhook.signing import verify_signature

ALERT_URL = "https://alerts.example.com"
TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


@pytest.fixture
def make_executor(registry, session_factory, test_settings, mock_http):
    def _make(handler, settings=None):
        return DeliveryExecutor(
            registry,
            DeliveryLogWriter(session_factory),
            settings=settings or test_settings,
            client=mock_http(handler),
        )

    return _make


async def _log_entries(session) -> list[DeliveryLogEntry]:
    result = await session.execute(select(DeliveryLogEntry).order_by(DeliveryLogEntry.created_at))
    return list(result.scalars().all())


class TestEnvelope:
    """Tests for envelope encoding."""

    def test_timestamp_format(self):
        assert TIMESTAMP_RE.match(iso_timestamp())

    def test_compact_json(self):
        body = encode_envelope("email.sent", "2024-01-01T00:00:00.000Z", {"emailId": "1"})
        assert body == (
            b'{"event":"email.sent","timestamp":"2024-01-01T00:00:00.000Z",'
            b'"data":{"emailId":"1"}}'
        )


class TestAttempt:
    """Tests for DeliveryExecutor.attempt."""

    @pytest.mark.asyncio
    async def test_delivered_request_shape(self, make_executor, make_endpoint, test_session):
        endpoint = await make_endpoint(secret="s")
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        job = DeliveryJob(endpoint.id, "email.opened", {"emailId": "1"})
        outcome = await make_executor(handler).attempt(job)

        assert outcome == DeliveryOutcome.delivered(200)
        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == endpoint.url
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Webhook-Event"] == "email.opened"
        assert request.headers["X-Webhook-Id"] == str(endpoint.id)
        assert request.headers["User-Agent"] == "Hookrelay-Webhook/1.0"

        body = request.content
        envelope = json.loads(body)
        assert envelope["event"] == "email.opened"
        assert envelope["data"] == {"emailId": "1"}
        assert TIMESTAMP_RE.match(envelope["timestamp"])
        assert request.headers["X-Webhook-Timestamp"] == envelope["timestamp"]
        assert verify_signature(body, "s", request.headers["X-Webhook-Signature"])

        entries = await _log_entries(test_session)
        assert len(entries) == 1
        assert entries[0].outcome == "delivered"
        assert entries[0].http_status == 200
        assert entries[0].attempt == 1

    @pytest.mark.asyncio
    async def test_any_2xx_is_delivered(self, make_executor, make_endpoint):
        endpoint = await make_endpoint()

        outcome = await make_executor(lambda r: httpx.Response(204)).attempt(
            DeliveryJob(endpoint.id, "email.sent")
        )

        assert outcome.kind == DeliveryOutcomeKind.DELIVERED
        assert outcome.status_code == 204

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [301, 400, 404, 500, 503])
    async def test_non_2xx_is_rejected(self, make_executor, make_endpoint, status_code):
        endpoint = await make_endpoint()

        outcome = await make_executor(lambda r: httpx.Response(status_code, text="nope")).attempt(
            DeliveryJob(endpoint.id, "email.sent")
        )

        assert outcome.kind == DeliveryOutcomeKind.REJECTED
        assert outcome.status_code == status_code
        assert outcome.error == f"HTTP {status_code}: nope"

    @pytest.mark.asyncio
    async def test_rejected_error_truncates_body(self, make_executor, make_endpoint):
        endpoint = await make_endpoint()

        outcome = await make_executor(lambda r: httpx.Response(500, text="x" * 1000)).attempt(
            DeliveryJob(endpoint.id, "email.sent")
        )

        assert outcome.error == "HTTP 500: " + "x" * 200

    @pytest.mark.asyncio
    async def test_httpx_timeout_is_timed_out(self, make_executor, make_endpoint, test_session):
        endpoint = await make_endpoint()

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        outcome = await make_executor(handler).attempt(DeliveryJob(endpoint.id, "email.sent"))

        assert outcome.kind == DeliveryOutcomeKind.TIMED_OUT
        assert outcome.status_code is None
        entries = await _log_entries(test_session)
        assert entries[0].outcome == "timed_out"
        assert entries[0].http_status == 0

    @pytest.mark.asyncio
    async def test_deadline_is_enforced(self, make_executor, make_endpoint, test_settings):
        endpoint = await make_endpoint()
        settings = test_settings.model_copy(update={"webhook_timeout": 0.05})

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        outcome = await make_executor(handler, settings).attempt(
            DeliveryJob(endpoint.id, "email.sent")
        )

        assert outcome.kind == DeliveryOutcomeKind.TIMED_OUT

    @pytest.mark.asyncio
    async def test_connection_error_is_network_error(self, make_executor, make_endpoint):
        endpoint = await make_endpoint()

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        outcome = await make_executor(handler).attempt(DeliveryJob(endpoint.id, "email.sent"))

        assert outcome.kind == DeliveryOutcomeKind.NETWORK_ERROR
        assert "connection refused" in outcome.error

    @pytest.mark.asyncio
    async def test_unexpected_error_is_network_error(self, make_executor, make_endpoint):
        endpoint = await make_endpoint()

        def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("boom")

        outcome = await make_executor(handler).attempt(DeliveryJob(endpoint.id, "email.sent"))

        assert outcome.kind == DeliveryOutcomeKind.NETWORK_ERROR
        assert "boom" in outcome.error

    @pytest.mark.asyncio
    async def test_missing_endpoint_skipped(self, make_executor, test_session):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200)

        outcome = await make_executor(handler).attempt(DeliveryJob(uuid.uuid4(), "email.sent"))

        assert outcome.kind == DeliveryOutcomeKind.SKIPPED
        assert outcome.error == "endpoint_not_found"
        assert calls == []
        entries = await _log_entries(test_session)
        assert [e.outcome for e in entries] == ["skipped"]

    @pytest.mark.asyncio
    async def test_inactive_endpoint_skipped(self, make_executor, make_endpoint):
        endpoint = await make_endpoint(is_active=False)
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200)

        outcome = await make_executor(handler).attempt(DeliveryJob(endpoint.id, "email.sent"))

        assert outcome == DeliveryOutcome.skipped("endpoint_inactive")
        assert calls == []

    @pytest.mark.asyncio
    async def test_records_attempt_number(self, make_executor, make_endpoint, test_session):
        endpoint = await make_endpoint()

        await make_executor(lambda r: httpx.Response(500)).attempt(
            DeliveryJob(endpoint.id, "email.sent", attempt=3)
        )

        entries = await _log_entries(test_session)
        assert entries[0].attempt == 3
        assert entries[0].outcome == "rejected"
        assert entries[0].http_status == 500

    @pytest.mark.asyncio
    async def test_lookup_failure_is_network_error(self, make_executor, test_session):
        executor = make_executor(lambda r: httpx.Response(200))

        async def broken_lookup(endpoint_id):
            raise RuntimeError("database unavailable")

        executor.registry.get_endpoint = broken_lookup

        outcome = await executor.attempt(DeliveryJob(uuid.uuid4(), "email.sent", attempt=2))

        assert outcome.kind == DeliveryOutcomeKind.NETWORK_ERROR
        assert outcome.error == "Endpoint lookup failed: database unavailable"
        entries = await _log_entries(test_session)
        assert [(e.outcome, e.attempt) for e in entries] == [("network_error", 2)]


class TestSendTest:
    """Tests for one-off test deliveries."""

    def _info(self) -> EndpointInfo:
        return EndpointInfo(
            id=uuid.uuid4(),
            tenant_id=uuid.uuid4(),
            url="https://example.com/hook",
            secret="s",
        )

    @pytest.mark.asyncio
    async def test_success(self, make_executor, test_session):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200)

        result = await make_executor(handler).send_test(self._info())

        assert result.success is True
        assert result.status_code == 200
        assert result.error is None
        assert result.response_time_ms >= 0
        assert seen[0]["event"] == "webhook.test"
        # Test sends are not logged
        assert await _log_entries(test_session) == []

    @pytest.mark.asyncio
    async def test_failure(self, make_executor):
        result = await make_executor(lambda r: httpx.Response(502, text="bad gateway")).send_test(
            self._info()
        )

        assert result.success is False
        assert result.status_code == 502
        assert result.error == "HTTP 502: bad gateway"


class TestDeadLetterAlert:
    """Tests for the exhaustion alert."""

    @pytest.mark.asyncio
    async def test_alert_posted(self, make_executor, test_settings):
        settings = test_settings.model_copy(update={"dlq_webhook_url": ALERT_URL})
        alerts = []

        def handler(request: httpx.Request) -> httpx.Response:
            alerts.append((request.url.host, json.loads(request.content)))
            return httpx.Response(200)

        job = DeliveryJob(uuid.uuid4(), "email.sent", attempt=5)
        await make_executor(handler, settings).send_dead_letter_alert(
            job, DeliveryOutcome.timed_out()
        )

        assert len(alerts) == 1
        host, alert = alerts[0]
        assert host == "alerts.example.com"
        assert alert["type"] == "delivery_exhausted"
        assert alert["endpoint_id"] == str(job.endpoint_id)
        assert alert["attempts"] == 5
        assert alert["last_outcome"] == "timed_out"

    @pytest.mark.asyncio
    async def test_no_url_no_request(self, make_executor):
        calls = []
        executor = make_executor(lambda r: calls.append(r) or httpx.Response(200))

        await executor.send_dead_letter_alert(
            DeliveryJob(uuid.uuid4(), "email.sent", attempt=5), DeliveryOutcome.timed_out()
        )

        assert calls == []

    @pytest.mark.asyncio
    async def test_alert_failure_swallowed(self, make_executor, test_settings, caplog):
        settings = test_settings.model_copy(update={"dlq_webhook_url": ALERT_URL})

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        await make_executor(handler, settings).send_dead_letter_alert(
            DeliveryJob(uuid.uuid4(), "email.sent", attempt=5), DeliveryOutcome.timed_out()
        )

        assert "Failed to send dead letter alert" in caplog.text
