"""Single delivery attempts against subscriber endpoints."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from hookrelay.config import Settings, get_settings
from hookrelay.db.enums import WebhookEvent
from hookrelay.metrics.definitions import WEBHOOK_ATTEMPT_DURATION, WEBHOOK_ATTEMPTS_TOTAL
from hookrelay.webhook.delivery_log import DeliveryLogWriter
from hookrelay.webhook.models import DeliveryJob, DeliveryOutcome
from hookrelay.webhook.registry import EndpointInfo, EndpointRegistry
from hookrelay.webhook.signing import compute_signature, format_signature_header

logger = logging.getLogger(__name__)


def iso_timestamp(moment: datetime | None = None) -> str:
    """UTC ISO-8601 timestamp with millisecond precision, e.g. 2024-01-01T12:00:00.000Z."""
    moment = moment or datetime.now(UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_envelope(event_type: str, timestamp: str, payload: dict[str, Any]) -> bytes:
    """Serialize the delivered body. These exact bytes are signed and sent."""
    envelope = {"event": event_type, "timestamp": timestamp, "data": payload}
    return json.dumps(envelope, separators=(",", ":"), default=str).encode()


def build_headers(
    endpoint_id: str,
    event_type: str,
    signature: str,
    timestamp: str,
    user_agent: str,
) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Webhook-Event": event_type,
        "X-Webhook-Signature": format_signature_header(signature),
        "X-Webhook-Timestamp": timestamp,
        "X-Webhook-Id": endpoint_id,
        "User-Agent": user_agent,
    }


@dataclass
class TestDeliveryResult:
    """Result of a one-off test delivery."""

    success: bool
    status_code: int | None = None
    error: str | None = None
    response_time_ms: float | None = None


class DeliveryExecutor:
    """Performs one signed POST per job and classifies the result.

    The executor never retries; the caller decides what follows an outcome.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        delivery_log: DeliveryLogWriter,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.registry = registry
        self.delivery_log = delivery_log
        self.settings = settings or get_settings()
        self._http_client = client
        self._owns_client = client is None
        self._http_client_lock = asyncio.Lock()

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None:
            async with self._http_client_lock:
                # Double-check after acquiring lock
                if self._http_client is None:
                    self._http_client = httpx.AsyncClient(
                        timeout=self.settings.webhook_timeout,
                        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                    )
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this executor created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def attempt(self, job: DeliveryJob) -> DeliveryOutcome:
        """Run one delivery attempt and record it in the delivery log.

        Endpoints that vanished or were deactivated after the job was
        enqueued resolve as skipped without any HTTP call. A failed lookup
        is a network error, so it is logged and retried like any other.
        """
        outcome = await self._deliver(job)

        WEBHOOK_ATTEMPTS_TOTAL.labels(outcome=outcome.kind.value).inc()
        await self.delivery_log.record(
            job.endpoint_id,
            job.event_type,
            outcome,
            attempt=job.attempt,
        )

        if outcome.is_failure:
            logger.info(
                f"Delivery of {job.event_type} to endpoint {job.endpoint_id} "
                f"failed (attempt {job.attempt}): {outcome.error}"
            )
        return outcome

    async def _deliver(self, job: DeliveryJob) -> DeliveryOutcome:
        try:
            endpoint = await self.registry.get_endpoint(job.endpoint_id)
        except Exception as e:
            logger.exception(f"Failed to look up endpoint {job.endpoint_id}")
            return DeliveryOutcome.network_error(f"Endpoint lookup failed: {e}")

        if endpoint is None:
            logger.info(f"Endpoint {job.endpoint_id} not found, skipping {job.event_type}")
            return DeliveryOutcome.skipped("endpoint_not_found")
        if not endpoint.is_active:
            logger.info(f"Endpoint {job.endpoint_id} is inactive, skipping {job.event_type}")
            return DeliveryOutcome.skipped("endpoint_inactive")

        outcome, _ = await self._post(endpoint, job.event_type, job.payload)
        return outcome

    async def _post(
        self,
        endpoint: EndpointInfo,
        event_type: str,
        payload: dict[str, Any],
    ) -> tuple[DeliveryOutcome, float]:
        """Sign and POST an envelope.

        Returns:
            Tuple of (outcome, elapsed_seconds)
        """
        deadline = self.settings.webhook_timeout
        timestamp = iso_timestamp()
        body = encode_envelope(event_type, timestamp, payload)
        headers = build_headers(
            endpoint_id=str(endpoint.id),
            event_type=event_type,
            signature=compute_signature(body, endpoint.secret),
            timestamp=timestamp,
            user_agent=self.settings.webhook_user_agent,
        )

        client = await self._get_http_client()
        start_time = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                client.post(endpoint.url, content=body, headers=headers, timeout=deadline),
                timeout=deadline,
            )
        except (httpx.TimeoutException, TimeoutError):
            outcome = DeliveryOutcome.timed_out(f"Request timed out after {deadline:g}s")
        except httpx.HTTPError as e:
            outcome = DeliveryOutcome.network_error(f"Connection error: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error sending webhook to {endpoint.url}")
            outcome = DeliveryOutcome.network_error(f"Unexpected error: {e}")
        else:
            if 200 <= response.status_code < 300:
                outcome = DeliveryOutcome.delivered(response.status_code)
            else:
                outcome = DeliveryOutcome.rejected(
                    response.status_code,
                    f"HTTP {response.status_code}: {response.text[:200]}",
                )

        elapsed = time.perf_counter() - start_time
        WEBHOOK_ATTEMPT_DURATION.observe(elapsed)
        return outcome, elapsed

    async def send_test(self, endpoint: EndpointInfo) -> TestDeliveryResult:
        """Send a single webhook.test event, without logging or retrying."""
        payload = {
            "message": "This is a test webhook delivery",
            "webhook_id": str(endpoint.id),
        }
        outcome, elapsed = await self._post(endpoint, WebhookEvent.WEBHOOK_TEST.value, payload)
        return TestDeliveryResult(
            success=not outcome.is_failure,
            status_code=outcome.status_code,
            error=outcome.error,
            response_time_ms=round(elapsed * 1000, 2),
        )

    async def send_dead_letter_alert(self, job: DeliveryJob, outcome: DeliveryOutcome) -> None:
        """Notify the configured dead letter URL that a delivery was abandoned.

        Best effort: failures are logged and ignored.
        """
        url = self.settings.dlq_webhook_url
        if not url:
            return

        alert = {
            "type": "delivery_exhausted",
            "timestamp": iso_timestamp(),
            "endpoint_id": str(job.endpoint_id),
            "event_type": job.event_type,
            "attempts": job.attempt,
            "last_outcome": outcome.kind.value,
            "last_status_code": outcome.status_code,
            "last_error": outcome.error,
        }
        try:
            client = await self._get_http_client()
            response = await client.post(
                url,
                json=alert,
                headers={"User-Agent": self.settings.webhook_user_agent},
                timeout=self.settings.webhook_timeout,
            )
            if not response.is_success:
                logger.warning(f"Dead letter alert returned HTTP {response.status_code}")
        except Exception:
            logger.exception(f"Failed to send dead letter alert for endpoint {job.endpoint_id}")
