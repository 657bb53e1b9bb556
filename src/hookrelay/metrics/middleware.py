"""Prometheus metrics middleware for the operations API."""

import time
from collections.abc import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from hookrelay.metrics.definitions import REQUEST_DURATION, REQUEST_TOTAL

EXCLUDED_PATHS = frozenset({"/metrics", "/api/v1/health", "/api/v1/ready"})


def route_template(request: Request) -> str:
    """Label requests by route pattern so path parameters don't explode cardinality."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if path:
        return path
    return request.url.path.rstrip("/") or "/"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts requests and observes their duration.

    - hookrelay_requests_total{method, endpoint, status_code}
    - hookrelay_request_duration_seconds{method, endpoint}
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response: Response = await call_next(request)
        duration = time.perf_counter() - start_time

        endpoint = route_template(request)
        REQUEST_TOTAL.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(duration)

        return response
