"""Access logging middleware for the operations API."""

import logging
import time
from collections.abc import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("hookrelay.access")


def client_address(request: Request) -> str:
    """Original client IP, honouring X-Forwarded-For behind a proxy."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request: IP METHOD PATH STATUS TIME_MS."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        response: Response = await call_next(request)
        process_time_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "%s %s %s %d %.2fms",
            client_address(request),
            request.method,
            request.url.path,
            response.status_code,
            process_time_ms,
        )

        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"
        return response
