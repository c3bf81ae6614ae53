"""Middleware that reports gateway and API traffic on the event bus."""
import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

logger = logging.getLogger(__name__)

TRACKED_PREFIXES = ("/webhooks", "/api")


class NetworkRecordMiddleware(BaseHTTPMiddleware):
    """Publish a network call record for every tracked request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if not path.startswith(TRACKED_PREFIXES):
            return await call_next(request)

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            latency_ms = (time.perf_counter() - start_time) * 1000
            runtime = getattr(request.app.state, "runtime", None)
            if runtime is not None:
                runtime.bus.network_call(request.method, path, status_code, latency_ms)
            logger.debug(f"[NETWORK] {request.method} {path} -> {status_code} ({latency_ms:.1f}ms)")
