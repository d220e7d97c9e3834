# api/app/middleware/request_logging.py
"""
Request-level access logging for the provisioning API.
"""
from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        t0 = time.monotonic()
        response = await call_next(request)
        elapsed = (time.monotonic() - t0) * 1000
        client = request.client.host if request.client else "-"
        logger.info(
            "%s %s from %s -> %d (%.0fms)",
            request.method, request.url.path, client, response.status_code, elapsed,
        )
        return response
