"""Correlation ID middleware."""

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Add correlation ID to requests and responses, and log slow requests."""

    def __init__(self, app, slow_request_seconds: float = 2.0):
        super().__init__(app)
        self.slow_request_seconds = slow_request_seconds

    async def dispatch(self, request: Request, call_next):
        """Process request with correlation ID."""
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.monotonic()
        response: Response = await call_next(request)
        elapsed = time.monotonic() - started
        if elapsed > self.slow_request_seconds:
            logger.warning(
                f"Slow request {request.method} {request.url.path}: {elapsed:.2f}s",
                extra={"correlation_id": correlation_id},
            )

        response.headers["x-correlation-id"] = correlation_id
        return response
