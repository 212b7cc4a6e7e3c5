"""Middleware for handling correlation IDs in FastAPI requests."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from utils import clear_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Binds a correlation ID to each request and echoes it in the response."""

    def __init__(self, app, correlation_header: str = "X-Correlation-ID"):
        super().__init__(app)
        self.correlation_header = correlation_header

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(self.correlation_header) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()

        response.headers[self.correlation_header] = correlation_id
        logger.info(
            f"HTTP request completed: {request.method} {request.url.path}",
            serviceName="CorrelationMiddleware",
            operationName="handleRequest",
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            success=200 <= response.status_code < 400,
        )
        return response
