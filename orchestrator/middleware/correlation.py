"""
Correlation ID Middleware - Request tracing across async operations.

The ID is bound into structlog's context variables, so every log line
emitted while serving the request (including trigger and queue logs)
carries it.
"""

import contextvars
from typing import Callable
from uuid import uuid4

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

correlation_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

CORRELATION_ID_HEADER = "X-Correlation-ID"


def get_correlation_id() -> str:
    return correlation_id_ctx.get()


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Attach a correlation ID to the request, its logs and its response."""

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or uuid4().hex[:16]

        token = correlation_id_ctx.set(correlation_id)
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            structlog.contextvars.unbind_contextvars("correlation_id")
            correlation_id_ctx.reset(token)
