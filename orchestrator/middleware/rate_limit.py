"""
Rate Limiting Middleware - Request rate limiting per API key or client.
"""

import time
from collections import defaultdict
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from orchestrator.config import get_settings
from orchestrator.core.errors import RateLimitedError

settings = get_settings()

EXEMPT_PATHS = ("/health", "/ready", "/docs", "/openapi.json")


class RateLimiter:
    """In-memory sliding window limiter."""

    def __init__(self, requests_per_minute: int = 100):
        self.requests_per_minute = requests_per_minute
        self.window_size = 60
        self.requests: dict[str, list[float]] = defaultdict(list)

    def is_allowed(self, key: str) -> tuple[bool, int]:
        """
        Record a request for `key` if it fits in the window.

        Returns:
            Tuple of (is_allowed, retry_after_seconds)
        """
        now = time.time()
        window_start = now - self.window_size

        recent = [ts for ts in self.requests[key] if ts > window_start]
        self.requests[key] = recent

        if len(recent) >= self.requests_per_minute:
            retry_after = int(min(recent) + self.window_size - now) + 1
            return False, retry_after

        recent.append(now)
        return True, 0


rate_limiter = RateLimiter(settings.rate_limit_per_minute)


def _client_key(request: Request) -> str:
    # Webhooks are bucketed per project
    if request.url.path.startswith("/webhooks/"):
        return f"webhook:{request.url.path.rsplit('/', 1)[-1]}"

    api_key = request.headers.get(settings.api_key_header, "")
    if api_key:
        return f"api:{api_key[:8]}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests over the per-minute budget with a 429."""

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        allowed, retry_after = rate_limiter.is_allowed(_client_key(request))

        if not allowed:
            error = RateLimitedError(retry_after=retry_after)
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response().model_dump(mode="json", exclude_none=True),
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)
