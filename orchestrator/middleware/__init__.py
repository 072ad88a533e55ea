"""Middleware package - Production middleware components."""

from orchestrator.middleware.auth import validate_api_key
from orchestrator.middleware.correlation import (
    CORRELATION_ID_HEADER,
    CorrelationMiddleware,
    get_correlation_id,
)
from orchestrator.middleware.logging import LoggingMiddleware
from orchestrator.middleware.rate_limit import RateLimitMiddleware

__all__ = [
    # Correlation
    "CorrelationMiddleware",
    "get_correlation_id",
    "CORRELATION_ID_HEADER",
    # Logging
    "LoggingMiddleware",
    # Rate limiting
    "RateLimitMiddleware",
    # Auth
    "validate_api_key",
]
