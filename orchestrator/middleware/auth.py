"""
Authentication Middleware - Static API key for trigger and admin endpoints.

Webhook endpoints do not use this; they authenticate through the platform
signature or token instead.
"""

import secrets
from typing import Annotated

from fastapi import Security
from fastapi.security import APIKeyHeader

from orchestrator.config import get_settings
from orchestrator.core.errors import UnauthorizedError

settings = get_settings()

# API Key header security scheme
api_key_header = APIKeyHeader(
    name=settings.api_key_header,
    auto_error=False,
)


async def validate_api_key(
    api_key: Annotated[str | None, Security(api_key_header)],
) -> str | None:
    """
    Validate API key from request header.

    In development mode, or when no admin key is configured, no API key is
    required. A key that is sent must always match.
    """
    if not api_key:
        if settings.app_env == "development" or not settings.admin_api_key:
            return None
        raise UnauthorizedError("API key required")

    if not settings.admin_api_key or not secrets.compare_digest(
        api_key.encode(), settings.admin_api_key.encode()
    ):
        raise UnauthorizedError("Invalid API key")

    return api_key
