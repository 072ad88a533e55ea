"""
Webhook Schemas - Response returned to git hosting platforms.
"""

from pydantic import BaseModel


class WebhookResponse(BaseModel):
    """Outcome of a push delivery; optional fields are omitted when unset."""

    message: str
    reason: str | None = None
    commit: str | None = None
    branch: str | None = None
    author: str | None = None
    job_id: str | None = None
