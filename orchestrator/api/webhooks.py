"""
Webhooks API - Push deliveries from GitHub, GitLab and Bitbucket.

Authentication is per project: the platform signature or token is checked
against the project's webhook secret, so no API key is required here.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.api.dependencies import get_queue
from orchestrator.database import get_db
from orchestrator.schemas import WebhookResponse
from orchestrator.services.queue import IndexingQueue
from orchestrator.services.triggers import handle_webhook

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/{project_id}",
    response_model=WebhookResponse,
    response_model_exclude_none=True,
)
async def receive_webhook(
    project_id: Annotated[str, Path(description="Project ID")],
    request: Request,
    db: AsyncSession = Depends(get_db),
    queue: IndexingQueue = Depends(get_queue),
) -> WebhookResponse:
    """
    Handle a push event.

    Answers 200 whether indexing was started or skipped; 401 when the
    platform can't be identified or the signature doesn't match.
    """
    body = await request.body()
    result = await handle_webhook(db, queue, project_id, request.headers, body)

    return WebhookResponse(
        message=result.message,
        reason=result.reason,
        commit=result.commit,
        branch=result.branch,
        author=result.author,
        job_id=result.job_id,
    )
