"""
Documentation API - Indexing triggers for documentation sources.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.api.dependencies import get_queue
from orchestrator.database import get_db
from orchestrator.middleware import validate_api_key
from orchestrator.schemas import (
    DocumentationJobResponse,
    StartDocumentationIndexingRequest,
    StopIndexingResponse,
)
from orchestrator.services.queue import IndexingQueue
from orchestrator.services.triggers import (
    start_documentation_indexing,
    stop_documentation_indexing,
)

router = APIRouter(prefix="/docs", tags=["Documentation"])


@router.post(
    "/{repository_id}/index",
    response_model=DocumentationJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_indexing(
    repository_id: Annotated[str, Path(description="Documentation repository ID")],
    request: StartDocumentationIndexingRequest | None = None,
    db: AsyncSession = Depends(get_db),
    queue: IndexingQueue = Depends(get_queue),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> DocumentationJobResponse:
    """Queue a reindex of a documentation source."""
    request = request or StartDocumentationIndexingRequest()
    job = await start_documentation_indexing(
        db,
        queue,
        repository_id,
        force_reindex=request.force_reindex,
    )
    return DocumentationJobResponse.from_job(job)


@router.delete("/{repository_id}/index", response_model=StopIndexingResponse)
async def stop_indexing(
    repository_id: Annotated[str, Path(description="Documentation repository ID")],
    db: AsyncSession = Depends(get_db),
    queue: IndexingQueue = Depends(get_queue),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> StopIndexingResponse:
    job = await stop_documentation_indexing(db, queue, repository_id)
    return StopIndexingResponse(message="Indexing stopped", job_id=job.id)
