"""
Projects API - Manual indexing triggers and schedule settings.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.api.dependencies import get_queue
from orchestrator.database import get_db
from orchestrator.middleware import validate_api_key
from orchestrator.models import QueuePriority
from orchestrator.schemas import (
    IndexingJobResponse,
    ProjectIndexStatusResponse,
    ScheduleRequest,
    ScheduleResponse,
    StartIndexingRequest,
    StopIndexingResponse,
)
from orchestrator.services import get_active_job, get_project
from orchestrator.services.queue import IndexingQueue
from orchestrator.services.reconciler import configure_project_schedule
from orchestrator.services.triggers import start_project_indexing, stop_project_indexing

router = APIRouter(prefix="/projects", tags=["Projects"])


@router.post(
    "/{project_id}/index",
    response_model=IndexingJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_indexing(
    project_id: Annotated[str, Path(description="Project ID")],
    request: StartIndexingRequest | None = None,
    db: AsyncSession = Depends(get_db),
    queue: IndexingQueue = Depends(get_queue),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> IndexingJobResponse:
    """
    Queue an indexing run for a project.

    Operator-initiated runs go ahead of webhook and scheduled work. Returns
    409 if the project already has a PENDING or RUNNING job.
    """
    request = request or StartIndexingRequest()
    job = await start_project_indexing(
        db,
        queue,
        project_id,
        branch=request.branch,
        full_reindex=request.full_reindex,
        triggered_by=request.triggered_by,
        priority=QueuePriority.HIGH,
    )
    return IndexingJobResponse.from_job(job)


@router.delete("/{project_id}/index", response_model=StopIndexingResponse)
async def stop_indexing(
    project_id: Annotated[str, Path(description="Project ID")],
    db: AsyncSession = Depends(get_db),
    queue: IndexingQueue = Depends(get_queue),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> StopIndexingResponse:
    """
    Cancel the project's active job.

    A running job stops at its next file boundary; vectors already written
    are kept.
    """
    job = await stop_project_indexing(db, queue, project_id)
    return StopIndexingResponse(message="Indexing stopped", job_id=job.id)


@router.get("/{project_id}/index", response_model=ProjectIndexStatusResponse)
async def get_indexing_status(
    project_id: Annotated[str, Path(description="Project ID")],
    db: AsyncSession = Depends(get_db),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> ProjectIndexStatusResponse:
    project = await get_project(db, project_id)
    job = await get_active_job(db, project_id)

    return ProjectIndexStatusResponse(
        project_id=project.id,
        index_status=project.index_status,
        index_progress=project.index_progress,
        last_indexed_commit=project.last_indexed_commit,
        last_indexed_branch=project.last_indexed_branch,
        last_indexed_at=project.last_indexed_at,
        file_count=project.file_count,
        vector_count=project.vector_count,
        last_error=project.last_error,
        active_job=IndexingJobResponse.from_job(job) if job else None,
    )


def _schedule_response(project) -> ScheduleResponse:
    return ScheduleResponse(
        project_id=project.id,
        enabled=project.scheduled_indexing_enabled,
        interval_days=project.scheduled_indexing_interval,
        branch=project.scheduled_indexing_branch,
        last_run=project.scheduled_indexing_last_run,
        next_run=project.scheduled_indexing_next_run,
    )


@router.get("/{project_id}/schedule", response_model=ScheduleResponse)
async def get_schedule(
    project_id: Annotated[str, Path(description="Project ID")],
    db: AsyncSession = Depends(get_db),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> ScheduleResponse:
    project = await get_project(db, project_id)
    return _schedule_response(project)


@router.post("/{project_id}/schedule", response_model=ScheduleResponse)
async def update_schedule(
    project_id: Annotated[str, Path(description="Project ID")],
    request: ScheduleRequest,
    db: AsyncSession = Depends(get_db),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> ScheduleResponse:
    """
    Enable, disable or retune scheduled indexing.

    Enabling sets the first run one interval from now.
    """
    project = await configure_project_schedule(
        db,
        project_id,
        enabled=request.enabled,
        interval_days=request.interval_days,
        branch=request.branch,
    )
    return _schedule_response(project)
