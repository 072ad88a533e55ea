"""
Jobs API - Job tracking endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.database import get_db
from orchestrator.middleware import validate_api_key
from orchestrator.schemas import IndexingJobResponse, JobListResponse
from orchestrator.services import get_job, get_jobs_for_project, get_project

router = APIRouter(tags=["Jobs"])


@router.get("/jobs/{job_id}", response_model=IndexingJobResponse)
async def get_job_status(
    job_id: Annotated[str, Path(description="Job ID")],
    db: AsyncSession = Depends(get_db),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> IndexingJobResponse:
    """
    Get the status of an indexing job.

    Returns progress, file counters, vector statistics and the error
    message if the job failed.
    """
    job = await get_job(db, job_id)
    return IndexingJobResponse.from_job(job)


@router.get("/projects/{project_id}/jobs", response_model=JobListResponse)
async def list_project_jobs(
    project_id: Annotated[str, Path(description="Project ID")],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    db: AsyncSession = Depends(get_db),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> JobListResponse:
    """List a project's jobs, newest first."""
    await get_project(db, project_id)
    jobs = await get_jobs_for_project(db, project_id, limit=limit)

    return JobListResponse(
        project_id=project_id,
        jobs=[IndexingJobResponse.from_job(job) for job in jobs],
        total=len(jobs),
    )
