"""
Jobs Service - Indexing job records and their state machine.

PENDING -> RUNNING -> COMPLETED | FAILED, with CANCELLED reachable from both
active states. Transitions are conditional UPDATEs so a worker and a stop
request racing on the same row cannot both win.
"""

from typing import Any, TypeVar
from uuid import uuid4

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.core.errors import (
    DocumentationRepositoryNotFoundError,
    IndexingInProgressError,
    JobNotFoundError,
    JobStateError,
    ProjectNotFoundError,
)
from orchestrator.database import utcnow
from orchestrator.models import (
    ACTIVE_STATUSES,
    DocumentationIndexingJob,
    DocumentationRepository,
    IndexingJob,
    IndexStatus,
    JobStatus,
    Project,
    TriggerType,
)

logger = structlog.get_logger(__name__)

JobModel = TypeVar("JobModel", IndexingJob, DocumentationIndexingJob)


async def create_project_job(
    db: AsyncSession,
    project_id: str,
    branch: str,
    full_reindex: bool = False,
    triggered_by: TriggerType | str = TriggerType.MANUAL,
) -> IndexingJob:
    """
    Atomically claim the project and create a PENDING job for it.

    The project's `index_status` is flipped to INDEXING with a conditional
    UPDATE; the partial unique index on active jobs backs it up.

    Raises:
        ProjectNotFoundError: If the project doesn't exist
        IndexingInProgressError: If the project already has an active job
    """
    triggered_by = TriggerType(triggered_by).value

    claimed = await db.execute(
        update(Project)
        .where(
            Project.id == project_id,
            Project.index_status != IndexStatus.INDEXING.value,
        )
        .values(
            index_status=IndexStatus.INDEXING.value,
            index_progress=0,
            last_error=None,
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        exists = await db.scalar(select(Project.id).where(Project.id == project_id))
        await db.rollback()
        if exists is None:
            raise ProjectNotFoundError(project_id)
        raise IndexingInProgressError(project_id)

    job = IndexingJob(
        id=str(uuid4()),
        project_id=project_id,
        status=JobStatus.PENDING.value,
        branch=branch,
        full_reindex=full_reindex,
        triggered_by=triggered_by,
        progress=0,
    )
    db.add(job)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise IndexingInProgressError(project_id)
    await db.refresh(job)

    await logger.ainfo(
        "job_created",
        job_id=job.id,
        project_id=project_id,
        branch=branch,
        full_reindex=full_reindex,
        triggered_by=triggered_by,
    )

    return job


async def create_documentation_job(
    db: AsyncSession,
    repository_id: str,
    force_reindex: bool = False,
    triggered_by: TriggerType | str = TriggerType.MANUAL,
) -> DocumentationIndexingJob:
    """
    Create a PENDING job for a documentation repository.

    Raises:
        DocumentationRepositoryNotFoundError: If the repository doesn't exist
        IndexingInProgressError: If the repository already has an active job
    """
    triggered_by = TriggerType(triggered_by).value
    repository = await db.get(DocumentationRepository, repository_id)
    if repository is None:
        raise DocumentationRepositoryNotFoundError(repository_id)

    if await get_active_documentation_job(db, repository_id) is not None:
        raise IndexingInProgressError(repository_id)

    job = DocumentationIndexingJob(
        id=str(uuid4()),
        repository_id=repository_id,
        status=JobStatus.PENDING.value,
        branch=repository.branch,
        source_type=repository.source_type,
        force_reindex=force_reindex,
        triggered_by=triggered_by,
        progress=0,
    )
    db.add(job)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise IndexingInProgressError(repository_id)
    await db.refresh(job)

    await logger.ainfo(
        "documentation_job_created",
        job_id=job.id,
        repository_id=repository_id,
        source_type=job.source_type,
        triggered_by=triggered_by,
    )

    return job


async def get_job(
    db: AsyncSession,
    job_id: str,
    model: type[JobModel] = IndexingJob,
) -> JobModel:
    """
    Get job by ID.

    Raises:
        JobNotFoundError: If job doesn't exist
    """
    result = await db.execute(select(model).where(model.id == job_id))
    job = result.scalar_one_or_none()

    if not job:
        raise JobNotFoundError(job_id)

    return job


async def get_active_job(db: AsyncSession, project_id: str) -> IndexingJob | None:
    """Return the project's PENDING or RUNNING job, if any."""
    result = await db.execute(
        select(IndexingJob)
        .where(
            IndexingJob.project_id == project_id,
            IndexingJob.status.in_(ACTIVE_STATUSES),
        )
        .order_by(IndexingJob.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_active_documentation_job(
    db: AsyncSession,
    repository_id: str,
) -> DocumentationIndexingJob | None:
    result = await db.execute(
        select(DocumentationIndexingJob)
        .where(
            DocumentationIndexingJob.repository_id == repository_id,
            DocumentationIndexingJob.status.in_(ACTIVE_STATUSES),
        )
        .order_by(DocumentationIndexingJob.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_jobs_for_project(
    db: AsyncSession,
    project_id: str,
    limit: int = 20,
) -> list[IndexingJob]:
    """Get a project's most recent jobs, newest first."""
    result = await db.execute(
        select(IndexingJob)
        .where(IndexingJob.project_id == project_id)
        .order_by(IndexingJob.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def _transition(
    db: AsyncSession,
    job: JobModel,
    allowed_from: tuple[str, ...],
    action: str,
    values: dict[str, Any],
) -> JobModel:
    model = type(job)
    result = await db.execute(
        update(model)
        .where(model.id == job.id, model.status.in_(allowed_from))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        await db.refresh(job)
        raise JobStateError(job.id, job.status, action)

    await db.commit()
    await db.refresh(job)
    return job


async def start_job(db: AsyncSession, job: JobModel) -> JobModel:
    """Mark job as running."""
    await _transition(
        db,
        job,
        (JobStatus.PENDING.value,),
        "start",
        {"status": JobStatus.RUNNING.value, "started_at": utcnow()},
    )

    await logger.ainfo(
        "job_started",
        job_id=job.id,
        target_id=job.target_id,
        triggered_by=job.triggered_by,
    )

    return job


async def update_progress(
    db: AsyncSession,
    job: JobModel,
    processed: int,
    total: int,
    current: str | None = None,
) -> JobModel:
    """
    Record per-file progress for a running job.

    Raises:
        JobStateError: If the job is no longer RUNNING (e.g. it was cancelled)
    """
    progress = min(max(int(processed * 100 / total), 0), 100) if total else 0

    if isinstance(job, IndexingJob):
        values = {
            "processed_files": processed,
            "total_files": total,
            "current_file": current,
            "progress": progress,
        }
    else:
        values = {
            "processed_documents": processed,
            "total_documents": total,
            "progress": progress,
        }

    await _transition(db, job, (JobStatus.RUNNING.value,), "update", values)

    if isinstance(job, IndexingJob):
        await db.execute(
            update(Project)
            .where(Project.id == job.project_id)
            .values(index_progress=progress)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    return job


async def complete_job(
    db: AsyncSession,
    job: JobModel,
    commit_hash: str | None = None,
    **stats: int,
) -> JobModel:
    """
    Mark job as completed.

    `stats` carries vector/document counters (`vectors_added`,
    `documents_added`, ...) matching the job's columns.
    """
    values: dict[str, Any] = {
        "status": JobStatus.COMPLETED.value,
        "progress": 100,
        "completed_at": utcnow(),
        "commit_hash": commit_hash,
        **stats,
    }
    if isinstance(job, IndexingJob):
        values["current_file"] = None

    await _transition(db, job, (JobStatus.RUNNING.value,), "complete", values)

    await logger.ainfo(
        "job_completed",
        job_id=job.id,
        target_id=job.target_id,
        commit_hash=commit_hash,
        duration_seconds=job.duration_seconds,
        **stats,
    )

    return job


async def fail_job(
    db: AsyncSession,
    job: JobModel,
    error_message: str,
) -> JobModel:
    """Mark job as failed."""
    await _transition(
        db,
        job,
        ACTIVE_STATUSES,
        "fail",
        {
            "status": JobStatus.FAILED.value,
            "error_message": error_message,
            "completed_at": utcnow(),
        },
    )

    await logger.aerror(
        "job_failed",
        job_id=job.id,
        target_id=job.target_id,
        error=error_message,
    )

    return job


async def cancel_job(db: AsyncSession, job: JobModel) -> JobModel:
    """Mark a PENDING or RUNNING job as cancelled."""
    await _transition(
        db,
        job,
        ACTIVE_STATUSES,
        "cancel",
        {"status": JobStatus.CANCELLED.value, "completed_at": utcnow()},
    )

    await logger.ainfo(
        "job_cancelled",
        job_id=job.id,
        target_id=job.target_id,
    )

    return job


async def list_orphaned_jobs(
    db: AsyncSession,
    older_than,
    model: type[JobModel] = IndexingJob,
) -> list[JobModel]:
    """PENDING jobs created before `older_than` (queue membership checked by caller)."""
    result = await db.execute(
        select(model)
        .where(
            model.status == JobStatus.PENDING.value,
            model.created_at <= older_than,
        )
        .order_by(model.created_at)
    )
    return list(result.scalars().all())
