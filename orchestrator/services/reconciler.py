"""
Status Reconciler - Writes job outcomes back onto their owning records.

This is the only writer of `Project.index_status` outcomes (COMPLETED/ERROR)
and of the next scheduled run times. The next run is advanced on success and
failure alike so a broken source keeps being retried on its interval instead
of stalling.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.database import utcnow
from orchestrator.models import (
    DocumentationRepository,
    IndexingOutcomeStatus,
    IndexStatus,
    Project,
)
from orchestrator.services.documentation import get_documentation_repository
from orchestrator.services.projects import get_project

logger = structlog.get_logger(__name__)


@dataclass
class IndexingOutcome:
    """Result of one indexing run, as seen by the reconciler."""

    success: bool
    commit_hash: str | None = None
    branch: str | None = None
    file_count: int | None = None
    vector_count: int | None = None
    total_documents: int | None = None
    duration_seconds: float | None = None
    error: str | None = None


def _next_run(now: datetime, interval_days: int) -> datetime:
    return now + timedelta(days=max(interval_days, 1))


async def reconcile_project(
    db: AsyncSession,
    project_id: str,
    outcome: IndexingOutcome,
) -> Project:
    """Record a finished project job on the project."""
    project = await get_project(db, project_id)
    now = utcnow()

    if outcome.success:
        project.index_status = IndexStatus.COMPLETED.value
        project.index_progress = 100
        project.last_indexed_at = now
        project.last_error = None
        if outcome.commit_hash:
            project.last_indexed_commit = outcome.commit_hash
        if outcome.branch:
            project.last_indexed_branch = outcome.branch
        if outcome.file_count is not None:
            project.file_count = outcome.file_count
        if outcome.vector_count is not None:
            project.vector_count = outcome.vector_count
    else:
        project.index_status = IndexStatus.ERROR.value
        project.last_error = outcome.error or "Indexing failed"

    if project.scheduled_indexing_enabled:
        project.scheduled_indexing_last_run = now
        project.scheduled_indexing_next_run = _next_run(now, project.scheduled_indexing_interval)

    await db.commit()
    await db.refresh(project)

    await logger.ainfo(
        "project_reconciled",
        project_id=project_id,
        status=project.index_status,
        file_count=project.file_count,
        vector_count=project.vector_count,
        next_run=project.scheduled_indexing_next_run.isoformat()
        if project.scheduled_indexing_next_run
        else None,
    )

    return project


async def reconcile_documentation(
    db: AsyncSession,
    repository_id: str,
    outcome: IndexingOutcome,
) -> DocumentationRepository:
    """Record a finished documentation job on its repository."""
    repository = await get_documentation_repository(db, repository_id)
    now = utcnow()

    repository.last_indexed_at = now
    repository.last_indexing_status = (
        IndexingOutcomeStatus.SUCCESS.value
        if outcome.success
        else IndexingOutcomeStatus.FAILED.value
    )
    repository.last_indexing_error = None if outcome.success else (outcome.error or "Indexing failed")
    if outcome.duration_seconds is not None:
        repository.last_indexing_duration = outcome.duration_seconds
    if outcome.success:
        if outcome.commit_hash:
            repository.last_indexed_commit = outcome.commit_hash
        if outcome.total_documents is not None:
            repository.total_documents = outcome.total_documents

    if repository.auto_reindex_enabled:
        repository.next_reindex_at = _next_run(now, repository.reindex_interval)

    await db.commit()
    await db.refresh(repository)

    await logger.ainfo(
        "documentation_reconciled",
        repository_id=repository_id,
        status=repository.last_indexing_status,
        total_documents=repository.total_documents,
    )

    return repository


async def advance_project_schedule(db: AsyncSession, project_id: str) -> Project:
    """Push a project's next scheduled run one interval past now."""
    project = await get_project(db, project_id)
    if project.scheduled_indexing_enabled:
        now = utcnow()
        project.scheduled_indexing_last_run = now
        project.scheduled_indexing_next_run = _next_run(now, project.scheduled_indexing_interval)
        await db.commit()
        await db.refresh(project)
    return project


async def advance_documentation_schedule(
    db: AsyncSession,
    repository_id: str,
) -> DocumentationRepository:
    """Push a documentation repository's next reindex one interval past now."""
    repository = await get_documentation_repository(db, repository_id)
    if repository.auto_reindex_enabled:
        repository.next_reindex_at = _next_run(utcnow(), repository.reindex_interval)
        await db.commit()
        await db.refresh(repository)
    return repository


async def configure_project_schedule(
    db: AsyncSession,
    project_id: str,
    enabled: bool,
    interval_days: int | None = None,
    branch: str | None = None,
) -> Project:
    """Enable, disable or retune a project's scheduled indexing."""
    project = await get_project(db, project_id)

    project.scheduled_indexing_enabled = enabled
    if interval_days is not None:
        project.scheduled_indexing_interval = interval_days
    if branch:
        project.scheduled_indexing_branch = branch

    if enabled:
        project.scheduled_indexing_next_run = _next_run(
            utcnow(), project.scheduled_indexing_interval
        )
    else:
        project.scheduled_indexing_next_run = None

    await db.commit()
    await db.refresh(project)

    await logger.ainfo(
        "project_schedule_configured",
        project_id=project_id,
        enabled=enabled,
        interval_days=project.scheduled_indexing_interval,
        branch=project.scheduled_indexing_branch,
    )

    return project
