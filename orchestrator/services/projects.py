"""
Projects Service - Project lookups and indexing-related field updates.
"""

from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.core.errors import ProjectNotFoundError
from orchestrator.database import utcnow
from orchestrator.models import IndexStatus, Project

logger = structlog.get_logger(__name__)


async def create_project(
    db: AsyncSession,
    name: str,
    git_repo: str,
    **fields,
) -> Project:
    """Create a project record."""
    project = Project(name=name, git_repo=git_repo, **fields)
    db.add(project)
    await db.commit()
    await db.refresh(project)

    await logger.ainfo("project_created", project_id=project.id, name=name)

    return project


async def get_project(db: AsyncSession, project_id: str) -> Project:
    """
    Get project by ID.

    Raises:
        ProjectNotFoundError: If project doesn't exist
    """
    result = await db.execute(
        select(Project)
        .where(Project.id == project_id)
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()

    if not project:
        raise ProjectNotFoundError(project_id)

    return project


async def list_projects_due_for_indexing(
    db: AsyncSession,
    now: datetime | None = None,
) -> list[Project]:
    """Projects with scheduled indexing enabled whose next run has passed."""
    now = now or utcnow()
    result = await db.execute(
        select(Project)
        .where(
            Project.scheduled_indexing_enabled.is_(True),
            Project.scheduled_indexing_next_run.is_not(None),
            Project.scheduled_indexing_next_run <= now,
        )
        .order_by(Project.scheduled_indexing_next_run)
    )
    return list(result.scalars().all())


async def record_webhook(
    db: AsyncSession,
    project: Project,
    commit: str,
    branch: str,
    author: str,
) -> Project:
    """Store metadata of the latest accepted push."""
    project.last_webhook_at = utcnow()
    project.last_webhook_commit = commit
    project.last_webhook_branch = branch
    project.last_webhook_author = author
    await db.commit()
    await db.refresh(project)
    return project


async def reset_to_idle(db: AsyncSession, project_id: str) -> None:
    """Release the project's INDEXING claim without recording an outcome."""
    await db.execute(
        update(Project)
        .where(Project.id == project_id)
        .values(index_status=IndexStatus.IDLE.value, index_progress=0)
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()

    await logger.ainfo("project_reset_to_idle", project_id=project_id)
