"""
Scheduler Service - Periodic sweep over projects and documentation due for reindexing.

Targets are processed one at a time to bound concurrent git fetches. A
failure on one target is recorded in its result and never stops the sweep,
and every processed target has its next run advanced.
"""

from dataclasses import asdict, dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.models import (
    DocumentationRepository,
    Project,
    QueuePriority,
    TargetType,
    TriggerType,
)
from orchestrator.services import reconciler
from orchestrator.services.change_detection import ChangeDetector, ChangeSource
from orchestrator.services.documentation import (
    get_documentation_repository,
    list_repositories_due_for_reindexing,
)
from orchestrator.services.jobs import get_active_documentation_job
from orchestrator.services.projects import get_project, list_projects_due_for_indexing
from orchestrator.services.queue import IndexingQueue
from orchestrator.services.triggers import (
    start_documentation_indexing,
    start_project_indexing,
)

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    target_type: str
    target_id: str
    name: str
    success: bool
    action: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


async def list_due_targets(db: AsyncSession) -> list[dict[str, Any]]:
    """Everything the next sweep would look at. Read-only."""
    projects = await list_projects_due_for_indexing(db)
    repositories = await list_repositories_due_for_reindexing(db)

    due = [
        {
            "target_type": TargetType.PROJECT.value,
            "target_id": p.id,
            "name": p.name,
            "branch": p.scheduled_indexing_branch,
            "next_run": p.scheduled_indexing_next_run,
            "index_status": p.index_status,
        }
        for p in projects
    ]
    due.extend(
        {
            "target_type": TargetType.DOCUMENTATION.value,
            "target_id": r.id,
            "name": r.name,
            "branch": r.branch,
            "next_run": r.next_reindex_at,
            "source_type": r.source_type,
        }
        for r in repositories
    )
    return due


async def _sweep_project(
    db: AsyncSession,
    queue: IndexingQueue,
    detector: ChangeDetector,
    project: Project,
) -> SweepResult:
    project_id, name = project.id, project.name

    def result(success: bool, action: str, message: str) -> SweepResult:
        return SweepResult(
            target_type=TargetType.PROJECT.value,
            target_id=project_id,
            name=name,
            success=success,
            action=action,
            message=message,
        )

    if project.is_indexing:
        return result(True, "skipped", "Indexing already in progress")

    check = await detector.needs_reindexing(ChangeSource.from_project(project))
    if check.error:
        return result(False, "check_failed", check.reason)
    if not check.needs_reindexing:
        return result(True, "no_changes", check.reason)

    full_reindex = not project.last_indexed_commit
    job = await start_project_indexing(
        db,
        queue,
        project_id,
        branch=project.scheduled_indexing_branch,
        full_reindex=full_reindex,
        triggered_by=TriggerType.SCHEDULED,
        priority=QueuePriority.LOW,
    )
    return result(
        True,
        "full_index" if full_reindex else "incremental_index",
        f"{check.reason}; queued job {job.id}",
    )


async def _sweep_documentation(
    db: AsyncSession,
    queue: IndexingQueue,
    detector: ChangeDetector,
    repository: DocumentationRepository,
) -> SweepResult:
    repository_id, name = repository.id, repository.name

    def result(success: bool, action: str, message: str) -> SweepResult:
        return SweepResult(
            target_type=TargetType.DOCUMENTATION.value,
            target_id=repository_id,
            name=name,
            success=success,
            action=action,
            message=message,
        )

    if await get_active_documentation_job(db, repository_id) is not None:
        return result(True, "skipped", "Indexing already in progress")

    check = await detector.needs_reindexing(ChangeSource.from_documentation(repository))
    if check.error:
        return result(False, "check_failed", check.reason)
    if not check.needs_reindexing:
        return result(True, "no_changes", check.reason)

    job = await start_documentation_indexing(
        db,
        queue,
        repository_id,
        force_reindex=False,
        triggered_by=TriggerType.SCHEDULED,
        priority=QueuePriority.LOW,
    )
    return result(True, "reindex", f"{check.reason}; queued job {job.id}")


async def run_scheduled_sweep(
    db: AsyncSession,
    queue: IndexingQueue,
    detector: ChangeDetector,
) -> dict[str, Any]:
    """
    Check every due target and queue the ones that changed.

    Returns:
        {"success", "projects_processed", "results"}
    """
    # Snapshot identities; a rollback inside one target expires loaded rows
    projects = [(p.id, p.name) for p in await list_projects_due_for_indexing(db)]
    repositories = [
        (r.id, r.name) for r in await list_repositories_due_for_reindexing(db)
    ]

    await logger.ainfo(
        "scheduled_sweep_started",
        due_projects=len(projects),
        due_documentation=len(repositories),
    )

    results: list[SweepResult] = []

    for project_id, name in projects:
        try:
            project = await get_project(db, project_id)
            outcome = await _sweep_project(db, queue, detector, project)
        except Exception as e:
            await db.rollback()
            await logger.aerror(
                "scheduled_project_failed",
                project_id=project_id,
                error=str(e),
            )
            outcome = SweepResult(
                target_type=TargetType.PROJECT.value,
                target_id=project_id,
                name=name,
                success=False,
                action="error",
                message=str(e),
            )
        results.append(outcome)

        try:
            await reconciler.advance_project_schedule(db, project_id)
        except Exception as e:
            await db.rollback()
            await logger.aerror(
                "schedule_advance_failed",
                project_id=project_id,
                error=str(e),
            )

    for repository_id, name in repositories:
        try:
            repository = await get_documentation_repository(db, repository_id)
            outcome = await _sweep_documentation(db, queue, detector, repository)
        except Exception as e:
            await db.rollback()
            await logger.aerror(
                "scheduled_documentation_failed",
                repository_id=repository_id,
                error=str(e),
            )
            outcome = SweepResult(
                target_type=TargetType.DOCUMENTATION.value,
                target_id=repository_id,
                name=name,
                success=False,
                action="error",
                message=str(e),
            )
        results.append(outcome)

        try:
            await reconciler.advance_documentation_schedule(db, repository_id)
        except Exception as e:
            await db.rollback()
            await logger.aerror(
                "schedule_advance_failed",
                repository_id=repository_id,
                error=str(e),
            )

    await logger.ainfo(
        "scheduled_sweep_completed",
        processed=len(results),
        failed=sum(1 for r in results if not r.success),
    )

    return {
        "success": True,
        "projects_processed": len(results),
        "results": [r.to_dict() for r in results],
    }
