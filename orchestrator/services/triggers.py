"""
Trigger Service - Manual, API and webhook entry points that create indexing work.

Every trigger goes through the same path: claim the target and create a
PENDING job in one step, then hand the job to the queue.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.config import get_settings
from orchestrator.core.errors import (
    IndexingInProgressError,
    NoActiveJobError,
    QueueUnavailableError,
)
from orchestrator.core.webhooks import UNKNOWN, classify, verify_signature
from orchestrator.models import (
    DocumentationIndexingJob,
    IndexingJob,
    QueuePriority,
    TargetType,
    TriggerType,
)
from orchestrator.services import jobs as jobs_service
from orchestrator.services import projects as projects_service
from orchestrator.services.documentation import get_documentation_repository
from orchestrator.services.queue import IndexingQueue, QueuedJob

settings = get_settings()
logger = structlog.get_logger(__name__)


async def _rollback_unqueued(
    db: AsyncSession,
    job: IndexingJob | DocumentationIndexingJob,
    error: Exception,
) -> None:
    await logger.aerror(
        "job_enqueue_failed",
        job_id=job.id,
        target_id=job.target_id,
        error=str(error),
    )
    await jobs_service.cancel_job(db, job)
    if isinstance(job, IndexingJob):
        await projects_service.reset_to_idle(db, job.project_id)


async def start_project_indexing(
    db: AsyncSession,
    queue: IndexingQueue,
    project_id: str,
    branch: str | None = None,
    full_reindex: bool = True,
    triggered_by: TriggerType | str = TriggerType.MANUAL,
    priority: QueuePriority = QueuePriority.HIGH,
) -> IndexingJob:
    """
    Start indexing a project.

    Raises:
        ProjectNotFoundError: If the project doesn't exist
        IndexingInProgressError: If the project already has an active job
        QueueUnavailableError: If the job could not be queued (it is cancelled)
    """
    branch = branch or settings.default_branch
    job = await jobs_service.create_project_job(
        db,
        project_id,
        branch=branch,
        full_reindex=full_reindex,
        triggered_by=triggered_by,
    )

    try:
        await queue.enqueue(
            QueuedJob(
                target_id=project_id,
                job_id=job.id,
                branch=branch,
                full_reindex=full_reindex,
                triggered_by=job.triggered_by,
            ),
            priority,
        )
    except Exception as e:
        await _rollback_unqueued(db, job, e)
        raise QueueUnavailableError(job.id, str(e)) from e

    await logger.ainfo(
        "indexing_triggered",
        project_id=project_id,
        job_id=job.id,
        triggered_by=job.triggered_by,
        priority=int(priority),
    )

    return job


async def stop_project_indexing(
    db: AsyncSession,
    queue: IndexingQueue,
    project_id: str,
) -> IndexingJob:
    """
    Cancel a project's active job and drop its waiting queue entries.

    A RUNNING job notices the cancellation at its next file boundary.

    Raises:
        ProjectNotFoundError: If the project doesn't exist
        NoActiveJobError: If nothing is PENDING or RUNNING
    """
    await projects_service.get_project(db, project_id)
    job = await jobs_service.get_active_job(db, project_id)
    if job is None:
        raise NoActiveJobError(project_id)

    await jobs_service.cancel_job(db, job)
    await projects_service.reset_to_idle(db, project_id)
    await queue.cancel_all_for_project(project_id)

    await logger.ainfo("indexing_stopped", project_id=project_id, job_id=job.id)

    return job


async def start_documentation_indexing(
    db: AsyncSession,
    queue: IndexingQueue,
    repository_id: str,
    force_reindex: bool = False,
    triggered_by: TriggerType | str = TriggerType.MANUAL,
    priority: QueuePriority = QueuePriority.HIGH,
) -> DocumentationIndexingJob:
    """
    Start indexing a documentation repository.

    Raises:
        DocumentationRepositoryNotFoundError: If the repository doesn't exist
        IndexingInProgressError: If it already has an active job
        QueueUnavailableError: If the job could not be queued (it is cancelled)
    """
    job = await jobs_service.create_documentation_job(
        db,
        repository_id,
        force_reindex=force_reindex,
        triggered_by=triggered_by,
    )

    try:
        await queue.enqueue(
            QueuedJob(
                target_type=TargetType.DOCUMENTATION.value,
                target_id=repository_id,
                job_id=job.id,
                branch=job.branch,
                full_reindex=force_reindex,
                triggered_by=job.triggered_by,
            ),
            priority,
        )
    except Exception as e:
        await _rollback_unqueued(db, job, e)
        raise QueueUnavailableError(job.id, str(e)) from e

    await logger.ainfo(
        "documentation_indexing_triggered",
        repository_id=repository_id,
        job_id=job.id,
        triggered_by=job.triggered_by,
    )

    return job


async def stop_documentation_indexing(
    db: AsyncSession,
    queue: IndexingQueue,
    repository_id: str,
) -> DocumentationIndexingJob:
    """
    Cancel a documentation repository's active job.

    Raises:
        DocumentationRepositoryNotFoundError: If the repository doesn't exist
        NoActiveJobError: If nothing is PENDING or RUNNING
    """
    await get_documentation_repository(db, repository_id)
    job = await jobs_service.get_active_documentation_job(db, repository_id)
    if job is None:
        raise NoActiveJobError(repository_id)

    await jobs_service.cancel_job(db, job)
    await queue.cancel_all_for_repository(repository_id)

    await logger.ainfo(
        "documentation_indexing_stopped",
        repository_id=repository_id,
        job_id=job.id,
    )

    return job


@dataclass
class WebhookResult:
    message: str
    project_id: str
    reason: str | None = None
    commit: str | None = None
    branch: str | None = None
    author: str | None = None
    job_id: str | None = None


async def handle_webhook(
    db: AsyncSession,
    queue: IndexingQueue,
    project_id: str,
    headers: Mapping[str, str],
    body: bytes,
) -> WebhookResult:
    """
    Process a push delivery for a project.

    Only a delivery that cannot be attributed to exactly one platform, or
    fails secret verification, is rejected. Everything else answers with a
    message describing what happened.

    Raises:
        ProjectNotFoundError: If the project doesn't exist
        InvalidWebhookError: If the platform or signature check fails
    """
    project = await projects_service.get_project(db, project_id)

    if not project.webhook_enabled:
        return WebhookResult(
            message="Webhooks are disabled for this project",
            project_id=project_id,
        )

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        payload = {}

    event = classify(headers, payload, body)
    verify_signature(event, project.webhook_secret)

    info = event.extract()
    if not info.should_index:
        await logger.ainfo(
            "webhook_ignored",
            project_id=project_id,
            platform=info.platform,
            reason=info.reason,
        )
        return WebhookResult(
            message="Webhook received but no indexing needed",
            project_id=project_id,
            reason=info.reason,
        )

    if project.is_indexing:
        return WebhookResult(message="Indexing already in progress", project_id=project_id)

    await projects_service.record_webhook(
        db,
        project,
        commit=info.commit,
        branch=info.branch,
        author=info.author,
    )

    branch = info.branch if info.branch and info.branch != UNKNOWN else settings.default_branch
    try:
        job = await jobs_service.create_project_job(
            db,
            project_id,
            branch=branch,
            full_reindex=False,
            triggered_by=TriggerType.WEBHOOK,
        )
    except IndexingInProgressError:
        return WebhookResult(message="Indexing already in progress", project_id=project_id)

    try:
        await queue.enqueue(
            QueuedJob(
                target_id=project_id,
                job_id=job.id,
                branch=branch,
                full_reindex=False,
                triggered_by=TriggerType.WEBHOOK.value,
            ),
            QueuePriority.NORMAL,
        )
    except Exception as e:
        # The orphan sweep picks the PENDING job up later
        await logger.aerror(
            "webhook_enqueue_failed",
            project_id=project_id,
            job_id=job.id,
            error=str(e),
        )

    await logger.ainfo(
        "webhook_indexing_triggered",
        project_id=project_id,
        platform=info.platform,
        commit=info.commit,
        branch=branch,
        author=info.author,
        job_id=job.id,
    )

    return WebhookResult(
        message="Webhook processed successfully, indexing started",
        project_id=project_id,
        commit=info.commit,
        branch=info.branch,
        author=info.author,
        job_id=job.id,
    )
