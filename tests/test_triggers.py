import asyncio

import pytest
from sqlalchemy import func, select

from orchestrator.core.errors import (
    IndexingInProgressError,
    NoActiveJobError,
    ProjectNotFoundError,
    QueueUnavailableError,
)
from orchestrator.models import (
    DocumentationIndexingJob,
    IndexingJob,
    IndexStatus,
    JobStatus,
    Project,
    QueueEntry,
    QueueEntryStatus,
    QueuePriority,
    TriggerType,
)
from orchestrator.services import triggers
from orchestrator.services.documentation import create_documentation_repository
from orchestrator.services.projects import create_project
from orchestrator.services.triggers import (
    handle_webhook,
    start_documentation_indexing,
    start_project_indexing,
    stop_documentation_indexing,
    stop_project_indexing,
)

from tests.conftest import fetch
from tests.payloads import COMMIT, encode, github_headers, github_push


class BrokenQueue:
    """Queue whose store is down."""

    async def enqueue(self, job, priority):
        raise ConnectionError("queue store unreachable")

    async def cancel_all_for_project(self, project_id):
        return 0


async def active_job_count(session_factory, project_id) -> int:
    async with session_factory() as session:
        return await session.scalar(
            select(func.count())
            .select_from(IndexingJob)
            .where(
                IndexingJob.project_id == project_id,
                IndexingJob.status.in_(("PENDING", "RUNNING")),
            )
        )


@pytest.fixture
async def project(db):
    return await create_project(
        db,
        name="api",
        git_repo="https://github.com/acme/api.git",
        webhook_secret="s3cret",
    )


async def test_manual_trigger_creates_pending_job_and_queues_it(db, queue, project):
    job = await start_project_indexing(db, queue, project.id, branch="develop")

    assert job.status == JobStatus.PENDING.value
    assert job.triggered_by == TriggerType.MANUAL.value
    assert job.branch == "develop"
    assert job.full_reindex is True

    refreshed = await fetch(queue.session_factory, Project, project.id)
    assert refreshed.index_status == IndexStatus.INDEXING.value

    async with queue.session_factory() as session:
        entry = await session.scalar(select(QueueEntry))
    assert entry.job_id == job.id
    assert entry.priority == QueuePriority.HIGH
    assert entry.status == QueueEntryStatus.WAITING.value


async def test_second_trigger_is_rejected_while_active(db, queue, session_factory, project):
    await start_project_indexing(db, queue, project.id)

    with pytest.raises(IndexingInProgressError):
        await start_project_indexing(db, queue, project.id, triggered_by=TriggerType.API)

    assert await active_job_count(session_factory, project.id) == 1
    assert (await queue.stats())["pending"] == 1


async def test_unknown_project_is_rejected(db, queue):
    with pytest.raises(ProjectNotFoundError):
        await start_project_indexing(db, queue, "00000000-0000-0000-0000-000000000000")


async def test_enqueue_failure_cancels_job_and_releases_project(db, session_factory, project):
    with pytest.raises(QueueUnavailableError):
        await start_project_indexing(db, BrokenQueue(), project.id)

    async with session_factory() as session:
        job = await session.scalar(select(IndexingJob))
    assert job.status == JobStatus.CANCELLED.value
    assert (await fetch(session_factory, Project, project.id)).index_status == IndexStatus.IDLE.value
    assert await active_job_count(session_factory, project.id) == 0


async def test_stop_cancels_job_and_waiting_entries(db, queue, session_factory, project):
    job = await start_project_indexing(db, queue, project.id)

    stopped = await stop_project_indexing(db, queue, project.id)

    assert stopped.id == job.id
    assert (await fetch(session_factory, IndexingJob, job.id)).status == JobStatus.CANCELLED.value
    assert (await fetch(session_factory, Project, project.id)).index_status == IndexStatus.IDLE.value
    stats = await queue.stats()
    assert stats["pending"] == 0
    assert stats["cancelled"] == 1

    # The slot is free again
    again = await start_project_indexing(db, queue, project.id)
    assert again.id != job.id


async def test_stop_without_active_job(db, queue, project):
    with pytest.raises(NoActiveJobError):
        await stop_project_indexing(db, queue, project.id)


async def test_duplicate_webhook_deliveries_create_one_job(db, queue, session_factory, project):
    payload = github_push()
    body = encode(payload)
    headers = github_headers(body)

    first = await handle_webhook(db, queue, project.id, headers, body)
    second = await handle_webhook(db, queue, project.id, headers, body)

    assert first.message == "Webhook processed successfully, indexing started"
    assert first.commit == COMMIT[:7]
    assert first.branch == "main"
    assert first.author == "Ada"
    assert second.message == "Indexing already in progress"
    assert await active_job_count(session_factory, project.id) == 1

    job = await fetch(session_factory, IndexingJob, first.job_id)
    assert job.triggered_by == TriggerType.WEBHOOK.value
    assert job.full_reindex is False

    refreshed = await fetch(session_factory, Project, project.id)
    assert refreshed.last_webhook_commit == COMMIT[:7]
    assert refreshed.last_webhook_author == "Ada"
    assert refreshed.last_webhook_at is not None

    async with session_factory() as session:
        entry = await session.scalar(select(QueueEntry))
    assert entry.priority == QueuePriority.NORMAL


async def test_concurrent_triggers_create_exactly_one_job(queue, session_factory, project):
    body = encode(github_push())

    async def manual() -> bool:
        async with session_factory() as session:
            try:
                await start_project_indexing(session, queue, project.id)
            except IndexingInProgressError:
                return False
            return True

    async def webhook() -> bool:
        async with session_factory() as session:
            result = await handle_webhook(session, queue, project.id, github_headers(body), body)
            return result.job_id is not None

    started = await asyncio.gather(manual(), webhook(), manual(), webhook())

    assert started.count(True) == 1
    assert await active_job_count(session_factory, project.id) == 1
    assert (await queue.stats())["pending"] == 1
    assert (await fetch(session_factory, Project, project.id)).index_status == IndexStatus.INDEXING.value


async def test_webhook_without_commits_is_acknowledged_without_indexing(
    db, queue, session_factory, project
):
    payload = github_push(commits=False)
    body = encode(payload)

    result = await handle_webhook(db, queue, project.id, github_headers(body), body)

    assert result.message == "Webhook received but no indexing needed"
    assert result.reason == "No commits in push"
    assert await active_job_count(session_factory, project.id) == 0


async def test_webhooks_disabled(db, queue, session_factory):
    project = await create_project(
        db, name="quiet", git_repo="https://github.com/acme/quiet.git", webhook_enabled=False
    )
    payload = github_push()
    body = encode(payload)

    result = await handle_webhook(db, queue, project.id, github_headers(body), body)

    assert result.message == "Webhooks are disabled for this project"
    assert await active_job_count(session_factory, project.id) == 0


async def test_webhook_unknown_branch_falls_back_to_default(db, queue, session_factory, project):
    payload = github_push()
    del payload["ref"]
    body = encode(payload)

    result = await handle_webhook(db, queue, project.id, github_headers(body), body)

    job = await fetch(session_factory, IndexingJob, result.job_id)
    assert job.branch == "main"


async def test_webhook_enqueue_failure_still_reports_success(db, session_factory, project):
    payload = github_push()
    body = encode(payload)

    result = await handle_webhook(db, BrokenQueue(), project.id, github_headers(body), body)

    assert result.message == "Webhook processed successfully, indexing started"
    job = await fetch(session_factory, IndexingJob, result.job_id)
    assert job.status == JobStatus.PENDING.value


class LogRecorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def ainfo(self, event, **fields):
        self.events.append((event, fields))

    awarning = aerror = ainfo


async def test_stopping_documentation_indexing_is_logged(db, queue, session_factory, monkeypatch):
    recorder = LogRecorder()
    monkeypatch.setattr(triggers, "logger", recorder)
    repository = await create_documentation_repository(
        db, name="docs", url="https://github.com/acme/docs.git"
    )
    job = await start_documentation_indexing(db, queue, repository.id)

    await stop_documentation_indexing(db, queue, repository.id)

    assert (
        "documentation_indexing_stopped",
        {"repository_id": repository.id, "job_id": job.id},
    ) in recorder.events
    stopped = await fetch(session_factory, DocumentationIndexingJob, job.id)
    assert stopped.status == JobStatus.CANCELLED.value
    assert (await queue.stats())["cancelled"] == 1
