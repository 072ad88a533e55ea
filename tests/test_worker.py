import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update

from orchestrator.core.errors import JobStateError
from orchestrator.database import utcnow
from orchestrator.models import (
    DocumentationIndexingJob,
    DocumentationRepository,
    IndexingJob,
    IndexStatus,
    JobStatus,
    Project,
    QueueEntry,
    QueueEntryStatus,
    TerminalJobMutationError,
)
from orchestrator.services import jobs as jobs_service
from orchestrator.services.documentation import create_documentation_repository
from orchestrator.services.pipeline import project_namespace
from orchestrator.services.projects import create_project
from orchestrator.services.queue import IndexingQueue
from orchestrator.services.triggers import (
    start_documentation_indexing,
    start_project_indexing,
    stop_project_indexing,
)
from orchestrator.worker.pool import WorkerPool

from tests.conftest import HEAD, fetch, write_files


@pytest.fixture
async def project(db):
    return await create_project(db, name="api", git_repo="https://github.com/acme/api.git")


@pytest.fixture
def pool(queue, pipeline, session_factory):
    return WorkerPool(queue, pipeline, session_factory=session_factory, concurrency=2)


async def run_next(queue, pool) -> tuple[QueueEntry, str]:
    entry = await queue.dequeue(timeout=1)
    assert entry is not None
    return entry, await pool.process_entry(entry)


async def test_job_runs_to_completion(db, queue, pool, session_factory, repo_dir, project):
    write_files(repo_dir, 10)
    job = await start_project_indexing(db, queue, project.id)

    entry, status = await run_next(queue, pool)

    assert status == QueueEntryStatus.COMPLETED.value
    assert (await fetch(session_factory, QueueEntry, entry.id)).status == status

    finished = await fetch(session_factory, IndexingJob, job.id)
    assert finished.status == JobStatus.COMPLETED.value
    assert finished.progress == 100
    assert finished.processed_files == 10
    assert finished.total_files == 10
    assert finished.vectors_added == 10
    assert finished.commit_hash == HEAD
    assert finished.started_at is not None
    assert finished.completed_at is not None

    refreshed = await fetch(session_factory, Project, project.id)
    assert refreshed.index_status == IndexStatus.COMPLETED.value
    assert refreshed.file_count == 10
    assert refreshed.vector_count == 10
    assert refreshed.last_indexed_commit == HEAD
    assert refreshed.last_indexed_branch == "main"
    assert refreshed.last_error is None


async def test_stop_during_run_keeps_partial_vectors(
    db, queue, pool, session_factory, repo_dir, embedder, vector_store, project
):
    write_files(repo_dir, 10)
    job = await start_project_indexing(db, queue, project.id)

    async def stop_on_third_file(calls):
        if calls == 3:
            async with session_factory() as session:
                await stop_project_indexing(session, queue, project.id)

    embedder.before_embed = stop_on_third_file

    entry, status = await run_next(queue, pool)

    assert status == QueueEntryStatus.CANCELLED.value
    assert (await fetch(session_factory, QueueEntry, entry.id)).status == status
    assert (await fetch(session_factory, IndexingJob, job.id)).status == JobStatus.CANCELLED.value
    assert (await fetch(session_factory, Project, project.id)).index_status == IndexStatus.IDLE.value
    assert embedder.calls == 3
    assert await vector_store.count(project_namespace(project.id)) == 3


async def test_pipeline_failure_marks_job_and_project(
    db, queue, pool, session_factory, fake_git, project
):
    fake_git.failing.add(project.git_repo)
    job = await start_project_indexing(db, queue, project.id)

    entry, status = await run_next(queue, pool)

    assert status == QueueEntryStatus.FAILED.value
    stored_entry = await fetch(session_factory, QueueEntry, entry.id)
    assert stored_entry.status == status
    assert stored_entry.last_error

    failed = await fetch(session_factory, IndexingJob, job.id)
    assert failed.status == JobStatus.FAILED.value
    assert failed.error_message

    refreshed = await fetch(session_factory, Project, project.id)
    assert refreshed.index_status == IndexStatus.ERROR.value
    assert refreshed.last_error == failed.error_message


async def test_job_cancelled_before_pickup_is_skipped(db, queue, pool, session_factory, embedder, project):
    job = await start_project_indexing(db, queue, project.id)
    entry = await queue.dequeue(timeout=1)
    await stop_project_indexing(db, queue, project.id)

    status = await pool.process_entry(entry)

    assert status == QueueEntryStatus.CANCELLED.value
    assert embedder.calls == 0
    assert (await fetch(session_factory, IndexingJob, job.id)).status == JobStatus.CANCELLED.value


async def test_finished_jobs_cannot_change(db, queue, pool, session_factory, repo_dir, project):
    write_files(repo_dir, 2)
    job = await start_project_indexing(db, queue, project.id)
    await run_next(queue, pool)

    async with session_factory() as session:
        finished = await session.get(IndexingJob, job.id)
        with pytest.raises(JobStateError):
            await jobs_service.start_job(session, finished)
        with pytest.raises(JobStateError):
            await jobs_service.cancel_job(session, finished)

    async with session_factory() as session:
        finished = await session.get(IndexingJob, job.id)
        finished.progress = 5
        with pytest.raises(TerminalJobMutationError):
            await session.commit()
        await session.rollback()

    assert (await fetch(session_factory, IndexingJob, job.id)).progress == 100


async def test_documentation_job_runs_to_completion(db, queue, pool, session_factory, repo_dir):
    (repo_dir / "guide.md").write_text("# Guide\n\nInstall it.\n")
    (repo_dir / "api.rst").write_text("API\n===\n\nCall it.\n")
    (repo_dir / "main.py").write_text("print('not documentation')\n")
    repository = await create_documentation_repository(
        db, name="docs", url="https://github.com/acme/docs.git"
    )
    job = await start_documentation_indexing(db, queue, repository.id)

    _, status = await run_next(queue, pool)

    assert status == QueueEntryStatus.COMPLETED.value
    finished = await fetch(session_factory, DocumentationIndexingJob, job.id)
    assert finished.status == JobStatus.COMPLETED.value
    assert finished.documents_added == 2

    refreshed = await fetch(session_factory, DocumentationRepository, repository.id)
    assert refreshed.last_indexing_status == "SUCCESS"
    assert refreshed.total_documents == 2
    assert refreshed.last_indexed_commit == HEAD
    assert refreshed.next_reindex_at is not None


async def expire_lease(session_factory, entry_id: int) -> None:
    async with session_factory() as session:
        await session.execute(
            update(QueueEntry)
            .where(QueueEntry.id == entry_id)
            .values(lease_expires_at=utcnow() - timedelta(seconds=1))
        )
        await session.commit()


async def test_recover_fails_running_job_whose_lease_lapsed(
    db, queue, pool, session_factory, project
):
    job = await start_project_indexing(db, queue, project.id)
    entry = await queue.dequeue(timeout=1)
    await jobs_service.start_job(db, job)
    await expire_lease(session_factory, entry.id)

    assert await pool.recover() == 1

    interrupted = await fetch(session_factory, IndexingJob, job.id)
    assert interrupted.status == JobStatus.FAILED.value
    assert interrupted.error_message == "Worker interrupted"
    assert (await fetch(session_factory, Project, project.id)).index_status == IndexStatus.ERROR.value
    stored = await fetch(session_factory, QueueEntry, entry.id)
    assert stored.status == QueueEntryStatus.FAILED.value
    assert stored.last_error == "Worker interrupted"


async def test_recover_leaves_leased_work_alone(db, queue, pool, session_factory, project):
    job = await start_project_indexing(db, queue, project.id)
    entry = await queue.dequeue(timeout=1)
    await jobs_service.start_job(db, job)

    assert await pool.recover() == 0

    assert (await fetch(session_factory, IndexingJob, job.id)).status == JobStatus.RUNNING.value
    assert (await fetch(session_factory, QueueEntry, entry.id)).status == QueueEntryStatus.ACTIVE.value


async def test_recover_requeues_claimed_job_that_never_started(
    db, queue, pool, session_factory, project
):
    job = await start_project_indexing(db, queue, project.id)
    entry = await queue.dequeue(timeout=1)
    await expire_lease(session_factory, entry.id)

    assert await pool.recover() == 1

    again = await queue.dequeue(timeout=1)
    assert again.id == entry.id
    assert again.attempts == 2
    assert (await fetch(session_factory, IndexingJob, job.id)).status == JobStatus.PENDING.value


async def test_second_pool_start_keeps_running_job(
    db, queue, pool, pipeline, session_factory, repo_dir, embedder, project
):
    write_files(repo_dir, 5)
    job = await start_project_indexing(db, queue, project.id)

    async def start_other_pool(calls):
        if calls == 2:
            other = WorkerPool(
                IndexingQueue(session_factory, poll_interval=0.05),
                pipeline,
                session_factory=session_factory,
                concurrency=1,
            )
            await other.start()
            await other.stop(timeout=5)

    embedder.before_embed = start_other_pool

    entry, status = await run_next(queue, pool)

    assert status == QueueEntryStatus.COMPLETED.value
    assert embedder.calls == 5
    assert (await fetch(session_factory, QueueEntry, entry.id)).status == status
    assert (await fetch(session_factory, IndexingJob, job.id)).status == JobStatus.COMPLETED.value
    assert (await fetch(session_factory, Project, project.id)).index_status == IndexStatus.COMPLETED.value


async def test_error_before_start_is_retried_with_backoff(
    db, queue, pool, session_factory, project, monkeypatch
):
    job = await start_project_indexing(db, queue, project.id)

    async def database_went_away(session, job):
        raise ConnectionError("database went away")

    monkeypatch.setattr(jobs_service, "start_job", database_went_away)

    entry, status = await run_next(queue, pool)

    assert status == QueueEntryStatus.WAITING.value
    stored = await fetch(session_factory, QueueEntry, entry.id)
    assert stored.status == QueueEntryStatus.WAITING.value
    assert stored.last_error == "database went away"
    assert stored.available_at > utcnow()
    assert await queue.dequeue(timeout=0.1) is None
    assert (await fetch(session_factory, IndexingJob, job.id)).status == JobStatus.PENDING.value


async def test_last_attempt_fails_job(db, queue, pool, session_factory, project, monkeypatch):
    job = await start_project_indexing(db, queue, project.id)
    async with session_factory() as session:
        await session.execute(update(QueueEntry).values(attempts=queue.max_attempts - 1))
        await session.commit()

    async def database_went_away(session, job):
        raise ConnectionError("database went away")

    monkeypatch.setattr(jobs_service, "start_job", database_went_away)

    entry, status = await run_next(queue, pool)

    assert status == QueueEntryStatus.FAILED.value
    assert entry.attempts == queue.max_attempts
    assert (await fetch(session_factory, QueueEntry, entry.id)).status == status
    failed = await fetch(session_factory, IndexingJob, job.id)
    assert failed.status == JobStatus.FAILED.value
    assert failed.error_message == "database went away"
    assert (await fetch(session_factory, Project, project.id)).index_status == IndexStatus.ERROR.value


async def test_orphaned_pending_jobs_are_requeued(db, queue, pool, project):
    job = await jobs_service.create_project_job(db, project.id, branch="main")

    assert await pool.requeue_orphaned_jobs(threshold_minutes=60) == 0
    assert await pool.requeue_orphaned_jobs(threshold_minutes=0) == 1
    assert await pool.requeue_orphaned_jobs(threshold_minutes=0) == 0

    entry = await queue.dequeue(timeout=1)
    assert entry.job_id == job.id
    assert entry.priority == 10


async def test_pool_drains_queue_until_stopped(db, queue, pool, session_factory, repo_dir, project):
    write_files(repo_dir, 3)
    await pool.start()
    assert pool.is_running
    try:
        job = await start_project_indexing(db, queue, project.id)
        for _ in range(100):
            status = (await fetch(session_factory, IndexingJob, job.id)).status
            if status == JobStatus.COMPLETED.value:
                break
            await asyncio.sleep(0.05)
        assert status == JobStatus.COMPLETED.value
    finally:
        await pool.stop(timeout=5)

    assert not pool.is_running
    assert (await queue.stats())["completed"] == 1
