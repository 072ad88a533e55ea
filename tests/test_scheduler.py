from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from orchestrator.database import utcnow
from orchestrator.models import (
    DocumentationIndexingJob,
    DocumentationRepository,
    IndexingJob,
    IndexStatus,
    Project,
    QueueEntry,
    QueuePriority,
    TriggerType,
)
from orchestrator.services.change_detection import ChangeDetector
from orchestrator.services.documentation import create_documentation_repository
from orchestrator.services.jobs import create_documentation_job
from orchestrator.services.projects import create_project
from orchestrator.services.queue import IndexingQueue
from orchestrator.services.scheduler import list_due_targets, run_scheduled_sweep

from tests.conftest import HEAD, fetch


class FlakyQueue(IndexingQueue):
    """Refuses entries for one target."""

    def __init__(self, *args, refuse: str, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.refuse = refuse

    async def enqueue(self, job, priority=QueuePriority.NORMAL):
        if job.target_id == self.refuse:
            raise ConnectionError("queue store unreachable")
        return await super().enqueue(job, priority)


@pytest.fixture
def detector(fake_git):
    return ChangeDetector(git=fake_git, timeout=1)


async def due_project(db, name, **fields) -> Project:
    fields.setdefault("scheduled_indexing_enabled", True)
    fields.setdefault("scheduled_indexing_next_run", utcnow() - timedelta(hours=1))
    return await create_project(
        db,
        name=name,
        git_repo=f"https://github.com/acme/{name}.git",
        **fields,
    )


async def test_one_failing_target_does_not_stop_the_sweep(db, session_factory, detector):
    first = await due_project(db, "first")
    middle = await due_project(db, "middle")
    last = await due_project(db, "last")
    queue = FlakyQueue(session_factory, poll_interval=0.05, refuse=middle.id)
    started = utcnow()

    report = await run_scheduled_sweep(db, queue, detector)

    assert report["success"] is True
    assert report["projects_processed"] == 3
    actions = {r["target_id"]: r for r in report["results"]}
    assert actions[first.id]["action"] == "full_index"
    assert actions[last.id]["action"] == "full_index"
    assert actions[middle.id]["action"] == "error"
    assert actions[middle.id]["success"] is False

    for project in (first, middle, last):
        refreshed = await fetch(session_factory, Project, project.id)
        assert refreshed.scheduled_indexing_next_run > started
        assert refreshed.scheduled_indexing_last_run >= started

    assert (await fetch(session_factory, Project, middle.id)).index_status == IndexStatus.IDLE.value

    async with session_factory() as session:
        entries = (await session.scalars(select(QueueEntry))).all()
    assert {e.target_id for e in entries} == {first.id, last.id}
    assert {e.priority for e in entries} == {QueuePriority.LOW.value}
    assert {e.triggered_by for e in entries} == {TriggerType.SCHEDULED.value}


async def test_sweep_reports_each_detection_outcome(db, queue, session_factory, fake_git, detector):
    unreachable = await due_project(db, "unreachable")
    current = await due_project(db, "current", last_indexed_commit=HEAD)
    busy = await due_project(db, "busy", index_status=IndexStatus.INDEXING.value)
    moved = await due_project(db, "moved", last_indexed_commit="b" * 40)
    fake_git.failing.add(unreachable.git_repo)

    report = await run_scheduled_sweep(db, queue, detector)

    results = {r["target_id"]: r for r in report["results"]}
    assert results[unreachable.id]["action"] == "check_failed"
    assert results[unreachable.id]["success"] is False
    assert results[current.id]["action"] == "no_changes"
    assert results[current.id]["message"] == "Repository up to date"
    assert results[busy.id]["action"] == "skipped"
    assert results[moved.id]["action"] == "incremental_index"

    job = await fetch_job_for(session_factory, moved.id)
    assert job.full_reindex is False
    assert job.triggered_by == TriggerType.SCHEDULED.value
    assert job.branch == "main"

    # Skipped targets are still rescheduled
    assert (await fetch(session_factory, Project, busy.id)).scheduled_indexing_next_run > utcnow()


async def test_web_documentation_is_always_reindexed(db, queue, session_factory, detector):
    repository = await create_documentation_repository(
        db,
        name="framework docs",
        url="https://docs.example.com/llms.txt",
        source_type="llmstxt",
        reindex_interval=7,
    )
    await db.execute(
        update(DocumentationRepository)
        .where(DocumentationRepository.id == repository.id)
        .values(next_reindex_at=utcnow() - timedelta(minutes=5))
    )
    await db.commit()

    report = await run_scheduled_sweep(db, queue, detector)

    assert report["projects_processed"] == 1
    [result] = report["results"]
    assert result["target_type"] == "documentation"
    assert result["action"] == "reindex"

    refreshed = await fetch(session_factory, DocumentationRepository, repository.id)
    assert refreshed.next_reindex_at > utcnow() + timedelta(days=6)


async def test_busy_documentation_is_skipped(db, queue, session_factory, detector):
    repository = await create_documentation_repository(
        db, name="guides", url="https://github.com/acme/guides.git"
    )
    await db.execute(
        update(DocumentationRepository)
        .where(DocumentationRepository.id == repository.id)
        .values(next_reindex_at=utcnow() - timedelta(minutes=5))
    )
    await db.commit()
    running = await create_documentation_job(db, repository.id)

    report = await run_scheduled_sweep(db, queue, detector)

    [result] = report["results"]
    assert result["action"] == "skipped"
    assert result["success"] is True
    assert result["message"] == "Indexing already in progress"
    assert (await queue.stats())["pending"] == 0
    async with session_factory() as session:
        jobs = (await session.scalars(select(DocumentationIndexingJob))).all()
    assert [job.id for job in jobs] == [running.id]
    refreshed = await fetch(session_factory, DocumentationRepository, repository.id)
    assert refreshed.next_reindex_at > utcnow()


async def test_listing_due_targets_changes_nothing(db, queue, session_factory):
    project = await due_project(db, "api")
    await due_project(db, "later", scheduled_indexing_next_run=utcnow() + timedelta(days=1))
    await due_project(db, "unscheduled", scheduled_indexing_next_run=None)
    await due_project(db, "disabled", scheduled_indexing_enabled=False)
    before = (await fetch(session_factory, Project, project.id)).scheduled_indexing_next_run

    targets = await list_due_targets(db)

    assert [t["target_id"] for t in targets] == [project.id]
    assert targets[0]["branch"] == "main"
    assert (await fetch(session_factory, Project, project.id)).scheduled_indexing_next_run == before
    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(IndexingJob)) == 0
    assert (await queue.stats())["pending"] == 0


async def fetch_job_for(session_factory, project_id) -> IndexingJob:
    async with session_factory() as session:
        return await session.scalar(select(IndexingJob).where(IndexingJob.project_id == project_id))
