"""
Worker Pool - Bounded set of asyncio workers draining the indexing queue.

Each worker dequeues an entry, runs the job through the pipeline and hands
the outcome to the status reconciler. Nothing raised while processing one
entry escapes `process_entry`.

Several pools may share one queue (separate runner processes, or API
workers each running their own pool). A pool only recovers entries whose
lease has lapsed, so it never touches jobs another live pool is running.
"""

import asyncio
from datetime import timedelta

import structlog

from orchestrator.config import get_settings
from orchestrator.core.errors import IndexingCancelled, JobNotFoundError, JobStateError
from orchestrator.database import async_session_maker, utcnow
from orchestrator.models import (
    DocumentationIndexingJob,
    IndexingJob,
    JobStatus,
    QueueEntry,
    QueueEntryStatus,
    TargetType,
)
from orchestrator.services import jobs as jobs_service
from orchestrator.services import reconciler
from orchestrator.services.documentation import get_documentation_repository
from orchestrator.services.pipeline import IndexingPipeline, PipelineResult
from orchestrator.services.projects import get_project
from orchestrator.services.queue import IndexingQueue, QueuedJob, SessionFactory, priority_for

settings = get_settings()
logger = structlog.get_logger(__name__)

WORKER_INTERRUPTED = "Worker interrupted"


class WorkerPool:
    """
    Runs up to `concurrency` jobs at once.

    Usage:
        pool = WorkerPool(queue, pipeline)
        await pool.start()
        ...
        await pool.stop()
    """

    def __init__(
        self,
        queue: IndexingQueue,
        pipeline: IndexingPipeline,
        session_factory: SessionFactory | None = None,
        concurrency: int | None = None,
    ) -> None:
        self.queue = queue
        self.pipeline = pipeline
        self.session_factory = session_factory or async_session_maker
        self.concurrency = concurrency or settings.worker_concurrency
        self._workers: set[asyncio.Task] = set()
        self._maintenance: asyncio.Task | None = None
        self._heartbeat: asyncio.Task | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Recover work abandoned by dead workers, then spawn the workers."""
        if self._running:
            return

        await self.recover()

        self._running = True
        for number in range(self.concurrency):
            task = asyncio.create_task(self._work(number), name=f"indexing-worker-{number}")
            self._workers.add(task)
        self._heartbeat = asyncio.create_task(self._renew_leases(), name="indexing-heartbeat")
        self._maintenance = asyncio.create_task(self._maintain(), name="indexing-maintenance")

        await logger.ainfo(
            "worker_pool_started",
            concurrency=self.concurrency,
            worker_id=self.queue.worker_id,
        )

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop taking work and wait for in-flight jobs, cancelling stragglers."""
        if not self._running:
            return
        self._running = False
        self.queue.close()

        if self._maintenance is not None:
            self._maintenance.cancel()

        if self._workers:
            await logger.ainfo("waiting_for_active_tasks", count=len(self._workers))
            _, pending = await asyncio.wait(self._workers, timeout=timeout)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)

        # Leases stay renewed until the last in-flight job has finished
        for task in (self._heartbeat, self._maintenance):
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        self._workers.clear()
        self._heartbeat = None
        self._maintenance = None
        await logger.ainfo("worker_pool_stopped")

    async def _work(self, number: int) -> None:
        while self._running:
            try:
                entry = await self.queue.dequeue(timeout=self.queue.poll_interval)
            except Exception as e:
                await logger.aerror("worker_dequeue_error", worker=number, error=str(e))
                await asyncio.sleep(self.queue.poll_interval)
                continue

            if entry is None:
                continue

            await logger.ainfo(
                "starting_job",
                worker=number,
                entry_id=entry.id,
                job_id=entry.job_id,
                target_type=entry.target_type,
            )
            await self.process_entry(entry)

    async def _renew_leases(self) -> None:
        interval = self.queue.lease_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                await self.queue.renew_leases()
            except Exception as e:
                await logger.aerror("lease_renewal_error", error=str(e))

    async def _maintain(self) -> None:
        while self._running:
            await asyncio.sleep(settings.orphan_sweep_interval_seconds)
            try:
                await self.recover()
                await self.queue.clean()
            except Exception as e:
                await logger.aerror("queue_maintenance_error", error=str(e))

    async def process_entry(self, entry: QueueEntry) -> str:
        """
        Run one dequeued entry to completion.

        Returns:
            The final queue entry status; WAITING when the entry was put back
            for another attempt
        """
        try:
            if entry.target_type == TargetType.DOCUMENTATION.value:
                return await self._run_documentation(entry)
            return await self._run_project(entry)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            await logger.aerror(
                "job_processing_error",
                entry_id=entry.id,
                job_id=entry.job_id,
                attempt=entry.attempts,
                error=error,
            )
            try:
                return await self._retry_or_fail(entry, error)
            except Exception as settle_error:
                await logger.aerror(
                    "queue_mark_failed_error",
                    entry_id=entry.id,
                    error=str(settle_error),
                )
            return QueueEntryStatus.FAILED.value

    @staticmethod
    def _job_model(entry: QueueEntry):
        if entry.target_type == TargetType.DOCUMENTATION.value:
            return DocumentationIndexingJob
        return IndexingJob

    async def _retry_or_fail(self, entry: QueueEntry, error: str) -> str:
        """
        Settle an entry after an unexpected error.

        A job that never started is retried with exponential backoff until
        the entry has been claimed `max_attempts` times. Anything else fails
        the job, so it cannot stay active without a queue entry.
        """
        async with self.session_factory() as db:
            job = await db.get(self._job_model(entry), entry.job_id)
            if (
                job is not None
                and job.status == JobStatus.PENDING.value
                and entry.attempts < self.queue.max_attempts
            ):
                await self.queue.retry(entry.id, error, delay=self.queue.backoff(entry.attempts))
                return QueueEntryStatus.WAITING.value

            if job is not None and job.is_active:
                await self._fail_job(db, job, error)

        await self.queue.mark_failed(entry.id, error)
        return QueueEntryStatus.FAILED.value

    async def _fail_job(self, db, job, error: str) -> bool:
        """Fail the job and record the failure on its target; False if it already finished."""
        try:
            await jobs_service.fail_job(db, job, error)
        except JobStateError:
            return False

        if isinstance(job, IndexingJob):
            await reconciler.reconcile_project(
                db,
                job.project_id,
                reconciler.IndexingOutcome(success=False, error=error),
            )
        else:
            await reconciler.reconcile_documentation(
                db,
                job.repository_id,
                reconciler.IndexingOutcome(
                    success=False,
                    error=error,
                    duration_seconds=job.duration_seconds,
                ),
            )
        return True

    async def _skip(self, entry: QueueEntry, reason: str) -> str:
        await self.queue.mark_cancelled(entry.id)
        await logger.ainfo("job_skipped", entry_id=entry.id, job_id=entry.job_id, reason=reason)
        return QueueEntryStatus.CANCELLED.value

    def _progress(self, db, job):
        async def report(processed: int, total: int, current: str | None) -> None:
            try:
                await jobs_service.update_progress(db, job, processed, total, current)
            except JobStateError:
                if job.status == JobStatus.CANCELLED.value:
                    raise IndexingCancelled(job.id)
                raise

        return report

    async def _run_project(self, entry: QueueEntry) -> str:
        async with self.session_factory() as db:
            try:
                job = await jobs_service.get_job(db, entry.job_id, IndexingJob)
            except JobNotFoundError:
                return await self._skip(entry, "job not found")
            if job.status != JobStatus.PENDING.value:
                return await self._skip(entry, f"job is {job.status}")

            project_id = job.project_id
            project = await get_project(db, project_id)
            try:
                await jobs_service.start_job(db, job)
            except JobStateError:
                return await self._skip(entry, "cancelled before start")

            try:
                result = await self.pipeline.index_project(job, project, self._progress(db, job))
            except IndexingCancelled:
                return await self._skip(entry, "cancelled")
            except Exception as e:
                error = str(e) or e.__class__.__name__
                if not await self._fail_job(db, job, error):
                    return await self._skip(entry, "cancelled")
                await self.queue.mark_failed(entry.id, error)
                return QueueEntryStatus.FAILED.value

            try:
                await jobs_service.complete_job(
                    db,
                    job,
                    commit_hash=result.commit_hash,
                    vectors_added=result.vectors_added,
                    vectors_updated=result.vectors_updated,
                    vectors_deleted=result.vectors_deleted,
                    error_count=result.errors,
                )
            except JobStateError:
                return await self._skip(entry, "cancelled")

            await reconciler.reconcile_project(
                db,
                project_id,
                self._outcome(result, branch=job.branch),
            )
            await self.queue.mark_completed(entry.id)
            return QueueEntryStatus.COMPLETED.value

    async def _run_documentation(self, entry: QueueEntry) -> str:
        async with self.session_factory() as db:
            try:
                job = await jobs_service.get_job(db, entry.job_id, DocumentationIndexingJob)
            except JobNotFoundError:
                return await self._skip(entry, "job not found")
            if job.status != JobStatus.PENDING.value:
                return await self._skip(entry, f"job is {job.status}")

            repository_id = job.repository_id
            repository = await get_documentation_repository(db, repository_id)
            try:
                await jobs_service.start_job(db, job)
            except JobStateError:
                return await self._skip(entry, "cancelled before start")

            try:
                result = await self.pipeline.index_documentation(
                    job, repository, self._progress(db, job)
                )
            except IndexingCancelled:
                return await self._skip(entry, "cancelled")
            except Exception as e:
                error = str(e) or e.__class__.__name__
                if not await self._fail_job(db, job, error):
                    return await self._skip(entry, "cancelled")
                await self.queue.mark_failed(entry.id, error)
                return QueueEntryStatus.FAILED.value

            try:
                await jobs_service.complete_job(
                    db,
                    job,
                    commit_hash=result.commit_hash,
                    documents_added=result.documents,
                )
            except JobStateError:
                return await self._skip(entry, "cancelled")

            await reconciler.reconcile_documentation(
                db,
                repository_id,
                self._outcome(result, branch=job.branch),
            )
            await self.queue.mark_completed(entry.id)
            return QueueEntryStatus.COMPLETED.value

    @staticmethod
    def _outcome(result: PipelineResult, branch: str) -> reconciler.IndexingOutcome:
        return reconciler.IndexingOutcome(
            success=True,
            commit_hash=result.commit_hash,
            branch=branch,
            file_count=result.file_count,
            vector_count=result.vector_count,
            total_documents=result.documents,
            duration_seconds=result.duration_seconds,
        )

    async def recover(self) -> int:
        """
        Settle entries whose owning worker stopped renewing its lease.

        A job that never started goes back to the queue while attempts
        remain; a RUNNING job is failed with "Worker interrupted" and its
        target reconciled. PENDING jobs without a queue entry are then
        re-enqueued.

        Returns:
            Number of lapsed entries settled by this call
        """
        recovered = 0
        for entry in await self.queue.list_lapsed():
            if await self._recover_entry(entry):
                recovered += 1

        if recovered:
            await logger.awarning("lapsed_entries_recovered", count=recovered)

        await self.requeue_orphaned_jobs()
        return recovered

    async def _recover_entry(self, entry: QueueEntry) -> bool:
        async with self.session_factory() as db:
            job = await db.get(self._job_model(entry), entry.job_id)

            if job is None or job.is_terminal:
                return await self.queue.mark_cancelled(entry.id, lapsed_only=True)

            if job.status == JobStatus.PENDING.value and entry.attempts < self.queue.max_attempts:
                return await self.queue.retry(entry.id, WORKER_INTERRUPTED, lapsed_only=True)

            # Whoever settles the entry owns the job
            if not await self.queue.mark_failed(entry.id, WORKER_INTERRUPTED, lapsed_only=True):
                return False
            await self._fail_job(db, job, WORKER_INTERRUPTED)
            return True

    async def requeue_orphaned_jobs(self, threshold_minutes: int | None = None) -> int:
        """Enqueue PENDING jobs that have sat without a queue entry past the threshold."""
        if threshold_minutes is None:
            threshold_minutes = settings.orphan_job_threshold_minutes
        cutoff = utcnow() - timedelta(minutes=threshold_minutes)
        requeued = 0

        async with self.session_factory() as db:
            for model, target_type in (
                (IndexingJob, TargetType.PROJECT),
                (DocumentationIndexingJob, TargetType.DOCUMENTATION),
            ):
                for job in await jobs_service.list_orphaned_jobs(db, cutoff, model):
                    if await self.queue.has_entry_for_job(job.id):
                        continue
                    await self.queue.enqueue(
                        QueuedJob(
                            target_type=target_type.value,
                            target_id=job.target_id,
                            job_id=job.id,
                            branch=job.branch,
                            full_reindex=getattr(job, "full_reindex", False),
                            triggered_by=job.triggered_by,
                        ),
                        priority_for(job.triggered_by),
                    )
                    requeued += 1

        if requeued:
            await logger.awarning("orphaned_jobs_requeued", count=requeued)
        return requeued
