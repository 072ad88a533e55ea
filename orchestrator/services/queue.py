"""
Queue Service - Durable priority queue of indexing work.

Entries live in the `queue_entries` table so they survive restarts. Dequeue
order is highest priority first, FIFO within a priority. Claims are
conditional UPDATEs, so concurrent workers never receive the same entry.

Every claim records the claiming queue instance (`worker_id`) and a lease.
The owner renews its leases while it works; an entry whose lease lapsed
belongs to a dead worker and may be settled by any other one.
"""

import asyncio
import os
import socket
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.config import get_settings
from orchestrator.database import async_session_maker, utcnow
from orchestrator.models import (
    QueueEntry,
    QueueEntryStatus,
    QueuePriority,
    TargetType,
    TriggerType,
)

settings = get_settings()
logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

_TRIGGER_PRIORITIES = {
    TriggerType.MANUAL.value: QueuePriority.HIGH,
    TriggerType.API.value: QueuePriority.HIGH,
    TriggerType.WEBHOOK.value: QueuePriority.NORMAL,
    TriggerType.SCHEDULED.value: QueuePriority.LOW,
}


def priority_for(triggered_by: str) -> QueuePriority:
    """Default queue priority for a trigger type."""
    return _TRIGGER_PRIORITIES.get(triggered_by, QueuePriority.NORMAL)


def _lease_lapsed(now: datetime):
    return or_(QueueEntry.lease_expires_at.is_(None), QueueEntry.lease_expires_at < now)


@dataclass(frozen=True)
class QueuedJob:
    """Payload handed to a worker."""

    target_id: str
    job_id: str
    branch: str
    triggered_by: str
    full_reindex: bool = False
    target_type: str = TargetType.PROJECT.value


class IndexingQueue:
    """Priority queue backed by the relational store."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        poll_interval: float | None = None,
        lease_seconds: float | None = None,
        worker_id: str | None = None,
    ) -> None:
        self.session_factory = session_factory or async_session_maker
        self.poll_interval = poll_interval or settings.queue_poll_interval_seconds
        self.lease_seconds = lease_seconds or settings.queue_lease_seconds
        self.max_attempts = settings.queue_max_attempts
        self.worker_id = worker_id or f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"
        self._wakeup = asyncio.Event()
        self._closed = False

    def backoff(self, attempts: int) -> float:
        """Delay before retrying an entry that has been claimed `attempts` times."""
        return settings.queue_retry_backoff_seconds * 2 ** max(attempts - 1, 0)

    async def enqueue(
        self,
        job: QueuedJob,
        priority: QueuePriority | int = QueuePriority.NORMAL,
    ) -> QueueEntry:
        """Add a WAITING entry and wake any idle worker."""
        async with self.session_factory() as session:
            entry = QueueEntry(
                target_type=job.target_type,
                target_id=job.target_id,
                job_id=job.job_id,
                branch=job.branch,
                full_reindex=job.full_reindex,
                triggered_by=job.triggered_by,
                priority=int(priority),
                status=QueueEntryStatus.WAITING.value,
            )
            session.add(entry)
            await session.commit()
            await session.refresh(entry)

        self._wakeup.set()

        await logger.ainfo(
            "queue_entry_added",
            entry_id=entry.id,
            job_id=job.job_id,
            target_type=job.target_type,
            target_id=job.target_id,
            priority=int(priority),
        )

        return entry

    async def _claim_next(self) -> QueueEntry | None:
        async with self.session_factory() as session:
            while True:
                now = utcnow()
                candidate = await session.scalar(
                    select(QueueEntry.id)
                    .where(
                        QueueEntry.status == QueueEntryStatus.WAITING.value,
                        or_(QueueEntry.available_at.is_(None), QueueEntry.available_at <= now),
                    )
                    .order_by(QueueEntry.priority.desc(), QueueEntry.id.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                if candidate is None:
                    await session.commit()
                    return None

                claimed = await session.execute(
                    update(QueueEntry)
                    .where(
                        QueueEntry.id == candidate,
                        QueueEntry.status == QueueEntryStatus.WAITING.value,
                    )
                    .values(
                        status=QueueEntryStatus.ACTIVE.value,
                        started_at=now,
                        attempts=QueueEntry.attempts + 1,
                        worker_id=self.worker_id,
                        lease_expires_at=now + timedelta(seconds=self.lease_seconds),
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                if claimed.rowcount:
                    return await session.get(QueueEntry, candidate)

    async def dequeue(self, timeout: float | None = None) -> QueueEntry | None:
        """
        Claim the next entry, waiting for one to arrive.

        Args:
            timeout: Seconds to wait; None waits until `close()`

        Returns:
            The claimed (ACTIVE) entry, or None on timeout or close
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while not self._closed:
            self._wakeup.clear()
            entry = await self._claim_next()
            if entry is not None:
                return entry

            wait = self.poll_interval
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                wait = min(wait, remaining)
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

        return None

    async def _settle(self, entry_id: int, values: dict, lapsed_only: bool) -> bool:
        now = utcnow()
        conditions = [QueueEntry.id == entry_id]
        if lapsed_only:
            conditions += [
                QueueEntry.status == QueueEntryStatus.ACTIVE.value,
                _lease_lapsed(now),
            ]
        async with self.session_factory() as session:
            result = await session.execute(
                update(QueueEntry)
                .where(*conditions)
                .values(lease_expires_at=None, **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount > 0

    async def _finish(
        self,
        entry_id: int,
        status: QueueEntryStatus,
        error: str | None = None,
        lapsed_only: bool = False,
    ) -> bool:
        return await self._settle(
            entry_id,
            {"status": status.value, "finished_at": utcnow(), "last_error": error},
            lapsed_only,
        )

    async def mark_completed(self, entry_id: int) -> bool:
        return await self._finish(entry_id, QueueEntryStatus.COMPLETED)

    async def mark_failed(self, entry_id: int, error: str, lapsed_only: bool = False) -> bool:
        return await self._finish(entry_id, QueueEntryStatus.FAILED, error, lapsed_only)

    async def mark_cancelled(self, entry_id: int, lapsed_only: bool = False) -> bool:
        return await self._finish(entry_id, QueueEntryStatus.CANCELLED, lapsed_only=lapsed_only)

    async def retry(
        self,
        entry_id: int,
        error: str,
        delay: float = 0.0,
        lapsed_only: bool = False,
    ) -> bool:
        """
        Put a claimed entry back to WAITING.

        The entry is not handed out again for `delay` seconds. With
        `lapsed_only`, nothing happens unless the owner's lease has lapsed.
        """
        retried = await self._settle(
            entry_id,
            {
                "status": QueueEntryStatus.WAITING.value,
                "last_error": error,
                "worker_id": None,
                "started_at": None,
                "available_at": utcnow() + timedelta(seconds=delay),
            },
            lapsed_only,
        )
        if retried:
            self._wakeup.set()
            await logger.awarning(
                "queue_entry_retry_scheduled",
                entry_id=entry_id,
                delay_seconds=delay,
                error=error,
            )
        return retried

    async def renew_leases(self) -> int:
        """Extend the lease of every ACTIVE entry claimed by this instance."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(QueueEntry)
                .where(
                    QueueEntry.status == QueueEntryStatus.ACTIVE.value,
                    QueueEntry.worker_id == self.worker_id,
                )
                .values(lease_expires_at=utcnow() + timedelta(seconds=self.lease_seconds))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount

    async def list_lapsed(self) -> list[QueueEntry]:
        """ACTIVE entries whose owner stopped renewing the lease."""
        async with self.session_factory() as session:
            result = await session.scalars(
                select(QueueEntry)
                .where(
                    QueueEntry.status == QueueEntryStatus.ACTIVE.value,
                    _lease_lapsed(utcnow()),
                )
                .order_by(QueueEntry.id)
            )
            return list(result.all())

    async def stats(self) -> dict[str, int]:
        """Entry counts per state."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(QueueEntry.status, func.count()).group_by(QueueEntry.status)
            )
            counts = dict(result.all())

        return {
            "pending": counts.get(QueueEntryStatus.WAITING.value, 0),
            "active": counts.get(QueueEntryStatus.ACTIVE.value, 0),
            "completed": counts.get(QueueEntryStatus.COMPLETED.value, 0),
            "failed": counts.get(QueueEntryStatus.FAILED.value, 0),
            "cancelled": counts.get(QueueEntryStatus.CANCELLED.value, 0),
        }

    async def _cancel_waiting(self, target_type: TargetType, target_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                update(QueueEntry)
                .where(
                    QueueEntry.target_type == target_type.value,
                    QueueEntry.target_id == target_id,
                    QueueEntry.status == QueueEntryStatus.WAITING.value,
                )
                .values(status=QueueEntryStatus.CANCELLED.value, finished_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount:
            await logger.ainfo(
                "queue_entries_cancelled",
                target_type=target_type.value,
                target_id=target_id,
                count=result.rowcount,
            )
        return result.rowcount

    async def cancel_all_for_project(self, project_id: str) -> int:
        """Cancel every WAITING entry of a project."""
        return await self._cancel_waiting(TargetType.PROJECT, project_id)

    async def cancel_all_for_repository(self, repository_id: str) -> int:
        """Cancel every WAITING entry of a documentation repository."""
        return await self._cancel_waiting(TargetType.DOCUMENTATION, repository_id)

    async def has_entry_for_job(self, job_id: str) -> bool:
        """Whether a job is still WAITING or ACTIVE in the queue."""
        async with self.session_factory() as session:
            found = await session.scalar(
                select(QueueEntry.id)
                .where(
                    QueueEntry.job_id == job_id,
                    QueueEntry.status.in_(
                        (QueueEntryStatus.WAITING.value, QueueEntryStatus.ACTIVE.value)
                    ),
                )
                .limit(1)
            )
        return found is not None

    async def clean(
        self,
        keep_completed: int | None = None,
        keep_failed: int | None = None,
    ) -> int:
        """Prune finished entries, keeping the most recent ones of each kind."""
        keep_completed = settings.queue_keep_completed if keep_completed is None else keep_completed
        keep_failed = settings.queue_keep_failed if keep_failed is None else keep_failed
        removed = 0

        async with self.session_factory() as session:
            for status, keep in (
                (QueueEntryStatus.COMPLETED, keep_completed),
                (QueueEntryStatus.FAILED, keep_failed),
                (QueueEntryStatus.CANCELLED, keep_failed),
            ):
                stale = (
                    await session.scalars(
                        select(QueueEntry.id)
                        .where(QueueEntry.status == status.value)
                        .order_by(QueueEntry.id.desc())
                        .offset(keep)
                    )
                ).all()
                if stale:
                    await session.execute(
                        delete(QueueEntry)
                        .where(QueueEntry.id.in_(stale))
                        .execution_options(synchronize_session=False)
                    )
                    removed += len(stale)
            await session.commit()

        if removed:
            await logger.ainfo("queue_cleaned", removed=removed)
        return removed

    def close(self) -> None:
        """Release every waiter blocked in `dequeue`."""
        self._closed = True
        self._wakeup.set()
