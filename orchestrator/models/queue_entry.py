"""
QueueEntry Model - Durable storage behind the indexing priority queue.

Rows are ordered by (priority DESC, id ASC); the autoincrement id provides
FIFO order within a priority tier. A claimed row carries its owner and a
lease that the owner keeps renewing; only rows with a lapsed lease are
recovered by other workers.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from orchestrator.database import GUID, Base, UTCDateTime, utcnow


class QueuePriority(int, enum.Enum):
    """Dequeue priority; operator work preempts background sweeps."""

    HIGH = 10
    NORMAL = 5
    LOW = 1


class QueueEntryStatus(str, enum.Enum):
    """Queue entry states."""

    WAITING = "WAITING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class TargetType(str, enum.Enum):
    """Kind of record a queued job belongs to."""

    PROJECT = "project"
    DOCUMENTATION = "documentation"


class QueueEntry(Base):
    """A queued reference to a PENDING job."""

    __tablename__ = "queue_entries"
    __table_args__ = (
        Index("ix_queue_entries_dequeue_order", "status", "priority", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=TargetType.PROJECT.value
    )
    target_id: Mapped[str] = mapped_column(GUID(), nullable=False, index=True)
    job_id: Mapped[str] = mapped_column(GUID(), nullable=False, index=True)
    branch: Mapped[str] = mapped_column(String(255), nullable=False, default="main")
    full_reindex: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    triggered_by: Mapped[str] = mapped_column(String(32), nullable=False)
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=QueuePriority.NORMAL.value
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=QueueEntryStatus.WAITING.value,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)
    worker_id: Mapped[str | None] = mapped_column(String(255))

    enqueued_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    available_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    lease_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    @property
    def is_project(self) -> bool:
        return self.target_type == TargetType.PROJECT.value

    def __repr__(self) -> str:
        return (
            f"<QueueEntry #{self.id} {self.target_type}:{self.target_id[:8]} "
            f"p={self.priority} {self.status}>"
        )
