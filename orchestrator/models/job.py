"""
Job Models - Indexing job tracking for projects and documentation sources.

Jobs are created PENDING by a trigger, owned by a worker while RUNNING, and
frozen once they reach a terminal state.
"""

import enum
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
    func,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

from orchestrator.database import GUID, Base, UTCDateTime, utcnow

if TYPE_CHECKING:
    from orchestrator.models.documentation import DocumentationRepository
    from orchestrator.models.project import Project


class JobStatus(str, enum.Enum):
    """Job execution status."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class TriggerType(str, enum.Enum):
    """What asked for the indexing run."""

    MANUAL = "MANUAL"
    WEBHOOK = "WEBHOOK"
    SCHEDULED = "SCHEDULED"
    API = "API"


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)
TERMINAL_STATUSES = (
    JobStatus.COMPLETED.value,
    JobStatus.FAILED.value,
    JobStatus.CANCELLED.value,
)

# Partial index predicate shared by both job tables
_ACTIVE_PREDICATE = text("status IN ('PENDING', 'RUNNING')")


class JobStateMixin:
    """Lifecycle columns shared by every indexing job table."""

    id: Mapped[str] = mapped_column(
        GUID(),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=JobStatus.PENDING.value,
        index=True,
    )
    branch: Mapped[str] = mapped_column(String(255), nullable=False, default="main")
    triggered_by: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=TriggerType.MANUAL.value,
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    commit_hash: Mapped[str | None] = mapped_column(String(64))
    error_message: Mapped[str | None] = mapped_column(Text)

    # Execution metadata
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            UTCDateTime(),
            default=utcnow,
            server_default=func.now(),
            nullable=False,
        )

    @property
    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """Check if job still holds the target's indexing slot."""
        return self.status in ACTIVE_STATUSES

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class IndexingJob(JobStateMixin, Base):
    """Indexing run for a project's git repository."""

    __tablename__ = "indexing_jobs"
    __table_args__ = (
        # At most one PENDING/RUNNING job per project
        Index(
            "uq_indexing_jobs_active_project",
            "project_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
    )

    project_id: Mapped[str] = mapped_column(
        GUID(),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    full_reindex: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Progress
    current_file: Mapped[str | None] = mapped_column(String(1024))
    total_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Vector statistics
    vectors_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vectors_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vectors_deleted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    project: Mapped["Project"] = relationship("Project", back_populates="jobs")

    @property
    def target_id(self) -> str:
        return self.project_id

    def __repr__(self) -> str:
        return f"<IndexingJob {self.id[:8]} project={self.project_id[:8]}:{self.status}>"


class DocumentationIndexingJob(JobStateMixin, Base):
    """Indexing run for a documentation source (git, llms.txt or website)."""

    __tablename__ = "documentation_indexing_jobs"
    __table_args__ = (
        Index(
            "uq_documentation_indexing_jobs_active_repository",
            "repository_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
    )

    repository_id: Mapped[str] = mapped_column(
        GUID(),
        ForeignKey("documentation_repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_type: Mapped[str] = mapped_column(String(32), nullable=False, default="git")
    force_reindex: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Progress
    total_documents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_documents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    documents_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    repository: Mapped["DocumentationRepository"] = relationship(
        "DocumentationRepository", back_populates="jobs"
    )

    @property
    def target_id(self) -> str:
        return self.repository_id

    def __repr__(self) -> str:
        return (
            f"<DocumentationIndexingJob {self.id[:8]} "
            f"repository={self.repository_id[:8]}:{self.status}>"
        )


class TerminalJobMutationError(RuntimeError):
    """Raised at flush time when a finished job row would be rewritten."""


def _reject_terminal_mutation(mapper, connection, target) -> None:
    history = inspect(target).attrs.status.history
    previous = history.deleted or history.unchanged
    if previous and previous[0] in TERMINAL_STATUSES:
        raise TerminalJobMutationError(
            f"Job {target.id} is {previous[0]} and can no longer be modified"
        )


event.listen(IndexingJob, "before_update", _reject_terminal_mutation)
event.listen(DocumentationIndexingJob, "before_update", _reject_terminal_mutation)
