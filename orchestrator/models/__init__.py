"""Models package - SQLAlchemy data models."""

from orchestrator.models.documentation import (
    DocumentationRepository,
    IndexingOutcomeStatus,
    SourceType,
)
from orchestrator.models.job import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    DocumentationIndexingJob,
    IndexingJob,
    JobStatus,
    TerminalJobMutationError,
    TriggerType,
)
from orchestrator.models.project import IndexStatus, Project
from orchestrator.models.queue_entry import (
    QueueEntry,
    QueueEntryStatus,
    QueuePriority,
    TargetType,
)

__all__ = [
    # Project
    "Project",
    "IndexStatus",
    # Jobs
    "IndexingJob",
    "DocumentationIndexingJob",
    "JobStatus",
    "TriggerType",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "TerminalJobMutationError",
    # Documentation
    "DocumentationRepository",
    "SourceType",
    "IndexingOutcomeStatus",
    # Queue
    "QueueEntry",
    "QueueEntryStatus",
    "QueuePriority",
    "TargetType",
]
