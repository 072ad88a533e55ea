"""Schemas package - Pydantic API models."""

from orchestrator.schemas.admin import (
    DueTarget,
    DueTargetsResponse,
    QueueStats,
    QueueStatsResponse,
    SweepResponse,
    SweepTargetResult,
)
from orchestrator.schemas.indexing import (
    ProjectIndexStatusResponse,
    ScheduleRequest,
    ScheduleResponse,
    StartDocumentationIndexingRequest,
    StartIndexingRequest,
)
from orchestrator.schemas.job import (
    DocumentationJobResponse,
    IndexingJobResponse,
    JobListResponse,
    StopIndexingResponse,
)
from orchestrator.schemas.webhook import WebhookResponse

__all__ = [
    # Jobs
    "IndexingJobResponse",
    "DocumentationJobResponse",
    "JobListResponse",
    "StopIndexingResponse",
    # Indexing
    "StartIndexingRequest",
    "StartDocumentationIndexingRequest",
    "ProjectIndexStatusResponse",
    "ScheduleRequest",
    "ScheduleResponse",
    # Webhooks
    "WebhookResponse",
    # Admin
    "SweepResponse",
    "SweepTargetResult",
    "DueTarget",
    "DueTargetsResponse",
    "QueueStats",
    "QueueStatsResponse",
]
