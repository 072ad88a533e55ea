"""
Indexing Schemas - Pydantic models for trigger and schedule endpoints.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from orchestrator.schemas.job import IndexingJobResponse


class StartIndexingRequest(BaseModel):
    """Request to index a project."""

    branch: str | None = Field(None, description="Branch to index; defaults to the configured default branch")
    full_reindex: bool = Field(True, description="Drop existing vectors and rescan every file")
    triggered_by: Literal["MANUAL", "API"] = "MANUAL"


class StartDocumentationIndexingRequest(BaseModel):
    """Request to index a documentation repository."""

    force_reindex: bool = False


class ProjectIndexStatusResponse(BaseModel):
    """A project's indexing state and its active job, if any."""

    project_id: str
    index_status: str
    index_progress: int
    last_indexed_commit: str | None = None
    last_indexed_branch: str | None = None
    last_indexed_at: datetime | None = None
    file_count: int
    vector_count: int
    last_error: str | None = None
    active_job: IndexingJobResponse | None = None


class ScheduleRequest(BaseModel):
    """Scheduled indexing settings for a project."""

    enabled: bool
    interval_days: int | None = Field(None, ge=1, le=365)
    branch: str | None = None


class ScheduleResponse(BaseModel):
    project_id: str
    enabled: bool
    interval_days: int
    branch: str
    last_run: datetime | None = None
    next_run: datetime | None = None
