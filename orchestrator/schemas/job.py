"""
Job Schemas - Pydantic models for job tracking API.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from orchestrator.models import DocumentationIndexingJob, IndexingJob


class IndexingJobResponse(BaseModel):
    """Indexing job status response."""

    job_id: str = Field(..., description="Unique job identifier")
    project_id: str = Field(..., description="Project being indexed")
    status: str = Field(..., description="PENDING, RUNNING, COMPLETED, FAILED or CANCELLED")
    branch: str
    full_reindex: bool
    triggered_by: str = Field(..., description="MANUAL, API, WEBHOOK or SCHEDULED")
    progress: int = Field(..., ge=0, le=100, description="Progress percentage")
    total_files: int = 0
    processed_files: int = 0
    current_file: str | None = None
    error_count: int = 0
    vectors_added: int = 0
    vectors_updated: int = 0
    vectors_deleted: int = 0
    commit_hash: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_job(cls, job: IndexingJob) -> "IndexingJobResponse":
        return cls(
            job_id=job.id,
            project_id=job.project_id,
            status=job.status,
            branch=job.branch,
            full_reindex=job.full_reindex,
            triggered_by=job.triggered_by,
            progress=job.progress,
            total_files=job.total_files,
            processed_files=job.processed_files,
            current_file=job.current_file,
            error_count=job.error_count,
            vectors_added=job.vectors_added,
            vectors_updated=job.vectors_updated,
            vectors_deleted=job.vectors_deleted,
            commit_hash=job.commit_hash,
            error_message=job.error_message,
            started_at=job.started_at,
            completed_at=job.completed_at,
            created_at=job.created_at,
        )


class JobListResponse(BaseModel):
    """A project's recent jobs, newest first."""

    project_id: str
    jobs: list[IndexingJobResponse]
    total: int


class DocumentationJobResponse(BaseModel):
    """Documentation indexing job status response."""

    job_id: str
    repository_id: str
    status: str
    source_type: str
    branch: str
    force_reindex: bool
    triggered_by: str
    progress: int = Field(..., ge=0, le=100)
    total_documents: int = 0
    processed_documents: int = 0
    documents_added: int = 0
    commit_hash: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_job(cls, job: DocumentationIndexingJob) -> "DocumentationJobResponse":
        return cls(
            job_id=job.id,
            repository_id=job.repository_id,
            status=job.status,
            source_type=job.source_type,
            branch=job.branch,
            force_reindex=job.force_reindex,
            triggered_by=job.triggered_by,
            progress=job.progress,
            total_documents=job.total_documents,
            processed_documents=job.processed_documents,
            documents_added=job.documents_added,
            commit_hash=job.commit_hash,
            error_message=job.error_message,
            started_at=job.started_at,
            completed_at=job.completed_at,
            created_at=job.created_at,
        )


class StopIndexingResponse(BaseModel):
    """Result of cancelling an active job."""

    message: str
    job_id: str
