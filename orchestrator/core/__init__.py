"""Core utilities package."""

from orchestrator.core.errors import (
    AppException,
    DocumentationRepositoryNotFoundError,
    ErrorCode,
    ErrorResponse,
    IndexingCancelled,
    IndexingInProgressError,
    InvalidWebhookError,
    JobNotFoundError,
    JobStateError,
    NoActiveJobError,
    ProjectNotFoundError,
    QueueUnavailableError,
    RateLimitedError,
    UnauthorizedError,
)
from orchestrator.core.git import GitClient, GitOperationError
from orchestrator.core.interfaces import (
    Chunker,
    Embedder,
    ProgressCallback,
    SemanticChunk,
    VectorStore,
)

__all__ = [
    # Errors
    "AppException",
    "ErrorCode",
    "ErrorResponse",
    "ProjectNotFoundError",
    "DocumentationRepositoryNotFoundError",
    "JobNotFoundError",
    "NoActiveJobError",
    "IndexingInProgressError",
    "JobStateError",
    "InvalidWebhookError",
    "QueueUnavailableError",
    "UnauthorizedError",
    "RateLimitedError",
    "IndexingCancelled",
    # Git
    "GitClient",
    "GitOperationError",
    # Collaborators
    "SemanticChunk",
    "Chunker",
    "Embedder",
    "VectorStore",
    "ProgressCallback",
]
