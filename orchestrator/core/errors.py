"""
Indexing Orchestrator - Standardized Error Handling

This module provides canonical error codes, exception classes, and FastAPI
exception handlers for consistent error responses across the API.
"""

from enum import Enum
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Canonical error codes returned by the API."""

    # Target errors
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    DOCUMENTATION_NOT_FOUND = "DOCUMENTATION_NOT_FOUND"

    # Job errors
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    JOB_IN_PROGRESS = "JOB_IN_PROGRESS"
    JOB_STATE_CONFLICT = "JOB_STATE_CONFLICT"
    NO_ACTIVE_JOB = "NO_ACTIVE_JOB"

    # Trigger errors
    INVALID_WEBHOOK = "INVALID_WEBHOOK"
    QUEUE_UNAVAILABLE = "QUEUE_UNAVAILABLE"

    # Auth errors
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standardized error response format."""

    error_code: ErrorCode
    message: str
    details: dict[str, Any] = {}
    retry_after: int | None = None


class AppException(Exception):
    """Base application exception with structured error info."""

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: dict[str, Any] | None = None,
        retry_after: int | None = None,
    ) -> None:
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.retry_after = retry_after
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response model."""
        return ErrorResponse(
            error_code=self.error_code,
            message=self.message,
            details=self.details,
            retry_after=self.retry_after,
        )


class ProjectNotFoundError(AppException):
    """Raised when a project does not exist."""

    def __init__(self, project_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.PROJECT_NOT_FOUND,
            message=f"Project not found: {project_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"project_id": project_id},
        )


class DocumentationRepositoryNotFoundError(AppException):
    """Raised when a documentation repository does not exist."""

    def __init__(self, repository_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.DOCUMENTATION_NOT_FOUND,
            message=f"Documentation repository not found: {repository_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"repository_id": repository_id},
        )


class JobNotFoundError(AppException):
    """Raised when job is not found."""

    def __init__(self, job_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.JOB_NOT_FOUND,
            message=f"Job not found: {job_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"job_id": job_id},
        )


class NoActiveJobError(AppException):
    """Raised when stopping a target that has nothing running."""

    def __init__(self, target_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.NO_ACTIVE_JOB,
            message="No active indexing job found",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"target_id": target_id},
        )


class IndexingInProgressError(AppException):
    """Raised when a target already has a PENDING or RUNNING job."""

    def __init__(self, target_id: str) -> None:
        super().__init__(
            error_code=ErrorCode.JOB_IN_PROGRESS,
            message="Indexing already in progress",
            status_code=status.HTTP_409_CONFLICT,
            details={"target_id": target_id},
        )


class JobStateError(AppException):
    """Raised when a transition is not allowed from the job's current state."""

    def __init__(self, job_id: str, current_state: str, action: str) -> None:
        super().__init__(
            error_code=ErrorCode.JOB_STATE_CONFLICT,
            message=f"Cannot {action} job in state {current_state}",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "job_id": job_id,
                "current_state": current_state,
                "action": action,
            },
        )


class InvalidWebhookError(AppException):
    """Raised when a webhook cannot be attributed to a platform or fails verification."""

    def __init__(self, reason: str = "Invalid webhook") -> None:
        super().__init__(
            error_code=ErrorCode.INVALID_WEBHOOK,
            message=reason,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class QueueUnavailableError(AppException):
    """Raised when a job could not be handed to the queue."""

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(
            error_code=ErrorCode.QUEUE_UNAVAILABLE,
            message="Failed to queue indexing job",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"job_id": job_id, "error": reason},
            retry_after=30,
        )


class UnauthorizedError(AppException):
    """Raised when authentication fails."""

    def __init__(self, reason: str = "Invalid or missing credentials") -> None:
        super().__init__(
            error_code=ErrorCode.UNAUTHORIZED,
            message=reason,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class RateLimitedError(AppException):
    """Raised when rate limit is exceeded."""

    def __init__(self, retry_after: int = 60) -> None:
        super().__init__(
            error_code=ErrorCode.RATE_LIMITED,
            message="Rate limit exceeded. Please retry later.",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            retry_after=retry_after,
        )


class IndexingCancelled(Exception):
    """Raised inside a pipeline when its job was cancelled between files."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} was cancelled")


# FastAPI exception handlers
async def app_exception_handler(
    request: Request, exc: AppException
) -> JSONResponse:
    """Handle application exceptions."""
    response = exc.to_response()
    headers = {}
    if response.retry_after:
        headers["Retry-After"] = str(response.retry_after)
    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(exclude_none=True),
        headers=headers,
    )


async def http_exception_handler(
    request: Request, exc: HTTPException
) -> JSONResponse:
    """Handle standard HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error_code=ErrorCode.INTERNAL_ERROR,
            message=str(exc.detail),
        ).model_dump(exclude_none=True),
    )


async def general_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handle unhandled exceptions."""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error_code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected error occurred",
        ).model_dump(exclude_none=True),
    )
