"""
Health Check API - Health and readiness endpoints.
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator import __version__
from orchestrator.config import get_settings
from orchestrator.database import get_db, utcnow

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    status: str
    timestamp: str
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="healthy",
        timestamp=utcnow().isoformat(),
        version=__version__,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> ReadinessResponse:
    """
    Readiness check endpoint.

    Verifies the database answers, the index directory exists and, when
    workers run in-process, that the pool is up.
    """
    settings = get_settings()
    checks = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError:
        checks["database"] = False

    checks["indexes_path"] = settings.indexes_path.exists()

    pool = getattr(request.app.state, "worker_pool", None)
    if settings.run_workers_in_app:
        checks["workers"] = pool is not None and pool.is_running

    all_healthy = all(checks.values())

    return ReadinessResponse(
        status="ready" if all_healthy else "degraded",
        timestamp=utcnow().isoformat(),
        checks=checks,
    )
