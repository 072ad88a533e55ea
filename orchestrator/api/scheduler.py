"""
Scheduler API - Scheduled sweep and queue monitoring endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.api.dependencies import get_detector, get_queue
from orchestrator.database import get_db
from orchestrator.middleware import validate_api_key
from orchestrator.schemas import (
    DueTarget,
    DueTargetsResponse,
    QueueStats,
    QueueStatsResponse,
    SweepResponse,
)
from orchestrator.services.change_detection import ChangeDetector
from orchestrator.services.queue import IndexingQueue
from orchestrator.services.scheduler import list_due_targets, run_scheduled_sweep

router = APIRouter(tags=["Scheduler"])


@router.post("/scheduler/run", response_model=SweepResponse)
async def run_sweep(
    db: AsyncSession = Depends(get_db),
    queue: IndexingQueue = Depends(get_queue),
    detector: ChangeDetector = Depends(get_detector),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> SweepResponse:
    """
    Check every due project and documentation source and queue those that changed.

    Intended to be called by an external cron. Targets are processed one
    after another; a failing target is reported and the sweep continues.
    """
    return SweepResponse(**await run_scheduled_sweep(db, queue, detector))


@router.get("/scheduler/run", response_model=DueTargetsResponse)
async def get_due_targets(
    db: AsyncSession = Depends(get_db),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> DueTargetsResponse:
    """List what the next sweep would check, without side effects."""
    targets = [DueTarget(**target) for target in await list_due_targets(db)]
    return DueTargetsResponse(targets=targets, total=len(targets))


@router.api_route("/admin/queue-stats", methods=["GET", "POST"], response_model=QueueStatsResponse)
async def queue_stats(
    queue: IndexingQueue = Depends(get_queue),
    api_key: Annotated[str | None, Depends(validate_api_key)] = None,
) -> QueueStatsResponse:
    return QueueStatsResponse(queue_stats=QueueStats(**await queue.stats()))
