"""
Admin Schemas - Scheduler sweep and queue monitoring models.
"""

from datetime import datetime

from pydantic import BaseModel


class SweepTargetResult(BaseModel):
    target_type: str
    target_id: str
    name: str
    success: bool
    action: str
    message: str


class SweepResponse(BaseModel):
    """Result of one scheduled sweep."""

    success: bool
    projects_processed: int
    results: list[SweepTargetResult]


class DueTarget(BaseModel):
    target_type: str
    target_id: str
    name: str
    branch: str | None = None
    next_run: datetime | None = None
    index_status: str | None = None
    source_type: str | None = None


class DueTargetsResponse(BaseModel):
    """Targets the next sweep would check."""

    targets: list[DueTarget]
    total: int


class QueueStats(BaseModel):
    pending: int
    active: int
    completed: int
    failed: int
    cancelled: int


class QueueStatsResponse(BaseModel):
    queue_stats: QueueStats
