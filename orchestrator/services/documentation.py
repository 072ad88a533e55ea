"""
Documentation Service - Documentation repository records.
"""

from datetime import datetime, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.config import get_settings
from orchestrator.core.errors import DocumentationRepositoryNotFoundError
from orchestrator.database import utcnow
from orchestrator.models import DocumentationRepository, SourceType

settings = get_settings()
logger = structlog.get_logger(__name__)


async def create_documentation_repository(
    db: AsyncSession,
    name: str,
    url: str,
    source_type: SourceType | str = SourceType.GIT,
    branch: str | None = None,
    reindex_interval: int | None = None,
    auto_reindex_enabled: bool = True,
) -> DocumentationRepository:
    """
    Register a documentation source.

    The first automatic run is scheduled one interval from now.
    """
    interval = reindex_interval or settings.default_reindex_interval_days
    repository = DocumentationRepository(
        name=name,
        url=url,
        source_type=SourceType(source_type).value,
        branch=branch or settings.default_branch,
        reindex_interval=interval,
        auto_reindex_enabled=auto_reindex_enabled,
        next_reindex_at=utcnow() + timedelta(days=interval) if auto_reindex_enabled else None,
    )
    db.add(repository)
    await db.commit()
    await db.refresh(repository)

    await logger.ainfo(
        "documentation_repository_created",
        repository_id=repository.id,
        source_type=repository.source_type,
    )

    return repository


async def get_documentation_repository(
    db: AsyncSession,
    repository_id: str,
) -> DocumentationRepository:
    """
    Get documentation repository by ID.

    Raises:
        DocumentationRepositoryNotFoundError: If it doesn't exist
    """
    repository = await db.get(DocumentationRepository, repository_id, populate_existing=True)
    if repository is None:
        raise DocumentationRepositoryNotFoundError(repository_id)
    return repository


async def list_repositories_due_for_reindexing(
    db: AsyncSession,
    now: datetime | None = None,
) -> list[DocumentationRepository]:
    """Active repositories with auto-reindex enabled whose next run has passed."""
    now = now or utcnow()
    result = await db.execute(
        select(DocumentationRepository)
        .where(
            DocumentationRepository.is_active.is_(True),
            DocumentationRepository.auto_reindex_enabled.is_(True),
            DocumentationRepository.next_reindex_at.is_not(None),
            DocumentationRepository.next_reindex_at <= now,
        )
        .order_by(DocumentationRepository.next_reindex_at)
    )
    return list(result.scalars().all())
