"""
DocumentationRepository Model - Crawled or cloned documentation sources.
"""

import enum
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Boolean, Float, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orchestrator.database import GUID, Base, UTCDateTime, utcnow

if TYPE_CHECKING:
    from orchestrator.models.job import DocumentationIndexingJob


class SourceType(str, enum.Enum):
    """How a documentation source is fetched."""

    GIT = "git"
    LLMSTXT = "llmstxt"
    WEBSITE = "website"


class IndexingOutcomeStatus(str, enum.Enum):
    """Values written to `last_indexing_status`."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class DocumentationRepository(Base):
    """Documentation source indexed on an interval."""

    __tablename__ = "documentation_repositories"

    id: Mapped[str] = mapped_column(
        GUID(),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    branch: Mapped[str] = mapped_column(String(255), nullable=False, default="main")
    source_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=SourceType.GIT.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Last run
    last_indexed_commit: Mapped[str | None] = mapped_column(String(64))
    last_indexed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    total_documents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_indexing_status: Mapped[str | None] = mapped_column(String(32))
    last_indexing_error: Mapped[str | None] = mapped_column(Text)
    last_indexing_duration: Mapped[float | None] = mapped_column(Float)  # seconds

    # Scheduling
    auto_reindex_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, index=True
    )
    reindex_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=14)  # days
    next_reindex_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), index=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    jobs: Mapped[list["DocumentationIndexingJob"]] = relationship(
        "DocumentationIndexingJob",
        back_populates="repository",
        cascade="all, delete-orphan",
    )

    @property
    def is_git(self) -> bool:
        return self.source_type == SourceType.GIT.value

    def __repr__(self) -> str:
        return f"<DocumentationRepository {self.name} ({self.source_type})>"
