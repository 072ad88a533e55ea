"""
Project Model - Indexing-relevant state of a git-backed project.

`index_status` is a summary derived from the project's most recent job and is
only written by trigger adapters and the status reconciler.
"""

import enum
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Boolean, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orchestrator.database import GUID, Base, UTCDateTime, utcnow

if TYPE_CHECKING:
    from orchestrator.models.job import IndexingJob


class IndexStatus(str, enum.Enum):
    """Project indexing summary states."""

    IDLE = "IDLE"
    INDEXING = "INDEXING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class Project(Base):
    """Project entity whose git repository is indexed into the vector store."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(
        GUID(),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    git_repo: Mapped[str] = mapped_column(String(1024), nullable=False)

    # Indexing summary
    index_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=IndexStatus.IDLE.value,
        index=True,
    )
    index_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_indexed_commit: Mapped[str | None] = mapped_column(String(64))
    last_indexed_branch: Mapped[str | None] = mapped_column(String(255))
    last_indexed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    file_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vector_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)

    # Webhooks
    webhook_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    webhook_secret: Mapped[str | None] = mapped_column(String(256))
    last_webhook_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    last_webhook_commit: Mapped[str | None] = mapped_column(String(64))
    last_webhook_branch: Mapped[str | None] = mapped_column(String(255))
    last_webhook_author: Mapped[str | None] = mapped_column(String(256))

    # Scheduled indexing
    scheduled_indexing_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )
    scheduled_indexing_interval: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )  # days
    scheduled_indexing_branch: Mapped[str] = mapped_column(
        String(255), nullable=False, default="main"
    )
    scheduled_indexing_last_run: Mapped[datetime | None] = mapped_column(UTCDateTime())
    scheduled_indexing_next_run: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), index=True
    )

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

    # Relationships
    jobs: Mapped[list["IndexingJob"]] = relationship(
        "IndexingJob", back_populates="project", cascade="all, delete-orphan"
    )

    @property
    def is_indexing(self) -> bool:
        return self.index_status == IndexStatus.INDEXING.value

    def __repr__(self) -> str:
        return f"<Project {self.name} ({self.index_status})>"
