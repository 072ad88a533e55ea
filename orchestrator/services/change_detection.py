"""
Change Detection Service - Decides whether a source has moved since its last index.

Detection is fail-closed: any git error or timeout is reported as "no
reindex needed" with the error attached, and the source is retried on its
next scheduled run.
"""

from dataclasses import dataclass

import structlog

from orchestrator.config import get_settings
from orchestrator.core.git import GitClient, GitOperationError
from orchestrator.models import DocumentationRepository, Project, SourceType

settings = get_settings()
logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ChangeSource:
    """What the detector needs to know about a project or documentation source."""

    url: str
    branch: str
    last_indexed_commit: str | None
    source_type: str = SourceType.GIT.value
    name: str | None = None

    @classmethod
    def from_project(cls, project: Project) -> "ChangeSource":
        return cls(
            url=project.git_repo,
            branch=project.scheduled_indexing_branch or settings.default_branch,
            last_indexed_commit=project.last_indexed_commit,
            name=project.name,
        )

    @classmethod
    def from_documentation(cls, repository: DocumentationRepository) -> "ChangeSource":
        return cls(
            url=repository.url,
            branch=repository.branch,
            last_indexed_commit=repository.last_indexed_commit,
            source_type=repository.source_type,
            name=repository.name,
        )


@dataclass(frozen=True)
class ChangeCheck:
    needs_reindexing: bool
    reason: str
    latest_ref: str | None = None
    error: str | None = None


class ChangeDetector:
    """Compares a source's remote head with its last indexed commit."""

    def __init__(self, git: GitClient | None = None, timeout: float | None = None) -> None:
        self.git = git or GitClient()
        self.timeout = timeout or settings.git_check_timeout_seconds

    async def needs_reindexing(self, source: ChangeSource) -> ChangeCheck:
        if source.source_type != SourceType.GIT.value:
            return ChangeCheck(
                needs_reindexing=True,
                reason="Non-git sources always need reindexing check",
            )

        try:
            latest = await self.git.resolve_head_commit(
                source.url, source.branch, timeout=self.timeout
            )
        except GitOperationError as e:
            await logger.awarning(
                "change_detection_failed",
                url=source.url,
                branch=source.branch,
                error=str(e),
            )
            return ChangeCheck(
                needs_reindexing=False,
                reason=f"Failed to check repository: {e}",
                error=str(e),
            )

        if not source.last_indexed_commit:
            return ChangeCheck(
                needs_reindexing=True,
                latest_ref=latest,
                reason="Repository never indexed before",
            )

        if source.last_indexed_commit != latest:
            return ChangeCheck(
                needs_reindexing=True,
                latest_ref=latest,
                reason=(
                    f"New commits available "
                    f"({source.last_indexed_commit[:7]} -> {latest[:7]})"
                ),
            )

        return ChangeCheck(
            needs_reindexing=False,
            latest_ref=latest,
            reason="Repository up to date",
        )
