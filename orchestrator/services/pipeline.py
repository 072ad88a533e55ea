"""
Pipeline Service - Parse, embed and store the content of one indexing job.

The pipeline does not touch job or project rows; it reports progress through
the callback it is given, which is also where cancellation surfaces.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from orchestrator.config import get_settings
from orchestrator.core.chunking import (
    DOCUMENTATION_EXTENSIONS,
    CodeChunker,
    is_indexable,
    iter_indexable_files,
    read_file_safe,
)
from orchestrator.core.fetcher import DocumentFetcher
from orchestrator.core.git import GitClient, GitOperationError
from orchestrator.core.interfaces import Chunker, Embedder, ProgressCallback, VectorStore
from orchestrator.models import (
    DocumentationIndexingJob,
    DocumentationRepository,
    IndexingJob,
    Project,
    SourceType,
)

settings = get_settings()
logger = structlog.get_logger(__name__)


def project_namespace(project_id: str) -> str:
    return f"project:{project_id}"


def documentation_namespace(repository_id: str) -> str:
    return f"docs:{repository_id}"


@dataclass
class PipelineResult:
    commit_hash: str | None = None
    file_count: int = 0
    vector_count: int = 0
    vectors_added: int = 0
    vectors_updated: int = 0
    vectors_deleted: int = 0
    documents: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    skipped: list[str] = field(default_factory=list)


@dataclass
class _WorkPlan:
    """Files to (re)process and sources whose vectors must go."""

    process: list[str]
    delete: list[str]
    updates: set[str]
    full: bool


class IndexingPipeline:
    """
    Indexes project repositories and documentation sources.

    Collaborators are injected so tests can swap in fakes.
    """

    def __init__(
        self,
        chunker: Chunker | None = None,
        embedder: Embedder | None = None,
        vector_store: VectorStore | None = None,
        git: GitClient | None = None,
        fetcher: DocumentFetcher | None = None,
    ) -> None:
        if embedder is None:
            from orchestrator.core.embeddings import SentenceTransformerEmbedder

            embedder = SentenceTransformerEmbedder()
        if vector_store is None:
            from orchestrator.core.vector_store import FaissVectorStore

            vector_store = FaissVectorStore()

        self.chunker = chunker or CodeChunker()
        self.embedder = embedder
        self.vector_store = vector_store
        self.git = git or GitClient()
        self.fetcher = fetcher or DocumentFetcher()

    async def _index_content(
        self,
        namespace: str,
        source: str,
        content: str,
    ) -> int:
        chunks = self.chunker.parse(content, source)
        if not chunks:
            await self.vector_store.delete_vectors(namespace, source)
            return 0
        vectors = await self.embedder.embed(chunks)
        return await self.vector_store.upsert_vectors(namespace, source, chunks, vectors)

    async def _index_document(
        self,
        namespace: str,
        source: str,
        content: str,
        result: PipelineResult,
    ) -> None:
        try:
            result.vectors_added += await self._index_content(namespace, source, content)
        except (ValueError, UnicodeError) as e:
            await logger.awarning("file_parse_failed", path=source, error=str(e))
            result.errors += 1
            return
        result.documents += 1

    async def _plan(
        self,
        root: Path,
        last_commit: str | None,
        full_reindex: bool,
        files: list[str],
    ) -> _WorkPlan:
        if full_reindex or not last_commit:
            return _WorkPlan(process=files, delete=[], updates=set(), full=True)

        try:
            changes = await self.git.diff_name_status(root, last_commit, "HEAD")
        except GitOperationError as e:
            await logger.awarning(
                "incremental_diff_failed",
                from_commit=last_commit,
                error=str(e),
            )
            return _WorkPlan(process=files, delete=[], updates=set(), full=True)

        process: list[str] = []
        delete: list[str] = []
        updates: set[str] = set()
        for change in changes:
            if change.status == "D":
                delete.append(change.path)
                continue
            if change.status == "R" and change.old_path:
                delete.append(change.old_path)
            if is_indexable(change.path):
                process.append(change.path)
                if change.status in ("M", "R"):
                    updates.add(change.path)

        return _WorkPlan(process=process, delete=delete, updates=updates, full=False)

    async def index_project(
        self,
        job: IndexingJob,
        project: Project,
        progress: ProgressCallback,
    ) -> PipelineResult:
        """
        Index a project's repository at the job's branch.

        A full run replaces the namespace; an incremental run only touches
        files changed since `project.last_indexed_commit`.

        Raises:
            GitOperationError: If the repository cannot be checked out
            IndexingCancelled: Propagated from `progress`
        """
        started = time.monotonic()
        namespace = project_namespace(project.id)
        incremental = not job.full_reindex and bool(project.last_indexed_commit)
        result = PipelineResult()

        async with self.git.checkout(
            project.git_repo, job.branch, shallow=not incremental
        ) as checkout:
            result.commit_hash = checkout.commit_hash
            files = list(iter_indexable_files(checkout.path))
            result.file_count = len(files)

            plan = await self._plan(
                checkout.path,
                project.last_indexed_commit,
                job.full_reindex,
                files,
            )
            if plan.full:
                result.vectors_deleted += await self.vector_store.delete_namespace(namespace)

            for source in plan.delete:
                result.vectors_deleted += await self.vector_store.delete_vectors(namespace, source)

            total = len(plan.process)
            await logger.ainfo(
                "pipeline_started",
                job_id=job.id,
                project_id=project.id,
                commit=checkout.commit_hash,
                full=plan.full,
                files=total,
                deletions=len(plan.delete),
            )

            for processed, relative in enumerate(plan.process):
                await progress(processed, total, relative)

                path = checkout.path / relative
                try:
                    content = read_file_safe(path)
                except OSError as e:
                    await logger.awarning("file_read_failed", path=relative, error=str(e))
                    result.errors += 1
                    continue
                if content is None:
                    result.skipped.append(relative)
                    continue

                try:
                    written = await self._index_content(namespace, relative, content)
                except (ValueError, UnicodeError) as e:
                    await logger.awarning("file_parse_failed", path=relative, error=str(e))
                    result.errors += 1
                    continue

                if relative in plan.updates:
                    result.vectors_updated += written
                else:
                    result.vectors_added += written

            await progress(total, total, None)

        result.vector_count = await self.vector_store.count(namespace)
        result.duration_seconds = time.monotonic() - started

        await logger.ainfo(
            "pipeline_completed",
            job_id=job.id,
            project_id=project.id,
            file_count=result.file_count,
            vector_count=result.vector_count,
            added=result.vectors_added,
            updated=result.vectors_updated,
            deleted=result.vectors_deleted,
            errors=result.errors,
        )

        return result

    async def index_documentation(
        self,
        job: DocumentationIndexingJob,
        repository: DocumentationRepository,
        progress: ProgressCallback,
    ) -> PipelineResult:
        """
        Replace a documentation source's vectors with freshly fetched content.

        Raises:
            GitOperationError: If a git source cannot be checked out
            httpx.HTTPError: If a web source's entry point cannot be fetched
            IndexingCancelled: Propagated from `progress`
        """
        started = time.monotonic()
        namespace = documentation_namespace(repository.id)
        result = PipelineResult()

        if repository.source_type == SourceType.GIT.value:
            async with self.git.checkout(repository.url, repository.branch) as checkout:
                result.commit_hash = checkout.commit_hash
                files = list(iter_indexable_files(checkout.path, DOCUMENTATION_EXTENSIONS))
                result.vectors_deleted = await self.vector_store.delete_namespace(namespace)

                total = len(files)
                for processed, relative in enumerate(files):
                    await progress(processed, total, relative)
                    try:
                        content = read_file_safe(checkout.path / relative)
                    except OSError as e:
                        await logger.awarning("file_read_failed", path=relative, error=str(e))
                        result.errors += 1
                        continue
                    if not content:
                        continue
                    await self._index_document(namespace, relative, content, result)
                await progress(total, total, None)
        else:
            documents = await self.fetcher.fetch(repository.url, repository.source_type)
            result.vectors_deleted = await self.vector_store.delete_namespace(namespace)

            total = len(documents)
            for processed, document in enumerate(documents):
                await progress(processed, total, document.url)
                await self._index_document(namespace, document.url, document.content, result)
            await progress(total, total, None)

        result.file_count = result.documents
        result.vector_count = await self.vector_store.count(namespace)
        result.duration_seconds = time.monotonic() - started

        await logger.ainfo(
            "documentation_pipeline_completed",
            job_id=job.id,
            repository_id=repository.id,
            documents=result.documents,
            vector_count=result.vector_count,
        )

        return result
