"""Shared fixtures: a throwaway SQLite database and in-memory collaborators."""

import os
import tempfile
from collections.abc import Sequence
from contextlib import asynccontextmanager
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STORAGE_PATH", tempfile.mkdtemp(prefix="orchestrator-test-"))
os.environ.setdefault("APP_ENV", "development")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from orchestrator.core.git import Checkout, FileChange, GitOperationError
from orchestrator.core.interfaces import SemanticChunk
from orchestrator.database import Base
from orchestrator.services.pipeline import IndexingPipeline
from orchestrator.services.queue import IndexingQueue

HEAD = "a" * 40


class FakeGit:
    """Serves a local directory as every checkout and answers head lookups from a dict."""

    def __init__(self, root: Path, head: str = HEAD) -> None:
        self.root = root
        self.head = head
        self.heads: dict[str, str] = {}
        self.failing: set[str] = set()
        self.changes: list[FileChange] = []
        self.checkouts: list[tuple[str, str, bool]] = []

    async def resolve_head_commit(self, url: str, branch: str, timeout: float | None = None) -> str:
        if url in self.failing:
            raise GitOperationError("fatal: could not read from remote repository", url=url)
        return self.heads.get(url, self.head)

    @asynccontextmanager
    async def checkout(self, url: str, branch: str, shallow: bool = True):
        if url in self.failing:
            raise GitOperationError("Git checkout failed", url=url)
        self.checkouts.append((url, branch, shallow))
        yield Checkout(path=self.root, commit_hash=self.heads.get(url, self.head), branch=branch)

    async def diff_name_status(self, repo_path: Path, from_ref: str, to_ref: str = "HEAD"):
        return list(self.changes)


class FakeChunker:
    """One chunk per non-empty file."""

    def parse(self, content: str, path: str) -> list[SemanticChunk]:
        if not content.strip():
            return []
        return [SemanticChunk(source=path, content=content)]


class FakeEmbedder:
    def __init__(self) -> None:
        self.calls = 0
        self.before_embed = None

    async def embed(self, chunks: Sequence[SemanticChunk]) -> list[list[float]]:
        self.calls += 1
        if self.before_embed is not None:
            await self.before_embed(self.calls)
        return [[1.0, 0.0] for _ in chunks]


class FakeVectorStore:
    """namespace -> source -> vector count."""

    def __init__(self) -> None:
        self.namespaces: dict[str, dict[str, int]] = {}

    async def upsert_vectors(self, namespace, source, chunks, vectors) -> int:
        self.namespaces.setdefault(namespace, {})[source] = len(vectors)
        return len(vectors)

    async def delete_vectors(self, namespace: str, source: str) -> int:
        return self.namespaces.get(namespace, {}).pop(source, 0)

    async def delete_namespace(self, namespace: str) -> int:
        return sum(self.namespaces.pop(namespace, {}).values())

    async def count(self, namespace: str) -> int:
        return sum(self.namespaces.get(namespace, {}).values())


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orchestrator.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def queue(session_factory):
    queue = IndexingQueue(session_factory, poll_interval=0.05)
    yield queue
    queue.close()


@pytest.fixture
def repo_dir(tmp_path) -> Path:
    root = tmp_path / "checkout"
    root.mkdir()
    return root


@pytest.fixture
def fake_git(repo_dir) -> FakeGit:
    return FakeGit(repo_dir)


@pytest.fixture
def vector_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def pipeline(fake_git, embedder, vector_store) -> IndexingPipeline:
    return IndexingPipeline(
        chunker=FakeChunker(),
        embedder=embedder,
        vector_store=vector_store,
        git=fake_git,
    )


def write_files(root: Path, count: int, suffix: str = ".py") -> list[str]:
    """Create `count` small source files and return their relative paths."""
    names = []
    for i in range(count):
        name = f"module_{i:02d}{suffix}"
        (root / name).write_text(f"def handler_{i}():\n    return {i}\n")
        names.append(name)
    return names


async def fetch(session_factory, model, key):
    """Load a row in a fresh session so bulk updates made elsewhere are visible."""
    async with session_factory() as session:
        return await session.get(model, key)
