import httpx
import pytest

from orchestrator.core.errors import IndexingCancelled
from orchestrator.core.fetcher import DocumentFetcher
from orchestrator.core.git import FileChange, GitOperationError
from orchestrator.models import DocumentationIndexingJob, DocumentationRepository, IndexingJob, Project
from orchestrator.services.pipeline import (
    IndexingPipeline,
    documentation_namespace,
    project_namespace,
)

from tests.conftest import HEAD, FakeChunker, write_files

PREVIOUS = "b" * 40


class Progress:
    def __init__(self) -> None:
        self.calls: list[tuple[int, int, str | None]] = []

    async def __call__(self, processed: int, total: int, current: str | None) -> None:
        self.calls.append((processed, total, current))


def make_project(**fields) -> Project:
    fields.setdefault("last_indexed_commit", PREVIOUS)
    return Project(id="p-1", name="api", git_repo="https://github.com/acme/api.git", **fields)


def make_job(full_reindex=False) -> IndexingJob:
    return IndexingJob(id="j-1", project_id="p-1", branch="main", full_reindex=full_reindex)


@pytest.fixture
def changed_repo(repo_dir, fake_git, vector_store):
    for name in ("module_00.py", "module_01.py", "new.py", "renamed.py"):
        (repo_dir / name).write_text(f"# {name}\nvalue = 1\n")
    fake_git.changes = [
        FileChange("M", "module_00.py"),
        FileChange("A", "new.py"),
        FileChange("D", "gone.py"),
        FileChange("R", "renamed.py", old_path="old.py"),
        FileChange("A", "image.png"),
    ]
    vector_store.namespaces[project_namespace("p-1")] = {
        "module_00.py": 1,
        "module_01.py": 1,
        "gone.py": 1,
        "old.py": 1,
    }


async def test_incremental_run_only_touches_changed_files(
    pipeline, fake_git, vector_store, changed_repo
):
    progress = Progress()

    result = await pipeline.index_project(make_job(), make_project(), progress)

    assert fake_git.checkouts[-1] == ("https://github.com/acme/api.git", "main", False)
    assert result.commit_hash == HEAD
    assert result.file_count == 4
    assert result.vectors_added == 1
    assert result.vectors_updated == 2
    assert result.vectors_deleted == 2
    assert result.vector_count == 4
    assert set(vector_store.namespaces[project_namespace("p-1")]) == {
        "module_00.py",
        "module_01.py",
        "new.py",
        "renamed.py",
    }
    assert [c[2] for c in progress.calls] == ["module_00.py", "new.py", "renamed.py", None]
    assert progress.calls[-1] == (3, 3, None)


async def test_failed_diff_falls_back_to_full_run(
    pipeline, fake_git, vector_store, changed_repo, monkeypatch
):
    async def unknown_commit(*args, **kwargs):
        raise GitOperationError("fatal: bad object")

    monkeypatch.setattr(fake_git, "diff_name_status", unknown_commit)

    result = await pipeline.index_project(make_job(), make_project(), Progress())

    assert result.vectors_deleted == 4
    assert result.vectors_added == 4
    assert result.vectors_updated == 0
    assert set(vector_store.namespaces[project_namespace("p-1")]) == {
        "module_00.py",
        "module_01.py",
        "new.py",
        "renamed.py",
    }


async def test_full_reindex_replaces_namespace(pipeline, fake_git, vector_store, repo_dir):
    write_files(repo_dir, 3)
    (repo_dir / "node_modules").mkdir()
    (repo_dir / "node_modules" / "dep.js").write_text("module.exports = 1\n")
    (repo_dir / "empty.py").write_text("")
    vector_store.namespaces[project_namespace("p-1")] = {"stale.py": 5}

    result = await pipeline.index_project(make_job(full_reindex=True), make_project(), Progress())

    assert fake_git.checkouts[-1][2] is True
    assert result.file_count == 4
    assert result.vectors_deleted == 5
    assert result.vectors_added == 3
    assert result.vector_count == 3


async def test_cancellation_surfaces_from_progress(pipeline, repo_dir, vector_store):
    write_files(repo_dir, 5)

    async def cancel_at_third(processed, total, current):
        if processed == 2:
            raise IndexingCancelled("j-1")

    with pytest.raises(IndexingCancelled):
        await pipeline.index_project(make_job(full_reindex=True), make_project(), cancel_at_third)

    assert len(vector_store.namespaces[project_namespace("p-1")]) == 2


async def test_git_documentation_source(pipeline, repo_dir, vector_store):
    (repo_dir / "index.md").write_text("# Welcome\n")
    (repo_dir / "guide").mkdir()
    (repo_dir / "guide" / "setup.rst").write_text("Setup\n=====\n")
    (repo_dir / "conf.py").write_text("project = 'docs'\n")
    repository = DocumentationRepository(
        id="d-1", name="docs", url="https://github.com/acme/docs.git", branch="main", source_type="git"
    )
    job = DocumentationIndexingJob(id="j-2", repository_id="d-1", branch="main", source_type="git")

    result = await pipeline.index_documentation(job, repository, Progress())

    assert result.commit_hash == HEAD
    assert result.documents == 2
    assert set(vector_store.namespaces[documentation_namespace("d-1")]) == {
        "guide/setup.rst",
        "index.md",
    }


class PickyChunker(FakeChunker):
    """Chokes on one source."""

    def parse(self, content, path):
        if path == "broken.md":
            raise ValueError("unterminated code fence")
        return super().parse(content, path)


async def test_unparseable_document_is_skipped(fake_git, embedder, vector_store, repo_dir):
    (repo_dir / "index.md").write_text("# Welcome\n")
    (repo_dir / "broken.md").write_text("```python\n")
    pipeline = IndexingPipeline(
        chunker=PickyChunker(), embedder=embedder, vector_store=vector_store, git=fake_git
    )
    repository = DocumentationRepository(
        id="d-1", name="docs", url="https://github.com/acme/docs.git", branch="main", source_type="git"
    )
    job = DocumentationIndexingJob(id="j-2", repository_id="d-1", branch="main", source_type="git")

    result = await pipeline.index_documentation(job, repository, Progress())

    assert result.documents == 1
    assert result.errors == 1
    assert set(vector_store.namespaces[documentation_namespace("d-1")]) == {"index.md"}


LLMS_TXT = """# Widget

> Widgets for everyone.

- [Intro](https://docs.example.com/intro.html): start here
- [API](https://docs.example.com/api.md)
- [Missing](https://docs.example.com/missing.md)
"""


def docs_site(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/llms.txt":
        return httpx.Response(200, text=LLMS_TXT)
    if path == "/intro.html":
        return httpx.Response(
            200,
            html="<html><head><title>Intro</title></head><body><main><p>Hello</p></main></body></html>",
        )
    if path == "/api.md":
        return httpx.Response(200, text="# API\n\ncall()", headers={"content-type": "text/markdown"})
    return httpx.Response(404)


async def test_llms_txt_documentation_source(fake_git, embedder, vector_store):
    client = httpx.AsyncClient(transport=httpx.MockTransport(docs_site))
    pipeline = IndexingPipeline(
        chunker=FakeChunker(),
        embedder=embedder,
        vector_store=vector_store,
        git=fake_git,
        fetcher=DocumentFetcher(client=client),
    )
    repository = DocumentationRepository(
        id="d-2", name="widget", url="https://docs.example.com/llms.txt", source_type="llmstxt"
    )
    job = DocumentationIndexingJob(id="j-3", repository_id="d-2", branch="main", source_type="llmstxt")

    try:
        result = await pipeline.index_documentation(job, repository, Progress())
    finally:
        await client.aclose()

    assert result.commit_hash is None
    assert result.documents == 3
    assert set(vector_store.namespaces[documentation_namespace("d-2")]) == {
        "https://docs.example.com/llms.txt",
        "https://docs.example.com/intro.html",
        "https://docs.example.com/api.md",
    }
    assert fake_git.checkouts == []
