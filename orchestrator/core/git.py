"""
Git Utilities - Remote head resolution, checkouts and diffs.

Every operation works in a throwaway directory and runs GitPython in a worker
thread so the event loop never blocks on the git executable.
"""

import asyncio
import shutil
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError

from orchestrator.config import get_settings

settings = get_settings()


class GitOperationError(Exception):
    """Raised when a git command fails or times out."""

    def __init__(self, message: str, url: str | None = None) -> None:
        self.url = url
        super().__init__(message)


@dataclass
class Checkout:
    """A working tree checked out at `commit_hash`."""

    path: Path
    commit_hash: str
    branch: str


@dataclass
class FileChange:
    """One line of `git diff --name-status`."""

    status: str  # A, M, D, R or C
    path: str
    old_path: str | None = None


def _describe(error: GitCommandError) -> str:
    stderr = (error.stderr or "").strip()
    if stderr.startswith("stderr:"):
        stderr = stderr[len("stderr:"):].strip().strip("'")
    return stderr or str(error)


def _fetch_into(repo: Repo, url: str, branch: str, depth: int | None, timeout: float) -> None:
    kwargs: dict = {"kill_after_timeout": timeout}
    if depth:
        kwargs["depth"] = depth
    repo.git.fetch(url, branch, **kwargs)


def parse_name_status(output: str) -> list[FileChange]:
    """Parse `git diff --name-status` output into FileChange records."""
    changes: list[FileChange] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        code = parts[0][:1]
        if code in ("R", "C") and len(parts) >= 3:
            changes.append(FileChange(status=code, path=parts[2], old_path=parts[1]))
        elif code in ("A", "M", "D") and len(parts) >= 2:
            changes.append(FileChange(status=code, path=parts[1]))
        elif len(parts) >= 2:
            # T (type change) and friends are reprocessed like modifications
            changes.append(FileChange(status="M", path=parts[-1]))
    return changes


class GitClient:
    """Thin async facade over GitPython."""

    def __init__(
        self,
        check_timeout: float | None = None,
        clone_timeout: float | None = None,
    ) -> None:
        self.check_timeout = check_timeout or settings.git_check_timeout_seconds
        self.clone_timeout = clone_timeout or settings.git_clone_timeout_seconds

    def _resolve_head(self, url: str, branch: str, timeout: float) -> str:
        with tempfile.TemporaryDirectory(prefix="orchestrator-check-") as tmp:
            repo = Repo.init(tmp)
            try:
                _fetch_into(repo, url, branch, depth=1, timeout=timeout)
                return repo.git.rev_parse("FETCH_HEAD").strip()
            except GitCommandError as e:
                raise GitOperationError(_describe(e), url=url) from e
            finally:
                repo.close()

    async def resolve_head_commit(
        self,
        url: str,
        branch: str,
        timeout: float | None = None,
    ) -> str:
        """
        Resolve the current head commit of a remote branch.

        Performs a depth-1 fetch into a temporary directory that is removed on
        every exit path.

        Raises:
            GitOperationError: If the fetch fails or exceeds the timeout
        """
        timeout = timeout or self.check_timeout
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._resolve_head, url, branch, timeout),
                timeout=timeout + 5,
            )
        except asyncio.TimeoutError as e:
            raise GitOperationError(
                f"Timed out after {timeout}s fetching {branch}", url=url
            ) from e

    def _checkout(self, url: str, branch: str, path: Path, shallow: bool) -> str:
        repo = Repo.init(path)
        try:
            _fetch_into(
                repo,
                url,
                branch,
                depth=1 if shallow else None,
                timeout=self.clone_timeout,
            )
            repo.git.checkout("-q", "FETCH_HEAD")
            return repo.head.commit.hexsha
        except GitCommandError as e:
            raise GitOperationError(f"Git checkout failed: {_describe(e)}", url=url) from e
        except InvalidGitRepositoryError as e:
            raise GitOperationError("Invalid git repository", url=url) from e
        finally:
            repo.close()

    @asynccontextmanager
    async def checkout(
        self,
        url: str,
        branch: str,
        shallow: bool = True,
    ) -> AsyncIterator[Checkout]:
        """
        Check out `branch` of `url` into a temporary working tree.

        Usage:
            async with git.checkout(url, "main") as checkout:
                ...
        """
        path = Path(tempfile.mkdtemp(prefix="orchestrator-repo-"))
        try:
            commit_hash = await asyncio.to_thread(self._checkout, url, branch, path, shallow)
            yield Checkout(path=path, commit_hash=commit_hash, branch=branch)
        finally:
            await asyncio.to_thread(shutil.rmtree, path, True)

    def _diff(self, repo_path: Path, from_ref: str, to_ref: str) -> str:
        repo = Repo(repo_path)
        try:
            return repo.git.diff("--name-status", "-M", from_ref, to_ref)
        except GitCommandError as e:
            raise GitOperationError(f"Git diff failed: {_describe(e)}") from e
        finally:
            repo.close()

    async def diff_name_status(
        self,
        repo_path: Path,
        from_ref: str,
        to_ref: str = "HEAD",
    ) -> list[FileChange]:
        """List files changed between two commits of a checkout."""
        output = await asyncio.to_thread(self._diff, repo_path, from_ref, to_ref)
        return parse_name_status(output)
