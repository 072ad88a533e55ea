"""
Code Chunking - File selection and chunk extraction for indexing.

Python sources are split on top-level symbols; everything else falls back to
a sliding window over lines.
"""

import re
from collections.abc import Iterator
from pathlib import Path, PurePosixPath

from orchestrator.config import get_settings
from orchestrator.core.interfaces import SemanticChunk

settings = get_settings()

# File extensions worth indexing
INDEXABLE_EXTENSIONS = frozenset({
    ".ts", ".tsx", ".js", ".jsx", ".py", ".java", ".c", ".cpp", ".h", ".hpp",
    ".go", ".rs", ".rb", ".php", ".swift", ".kt", ".scala", ".cs", ".vb",
    ".sql", ".md", ".txt", ".json", ".yaml", ".yml", ".xml", ".html", ".css",
    ".scss", ".sass", ".less", ".vue", ".svelte", ".dart", ".lua", ".pl",
    ".sh", ".bash", ".zsh", ".fish", ".ps1", ".bat", ".cmd", ".r", ".m",
    ".dockerfile", ".makefile", ".cmake", ".toml", ".ini", ".cfg", ".conf",
})

# Documentation sources only index prose formats
DOCUMENTATION_EXTENSIONS = frozenset({".md", ".mdx", ".markdown", ".rst", ".txt"})

# Path components that are never indexed
SKIP_NAMES = frozenset({
    "node_modules", ".git", ".svn", ".hg", "dist", "build", "target", ".next",
    ".nuxt", ".vscode", ".idea", "__pycache__", ".pytest_cache", "coverage",
    ".coverage", ".nyc_output", "logs", "tmp", "temp", ".DS_Store",
    "Thumbs.db", ".env", ".env.local", ".env.production",
})

LANGUAGE_MAP = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".php": "php",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".sql": "sql",
    ".sh": "bash",
    ".bash": "bash",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".toml": "toml",
    ".html": "html",
    ".css": "css",
    ".md": "markdown",
    ".mdx": "markdown",
    ".rst": "rst",
    ".txt": "text",
}

_CLASS_PATTERN = re.compile(r"^class\s+(\w+)")
_FUNC_PATTERN = re.compile(r"^(?:async\s+)?def\s+(\w+)")


def count_tokens(text: str) -> int:
    """Estimate token count (~1.3 tokens per whitespace-separated word)."""
    return int(len(text.split()) * 1.3)


def detect_language(path: str) -> str | None:
    return LANGUAGE_MAP.get(PurePosixPath(path).suffix.lower())


def should_skip(relative_path: str) -> bool:
    """Skip ignored directories, hidden entries and log files."""
    for part in PurePosixPath(relative_path).parts:
        if part in SKIP_NAMES or part.endswith(".log"):
            return True
        if part.startswith("."):
            return True
    return False


def is_indexable(relative_path: str, extensions: frozenset[str] = INDEXABLE_EXTENSIONS) -> bool:
    """Check whether a repository-relative path should be indexed."""
    if should_skip(relative_path):
        return False
    return PurePosixPath(relative_path).suffix.lower() in extensions


def iter_indexable_files(
    root: Path,
    extensions: frozenset[str] = INDEXABLE_EXTENSIONS,
    max_files: int | None = None,
) -> Iterator[str]:
    """
    Yield repository-relative POSIX paths of indexable files under `root`.

    Paths are yielded in sorted order so progress is deterministic.
    """
    limit = max_files if max_files is not None else settings.max_files
    count = 0
    for file_path in sorted(root.rglob("*")):
        if not file_path.is_file():
            continue
        relative = file_path.relative_to(root).as_posix()
        if not is_indexable(relative, extensions):
            continue
        count += 1
        if count > limit:
            return
        yield relative


def read_file_safe(file_path: Path, max_bytes: int | None = None) -> str | None:
    """
    Read file content, returning None for oversized, binary or unreadable files.

    Raises:
        OSError: If the file cannot be opened
    """
    limit = max_bytes if max_bytes is not None else settings.max_file_size_mb * 1024 * 1024
    if file_path.stat().st_size > limit:
        return None

    raw = file_path.read_bytes()
    if b"\x00" in raw[:8192]:
        return None
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


class CodeChunker:
    """Default `Chunker`: symbol extraction for Python, sliding window otherwise."""

    def __init__(self, max_tokens: int = 1500, overlap_tokens: int = 200) -> None:
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens

    def parse(self, content: str, path: str) -> list[SemanticChunk]:
        if not content.strip():
            return []

        language = detect_language(path)
        if language == "python":
            chunks = list(self._python_symbols(content, path))
            if chunks:
                return chunks
        return list(self._sliding_window(content, path, language))

    def _sliding_window(
        self,
        content: str,
        path: str,
        language: str | None,
    ) -> Iterator[SemanticChunk]:
        lines = content.split("\n")
        window: list[str] = []
        start = 1
        tokens = 0

        for lineno, line in enumerate(lines, 1):
            line_tokens = count_tokens(line)
            if tokens + line_tokens > self.max_tokens and window:
                yield SemanticChunk(
                    source=path,
                    content="\n".join(window),
                    start_line=start,
                    end_line=lineno - 1,
                    language=language,
                )
                # Carry trailing lines over as overlap
                overlap: list[str] = []
                overlap_tokens = 0
                for previous in reversed(window):
                    previous_tokens = count_tokens(previous)
                    if overlap_tokens + previous_tokens > self.overlap_tokens:
                        break
                    overlap.insert(0, previous)
                    overlap_tokens += previous_tokens
                window = overlap
                start = lineno - len(overlap)
                tokens = overlap_tokens

            window.append(line)
            tokens += line_tokens

        if window and "\n".join(window).strip():
            yield SemanticChunk(
                source=path,
                content="\n".join(window),
                start_line=start,
                end_line=len(lines),
                language=language,
            )

    def _python_symbols(self, content: str, path: str) -> Iterator[SemanticChunk]:
        lines = content.split("\n")
        symbol: tuple[str, str, int] | None = None  # (type, name, start line)
        body: list[str] = []
        indent_level = 0

        def emit(end_line: int) -> SemanticChunk:
            symbol_type, name, start_line = symbol
            return SemanticChunk(
                source=path,
                content="\n".join(body),
                start_line=start_line,
                end_line=end_line,
                language="python",
                symbol_type=symbol_type,
                symbol_name=name,
            )

        for lineno, line in enumerate(lines, 1):
            stripped = line.lstrip()
            indent = len(line) - len(stripped)
            class_match = _CLASS_PATTERN.match(stripped)
            func_match = _FUNC_PATTERN.match(stripped)

            if class_match or func_match:
                if symbol and indent > indent_level:
                    # Methods stay inside their class chunk
                    body.append(line)
                    continue
                if symbol:
                    yield emit(lineno - 1)
                if class_match:
                    symbol = ("class", class_match.group(1), lineno)
                else:
                    symbol = ("function", func_match.group(1), lineno)
                body = [line]
                indent_level = indent
            elif symbol:
                if not stripped or indent > indent_level:
                    body.append(line)
                else:
                    yield emit(lineno - 1)
                    symbol = None
                    body = []

        if symbol and body:
            yield emit(len(lines))
