"""
Collaborator interfaces used by the indexing pipeline.

The orchestration core only talks to parsing, embedding and vector storage
through these protocols; concrete adapters live in `chunking`, `embeddings`
and `vector_store`.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class SemanticChunk:
    """A unit of content extracted from one source (file path or URL)."""

    source: str
    content: str
    start_line: int = 1
    end_line: int = 1
    language: str | None = None
    symbol_type: str | None = None
    symbol_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Chunker(Protocol):
    def parse(self, content: str, path: str) -> list[SemanticChunk]:
        """Split file content into chunks."""
        ...


@runtime_checkable
class Embedder(Protocol):
    async def embed(self, chunks: Sequence[SemanticChunk]) -> list[list[float]]:
        """Return one vector per chunk, in order."""
        ...


@runtime_checkable
class VectorStore(Protocol):
    """
    Vector storage partitioned by namespace (one per project or documentation
    source) and keyed by source within a namespace.
    """

    async def upsert_vectors(
        self,
        namespace: str,
        source: str,
        chunks: Sequence[SemanticChunk],
        vectors: Sequence[Sequence[float]],
    ) -> int:
        ...

    async def delete_vectors(self, namespace: str, source: str) -> int:
        ...

    async def delete_namespace(self, namespace: str) -> int:
        ...

    async def count(self, namespace: str) -> int:
        ...


# progress(processed, total, current_source); raises IndexingCancelled to stop
ProgressCallback = Callable[[int, int, str | None], Awaitable[None]]
