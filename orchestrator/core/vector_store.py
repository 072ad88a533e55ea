"""
Vector Store - FAISS-backed storage partitioned by namespace and source.
"""

import asyncio
import json
import re
import shutil
import threading
from collections.abc import Sequence
from pathlib import Path

import faiss
import numpy as np

from orchestrator.config import get_settings
from orchestrator.core.interfaces import SemanticChunk

settings = get_settings()


class _Namespace:
    """One FAISS index plus the source -> vector id mapping."""

    def __init__(self, directory: Path, dimension: int) -> None:
        self.directory = directory
        self.dimension = dimension
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))
        self.sources: dict[str, list[int]] = {}
        self.metadata: dict[str, dict] = {}
        self.next_id = 0

    @property
    def index_path(self) -> Path:
        return self.directory / "index.faiss"

    @property
    def map_path(self) -> Path:
        return self.directory / "id_map.json"

    def load(self) -> None:
        if not self.index_path.exists() or not self.map_path.exists():
            return
        self.index = faiss.read_index(str(self.index_path))
        with open(self.map_path) as f:
            state = json.load(f)
        self.sources = {k: list(v) for k, v in state["sources"].items()}
        self.metadata = state.get("metadata", {})
        self.next_id = state["next_id"]

    def save(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        faiss.write_index(self.index, str(self.index_path))
        with open(self.map_path, "w") as f:
            json.dump(
                {
                    "next_id": self.next_id,
                    "sources": self.sources,
                    "metadata": self.metadata,
                },
                f,
            )

    def remove_source(self, source: str) -> int:
        ids = self.sources.pop(source, [])
        for vector_id in ids:
            self.metadata.pop(str(vector_id), None)
        if not ids:
            return 0
        return int(self.index.remove_ids(np.array(ids, dtype=np.int64)))

    def add(
        self,
        source: str,
        chunks: Sequence[SemanticChunk],
        vectors: Sequence[Sequence[float]],
    ) -> int:
        matrix = np.array(vectors, dtype=np.float32).reshape(-1, self.dimension)
        faiss.normalize_L2(matrix)
        ids = np.arange(self.next_id, self.next_id + len(matrix), dtype=np.int64)
        self.index.add_with_ids(matrix, ids)
        self.next_id += len(matrix)

        self.sources[source] = [int(i) for i in ids]
        for vector_id, chunk in zip(ids, chunks):
            self.metadata[str(int(vector_id))] = {
                "source": chunk.source,
                "start_line": chunk.start_line,
                "end_line": chunk.end_line,
                "symbol_name": chunk.symbol_name,
            }
        return len(matrix)


class FaissVectorStore:
    """
    Default `VectorStore`.

    Each namespace (`project:<id>`, `docs:<id>`) is a separate FAISS index on
    disk under `indexes_path`. Mutations are serialized per store instance and
    persisted immediately.
    """

    def __init__(self, base_path: Path | None = None, dimension: int | None = None) -> None:
        self.base_path = base_path or settings.indexes_path
        self.dimension = dimension or settings.embedding_dimension
        self._namespaces: dict[str, _Namespace] = {}
        self._lock = threading.Lock()

    def _directory(self, namespace: str) -> Path:
        return self.base_path / re.sub(r"[^A-Za-z0-9_.-]", "_", namespace)

    def _get(self, namespace: str) -> _Namespace:
        ns = self._namespaces.get(namespace)
        if ns is None:
            ns = _Namespace(self._directory(namespace), self.dimension)
            ns.load()
            self._namespaces[namespace] = ns
        return ns

    def _upsert(self, namespace, source, chunks, vectors) -> int:
        with self._lock:
            ns = self._get(namespace)
            ns.remove_source(source)
            added = ns.add(source, chunks, vectors) if len(vectors) else 0
            ns.save()
            return added

    def _delete(self, namespace: str, source: str) -> int:
        with self._lock:
            ns = self._get(namespace)
            removed = ns.remove_source(source)
            if removed:
                ns.save()
            return removed

    def _drop(self, namespace: str) -> int:
        with self._lock:
            ns = self._get(namespace)
            removed = int(ns.index.ntotal)
            self._namespaces.pop(namespace, None)
            shutil.rmtree(ns.directory, ignore_errors=True)
            return removed

    def _count(self, namespace: str) -> int:
        with self._lock:
            return int(self._get(namespace).index.ntotal)

    async def upsert_vectors(
        self,
        namespace: str,
        source: str,
        chunks: Sequence[SemanticChunk],
        vectors: Sequence[Sequence[float]],
    ) -> int:
        """Replace every vector stored for `source` with the given ones."""
        return await asyncio.to_thread(self._upsert, namespace, source, chunks, vectors)

    async def delete_vectors(self, namespace: str, source: str) -> int:
        return await asyncio.to_thread(self._delete, namespace, source)

    async def delete_namespace(self, namespace: str) -> int:
        return await asyncio.to_thread(self._drop, namespace)

    async def count(self, namespace: str) -> int:
        return await asyncio.to_thread(self._count, namespace)
