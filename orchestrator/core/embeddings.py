"""
Embeddings - Local sentence-transformers embedder.
"""

import asyncio
from collections.abc import Sequence

from sentence_transformers import SentenceTransformer

from orchestrator.config import get_settings
from orchestrator.core.interfaces import SemanticChunk

settings = get_settings()


class SentenceTransformerEmbedder:
    """Default `Embedder`. The model is loaded lazily on first use."""

    def __init__(self, model_name: str | None = None, batch_size: int = 64) -> None:
        self.model_name = model_name or settings.embedding_model
        self.batch_size = batch_size
        self._model: SentenceTransformer | None = None

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            self._model = SentenceTransformer(self.model_name)
        return self._model

    @property
    def dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension() or settings.embedding_dimension

    async def embed(self, chunks: Sequence[SemanticChunk]) -> list[list[float]]:
        if not chunks:
            return []

        texts = [chunk.content for chunk in chunks]
        model = self.model

        # Run in thread pool to avoid blocking
        loop = asyncio.get_running_loop()
        embeddings = await loop.run_in_executor(
            None,
            lambda: model.encode(
                texts,
                batch_size=self.batch_size,
                convert_to_numpy=True,
                show_progress_bar=False,
            ),
        )
        return embeddings.tolist()
