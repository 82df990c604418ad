"""In-process embedding provider backed by sentence-transformers.

Installed through the ``local`` extra. Encoding is CPU/GPU bound, so it runs
in a worker thread to keep the event loop responsive.
"""

import asyncio
from typing import List, Optional, Tuple

from sentence_transformers import SentenceTransformer
import structlog

from .base import EmbeddingProvider

logger = structlog.get_logger("embeddings.sentence_transformer")


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Loads a SentenceTransformer model once and encodes in a thread."""

    def __init__(self, model_name: str, device: Optional[str] = None, model: Optional[SentenceTransformer] = None):
        self._model_name = model_name
        self.model = model or SentenceTransformer(model_name, device=device)
        self._dimension = self.model.get_sentence_embedding_dimension()
        logger.info("Loaded embedding model", model_name=model_name, dimension=self._dimension)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    async def _embed(self, texts: List[str]) -> Tuple[List[List[float]], Optional[int]]:
        vectors = await asyncio.to_thread(
            self.model.encode,
            texts,
            convert_to_numpy=True,
            show_progress_bar=False
        )
        return [vector.tolist() for vector in vectors], None

    async def is_available(self) -> bool:
        return self.model is not None
