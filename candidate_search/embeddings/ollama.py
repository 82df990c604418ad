"""Ollama embedding provider (local HTTP server).

Uses the batch ``/api/embed`` endpoint, so a worker job that embeds the
profile and body text costs a single round trip.
"""

from typing import List, Optional, Tuple

import httpx
import structlog

from .base import EmbeddingRequestError, HttpEmbeddingProvider

logger = structlog.get_logger("embeddings.ollama")


class OllamaEmbeddingProvider(HttpEmbeddingProvider):
    """Embeddings from a local Ollama server (default ``nomic-embed-text``)."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        dimension: int = 768,
        timeout: float = 30.0,
        availability_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(timeout=timeout, availability_timeout=availability_timeout, client=client)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self.model

    async def _embed(self, texts: List[str]) -> Tuple[List[List[float]], Optional[int]]:
        data = await self._post_json(
            f"{self.base_url}/api/embed",
            {"model": self.model, "input": texts}
        )

        embeddings = data.get("embeddings")
        if not isinstance(embeddings, list):
            raise EmbeddingRequestError("Ollama response is missing 'embeddings'")

        tokens = data.get("prompt_eval_count")
        logger.debug("Ollama embeddings generated", model=self.model, count=len(embeddings), tokens=tokens)
        return embeddings, tokens

    async def is_available(self) -> bool:
        return await self._probe(f"{self.base_url}/api/tags")
