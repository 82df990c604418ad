"""Base embedding provider interface.

Defines the contract the search orchestrator and the embedding worker depend
on, independent of the backend (Ollama, Azure OpenAI, in-process model).

Conventions
- Blank input yields a zero-length vector without calling the backend
- Non-blank input yields a float32 vector of exactly ``dimension`` entries
- ``is_available`` never raises
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

import httpx
import numpy as np
import structlog

logger = structlog.get_logger("embeddings.base")


class EmbeddingError(Exception):
    """Base exception for embedding generation."""
    pass


class ProviderUnavailableError(EmbeddingError):
    """Backend unreachable, timed out, rate limited or failing (transient)."""
    pass


class EmptyEmbeddingError(EmbeddingError):
    """Backend returned no vector for non-blank input."""
    pass


class EmbeddingDimensionError(EmbeddingError):
    """Backend returned a vector whose length differs from ``dimension``."""
    pass


class EmbeddingRequestError(EmbeddingError):
    """Backend rejected the request or returned a malformed payload."""
    pass


def empty_vector() -> np.ndarray:
    return np.zeros(0, dtype=np.float32)


def is_blank(text: Optional[str]) -> bool:
    return text is None or not text.strip()


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every vector the provider returns."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier stored alongside each vector."""

    @abstractmethod
    async def _embed(self, texts: List[str]) -> Tuple[List[List[float]], Optional[int]]:
        """Call the backend for non-blank texts, order preserved.

        Returns the raw vectors and the token count when the backend reports one.
        """

    @abstractmethod
    async def is_available(self) -> bool:
        """Probe the backend; must not raise."""

    async def generate_embedding(self, text: str) -> np.ndarray:
        """Generate one embedding.

        Raises
        - ``ProviderUnavailableError`` on transient backend failure
        - ``EmptyEmbeddingError`` when the backend returns nothing
        - ``EmbeddingDimensionError`` when the vector length is wrong
        """
        vectors = await self.generate_batch([text])
        return vectors[0]

    async def generate_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Generate embeddings for many texts, one vector per input.

        Blank entries produce zero-length arrays and are not sent to the
        backend.
        """
        vectors, _ = await self.generate_batch_with_usage(texts)
        return vectors

    async def generate_batch_with_usage(
        self,
        texts: Sequence[str]
    ) -> Tuple[List[np.ndarray], Optional[int]]:
        """Like ``generate_batch`` but also returns the backend token count."""
        results = [empty_vector() for _ in texts]
        indexes = [i for i, text in enumerate(texts) if not is_blank(text)]
        if not indexes:
            return results, None

        raw, tokens = await self._embed([texts[i] for i in indexes])
        if len(raw) != len(indexes):
            raise EmbeddingRequestError(
                f"{self.model_name} returned {len(raw)} vectors for {len(indexes)} inputs"
            )

        for i, values in zip(indexes, raw):
            results[i] = self._validate(values)
        return results, tokens

    def _validate(self, values) -> np.ndarray:
        vector = np.asarray(values if values is not None else [], dtype=np.float32)
        if vector.size == 0:
            raise EmptyEmbeddingError(f"{self.model_name} returned an empty embedding")
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise EmbeddingDimensionError(
                f"{self.model_name} returned shape {vector.shape}, "
                f"expected {self.dimension}"
            )
        return vector

    async def close(self) -> None:
        """Release backend resources."""


class HttpEmbeddingProvider(EmbeddingProvider):
    """Shared plumbing for providers that talk to an HTTP backend.

    Holds one ``httpx.AsyncClient`` per provider and maps transport and status
    failures onto the embedding error hierarchy.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        availability_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.timeout = timeout
        self.availability_timeout = availability_timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _post_json(self, url: str, payload: dict, headers: Optional[dict] = None) -> dict:
        try:
            response = await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError(f"{self.model_name} timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise ProviderUnavailableError(f"{self.model_name} unreachable: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailableError(
                f"{self.model_name} returned status {response.status_code}"
            )
        if response.status_code >= 400:
            raise EmbeddingRequestError(
                f"{self.model_name} rejected request with status {response.status_code}: "
                f"{response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise EmbeddingRequestError(f"{self.model_name} returned invalid JSON") from e

    async def _probe(self, url: str, headers: Optional[dict] = None) -> bool:
        try:
            response = await self._client.get(url, headers=headers, timeout=self.availability_timeout)
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning("Embedding provider is not available", model_name=self.model_name, url=url, error=str(e))
            return False

    async def close(self) -> None:
        await self._client.aclose()
