"""Base vector store interface.

Defines the abstract contract our services depend on, independent of the
backing implementation (PgVector in production, an in-memory store for tests
and local runs).

All methods are asynchronous to support high‑throughput services.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import numpy as np


@dataclass
class StoredVector:
    """The single embedding kept for a candidate.

    A new generation overwrites every field; vectors are never appended.
    """
    entity_id: str
    vector: np.ndarray
    model_name: str
    generated_at: datetime
    tokens: Optional[int] = None


@dataclass
class SimilarCandidate:
    """One hit from a similarity query."""
    entity_id: str
    similarity: float
    title: Optional[str] = None


@dataclass
class CandidateDocument:
    """Text fields the keyword scorer reads for a candidate."""
    entity_id: str
    title: str = ""
    skills: List[str] = field(default_factory=list)
    body_text: str = ""
    full_name: Optional[str] = None


@dataclass
class EmbeddingCoverage:
    """Counts of active candidates with and without profile vectors."""
    total_candidates: int
    with_embeddings: int

    @property
    def without_embeddings(self) -> int:
        return self.total_candidates - self.with_embeddings

    @property
    def coverage_percent(self) -> float:
        if self.total_candidates == 0:
            return 0.0
        return round(self.with_embeddings * 100.0 / self.total_candidates, 2)


class CandidateVectorStore(ABC):
    """Abstract base class for candidate vector stores.

    Implementations must make ``store_embedding`` an idempotent overwrite
    keyed by entity id and report similarity as ``1 - cosine distance``.
    """

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Configured vector dimension."""

    async def initialize(self) -> None:
        """Prepare the store (connections, schema checks)."""

    @abstractmethod
    async def store_embedding(
        self,
        entity_id: str,
        vector: np.ndarray,
        model_name: str,
        tokens: Optional[int] = None,
        body_vector: Optional[np.ndarray] = None
    ) -> StoredVector:
        """Overwrite the stored vector for a candidate.

        ``body_vector`` is the optional resume-text embedding kept alongside
        the profile vector.

        Raises
        - ``VectorDimensionError`` when a vector has the wrong length
        - ``StorageWriteError`` / ``StorageTimeoutError`` on backend failure
        """

    @abstractmethod
    async def get_embedding(self, entity_id: str) -> Optional[StoredVector]:
        """Get the stored vector for a candidate, or ``None``."""

    @abstractmethod
    async def search_similar(
        self,
        query_vector: np.ndarray,
        similarity_threshold: float = 0.0,
        limit: int = 100
    ) -> List[SimilarCandidate]:
        """Search for candidates whose similarity is at least the threshold.

        Returns hits ordered by distance ascending, at most ``limit`` of them.
        """

    @abstractmethod
    async def fetch_candidate_document(self, entity_id: str) -> Optional[CandidateDocument]:
        """Fetch the title, skill tags and body text for a candidate."""

    @abstractmethod
    async def embedding_status(self) -> EmbeddingCoverage:
        """Count active candidates and how many have profile vectors."""

    @abstractmethod
    async def list_missing_embeddings(self, limit: Optional[int] = None) -> List[CandidateDocument]:
        """List active candidates that have no profile vector yet."""

    @abstractmethod
    async def list_candidates(self, limit: Optional[int] = None) -> List[CandidateDocument]:
        """List active candidates regardless of vector state."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""

    async def close(self) -> None:
        """Release backend resources."""

    def _ensure_vector_dimension(self, vector) -> np.ndarray:
        """Ensure a vector matches the configured dimensionality."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1:
            raise VectorDimensionError("Vector must be one-dimensional")

        if array.shape[0] != self.dimension:
            raise VectorDimensionError(
                f"Expected vector dimension {self.dimension}, "
                f"got {array.shape[0]}"
            )
        return array


class VectorStoreError(Exception):
    """Base exception for vector store operations."""
    pass


class VectorStoreConnectionError(VectorStoreError):
    """Connection error to vector store."""
    pass


class StorageTimeoutError(VectorStoreError):
    """A storage call did not finish within its timeout."""
    pass


class StorageWriteError(VectorStoreError):
    """A vector could not be written."""
    pass


class CandidateNotFoundError(StorageWriteError):
    """The candidate row a vector was written for does not exist."""
    pass


class VectorStoreQueryError(VectorStoreError):
    """Query error in vector store."""
    pass


class VectorDimensionError(VectorStoreError, ValueError):
    """A vector does not have the configured dimension."""
    pass


class VectorDimensionMismatchError(VectorStoreError):
    """The storage column dimension differs from the configured dimension.

    A schema and index migration is required before the service can run.
    """
    pass
