"""In-memory implementation of the candidate vector store.

Keeps candidate documents and vectors in dictionaries and ranks with numpy
cosine similarity. Used by the test-suite and for single-process local runs
(``CS_VECTOR_BACKEND=memory``).
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

import numpy as np
import structlog

from .base import (
    CandidateDocument,
    CandidateNotFoundError,
    CandidateVectorStore,
    EmbeddingCoverage,
    SimilarCandidate,
    StoredVector,
)

logger = structlog.get_logger("vector_store.memory")


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity; zero vectors have similarity 0."""
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


class InMemoryVectorStore(CandidateVectorStore):
    """Dictionary-backed store with the same semantics as ``PgVectorStore``."""

    def __init__(self, vector_dimension: int):
        self.vector_dimension = vector_dimension
        self.documents: Dict[str, CandidateDocument] = {}
        self.vectors: Dict[str, StoredVector] = {}
        self.body_vectors: Dict[str, np.ndarray] = {}
        self.inactive: set = set()

    @property
    def dimension(self) -> int:
        return self.vector_dimension

    def add_candidate(self, document: CandidateDocument, active: bool = True) -> None:
        """Register a candidate document (ingestion happens elsewhere)."""
        self.documents[document.entity_id] = document
        if active:
            self.inactive.discard(document.entity_id)
        else:
            self.inactive.add(document.entity_id)

    def _is_active(self, entity_id: str) -> bool:
        return entity_id in self.documents and entity_id not in self.inactive

    async def store_embedding(
        self,
        entity_id: str,
        vector: np.ndarray,
        model_name: str,
        tokens: Optional[int] = None,
        body_vector: Optional[np.ndarray] = None
    ) -> StoredVector:
        vector_array = self._ensure_vector_dimension(vector)
        body_array = self._ensure_vector_dimension(body_vector) if body_vector is not None else None

        if entity_id not in self.documents:
            raise CandidateNotFoundError(f"Candidate {entity_id} does not exist")

        stored = StoredVector(
            entity_id=entity_id,
            vector=vector_array.copy(),
            model_name=model_name,
            generated_at=datetime.now(timezone.utc),
            tokens=tokens
        )
        self.vectors[entity_id] = stored
        if body_array is not None:
            self.body_vectors[entity_id] = body_array.copy()

        logger.debug("Stored embedding", entity_id=entity_id, model_name=model_name)
        return stored

    async def get_embedding(self, entity_id: str) -> Optional[StoredVector]:
        return self.vectors.get(entity_id)

    async def search_similar(
        self,
        query_vector: np.ndarray,
        similarity_threshold: float = 0.0,
        limit: int = 100
    ) -> List[SimilarCandidate]:
        query = self._ensure_vector_dimension(query_vector)

        hits = []
        for entity_id, stored in self.vectors.items():
            if not self._is_active(entity_id):
                continue
            similarity = cosine_similarity(query, stored.vector)
            if similarity >= similarity_threshold:
                hits.append(SimilarCandidate(
                    entity_id=entity_id,
                    similarity=similarity,
                    title=self.documents[entity_id].title
                ))

        hits.sort(key=lambda hit: (-hit.similarity, hit.entity_id))
        return hits[:limit]

    async def fetch_candidate_document(self, entity_id: str) -> Optional[CandidateDocument]:
        return self.documents.get(entity_id)

    async def embedding_status(self) -> EmbeddingCoverage:
        active = [entity_id for entity_id in self.documents if self._is_active(entity_id)]
        return EmbeddingCoverage(
            total_candidates=len(active),
            with_embeddings=sum(1 for entity_id in active if entity_id in self.vectors)
        )

    async def list_missing_embeddings(self, limit: Optional[int] = None) -> List[CandidateDocument]:
        missing = [
            document for entity_id, document in sorted(self.documents.items())
            if self._is_active(entity_id) and entity_id not in self.vectors
        ]
        return missing if limit is None else missing[:limit]

    async def list_candidates(self, limit: Optional[int] = None) -> List[CandidateDocument]:
        active = [
            document for entity_id, document in sorted(self.documents.items())
            if self._is_active(entity_id)
        ]
        return active if limit is None else active[:limit]

    async def health_check(self) -> bool:
        return True
