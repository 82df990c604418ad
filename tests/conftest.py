"""Shared fixtures for candidate search tests."""

from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

from candidate_search.embeddings.base import EmbeddingProvider, ProviderUnavailableError
from candidate_search.vector_store.base import CandidateDocument
from candidate_search.vector_store.memory import InMemoryVectorStore

DIMENSION = 8


def unit_vector(index: int, dimension: int = DIMENSION) -> List[float]:
    values = [0.0] * dimension
    values[index % dimension] = 1.0
    return values


class StubEmbeddingProvider(EmbeddingProvider):
    """Provider returning canned vectors and recording every backend call.

    ``failures`` is a list of exceptions raised by successive backend calls
    before it starts succeeding.
    """

    def __init__(
        self,
        dimension: int = DIMENSION,
        vectors: Optional[Dict[str, List[float]]] = None,
        failures: Optional[Sequence[Exception]] = None,
        available: bool = True,
        wrong_dimension: bool = False
    ):
        self._dimension = dimension
        self.vectors = dict(vectors or {})
        self.failures = list(failures or [])
        self.available = available
        self.wrong_dimension = wrong_dimension
        self.calls: List[List[str]] = []

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return "stub-embedder"

    async def _embed(self, texts):
        self.calls.append(list(texts))
        if self.failures:
            raise self.failures.pop(0)
        size = self._dimension + 1 if self.wrong_dimension else self._dimension
        results = []
        for text in texts:
            if text in self.vectors:
                results.append(self.vectors[text])
            else:
                results.append(unit_vector(len(text), size))
        return results, 7 * len(texts)

    async def is_available(self) -> bool:
        return self.available


@pytest.fixture
def provider():
    return StubEmbeddingProvider()


@pytest.fixture
def memory_store():
    store = InMemoryVectorStore(vector_dimension=DIMENSION)
    store.add_candidate(CandidateDocument(
        entity_id="c-1",
        title="Senior Python Developer",
        skills=["Python", "Django", "AWS"],
        body_text="Built Django services on AWS. Django and python everywhere.",
        full_name="Ada Lovelace"
    ))
    store.add_candidate(CandidateDocument(
        entity_id="c-2",
        title="Data Engineer",
        skills=["Spark", "SQL"],
        body_text="python pipelines with spark",
        full_name="Grace Hopper"
    ))
    return store


@pytest.fixture
def unavailable_error():
    return ProviderUnavailableError("backend down")


def as_vector(values) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)


class FakeTransaction:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        self.conn.events.append("begin")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.conn.events.append("rollback" if exc_type else "commit")
        return False


class FakeConnection:
    """asyncpg connection double recording statements and transaction events.

    ``failures`` maps a statement index to the exception that statement raises.
    """

    def __init__(self, results=None, failures=None, rows=None):
        self.results = list(results or [])
        self.failures = dict(failures or {})
        self.rows = list(rows or [])
        self.statements: List[str] = []
        self.events: List[str] = []

    def transaction(self):
        return FakeTransaction(self)

    def _record(self, query):
        index = len(self.statements)
        self.statements.append(" ".join(query.split()))
        if index in self.failures:
            raise self.failures[index]
        return index

    async def execute(self, query, *args):
        index = self._record(query)
        return self.results[index] if index < len(self.results) else "UPDATE 1"

    async def executemany(self, query, args):
        self._record(query)

    async def fetch(self, query, *args):
        self._record(query)
        return self.rows


class FakePool:
    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.acquisitions = 0

    @asynccontextmanager
    async def acquire(self):
        self.acquisitions += 1
        yield self.conn

    async def close(self):
        pass
