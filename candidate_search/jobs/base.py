"""Embedding job model and the queue interface.

The queue gives at-least-once delivery: a dequeued job stays leased (hidden)
until ``complete`` is called, and becomes visible again at the tail of the
queue once its visibility timeout expires. Consumers must therefore be
idempotent; the vector store overwrite keyed by entity id makes them so.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
import json
import time
from typing import Any, Dict, Optional
import uuid

from candidate_search.vector_store.base import CandidateDocument


def _now_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class EmbeddingJob:
    """One request to (re)generate the vectors of a candidate."""
    entity_id: str
    profile_text: str
    body_text: str = ""
    source: str = "ingestion"
    retry_count: int = 0
    max_retries: int = 3
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    queued_at: int = field(default_factory=_now_millis)

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert job to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmbeddingJob":
        """Build a job from a decoded payload, ignoring unknown keys."""
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        if "entity_id" not in known:
            raise ValueError("Embedding job payload is missing 'entity_id'")
        known["entity_id"] = str(known["entity_id"])
        known.setdefault("profile_text", "")
        return cls(**known)

    @classmethod
    def from_json(cls, payload) -> "EmbeddingJob":
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8")
        return cls.from_dict(json.loads(payload))


PROFILE_BODY_CHARS = 500


def build_profile_text(document: CandidateDocument) -> str:
    """Profile text for a candidate: name, title, skills and a body excerpt."""
    parts = []
    if document.full_name and document.full_name.strip():
        parts.append(document.full_name.strip())
    if document.title and document.title.strip():
        parts.append(document.title.strip())

    skills = ", ".join(skill for skill in document.skills if skill)
    if skills:
        parts.append(f"Skills: {skills}")

    if document.body_text and document.body_text.strip():
        parts.append(document.body_text[:PROFILE_BODY_CHARS])
    return ". ".join(parts)


def job_for_document(document: CandidateDocument, source: str, max_retries: int = 3) -> EmbeddingJob:
    """Build the embedding job that (re)generates a candidate's vectors."""
    return EmbeddingJob(
        entity_id=document.entity_id,
        profile_text=build_profile_text(document),
        body_text=document.body_text or "",
        source=source,
        max_retries=max_retries
    )


@dataclass
class QueueEntry:
    """A leased job; pass it back to ``complete`` to acknowledge."""
    job: EmbeddingJob
    lease_id: str


@dataclass
class QueueStats:
    """Snapshot of queue depth."""
    pending: int
    in_flight: int

    def to_dict(self) -> Dict[str, int]:
        return {"pending": self.pending, "in_flight": self.in_flight}


class JobQueue(ABC):
    """Message-passing interface between producers and embedding workers."""

    @abstractmethod
    async def enqueue(self, job: EmbeddingJob) -> None:
        """Append a job at the tail of the queue."""

    @abstractmethod
    async def dequeue(self, timeout: float = 0.0) -> Optional[QueueEntry]:
        """Lease the next job, waiting up to ``timeout`` seconds.

        Returns ``None`` when no job became available in time.
        """

    @abstractmethod
    async def complete(self, entry: QueueEntry) -> bool:
        """Acknowledge a leased job.

        Returns ``False`` when the lease had already expired (the job may have
        been redelivered).
        """

    @abstractmethod
    async def stats(self) -> QueueStats:
        """Current pending and in-flight counts."""

    async def close(self) -> None:
        """Release transport resources."""


class JobQueueError(Exception):
    """Base exception for job queue operations."""
    pass
