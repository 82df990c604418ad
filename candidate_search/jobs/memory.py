"""In-process job queue built on asyncio primitives.

Suitable for tests and single-process deployments; jobs are lost on restart.
"""

import asyncio
from collections import deque
import time
from typing import Callable, Deque, Dict, Optional, Tuple
import uuid

import structlog

from .base import EmbeddingJob, JobQueue, QueueEntry, QueueStats

logger = structlog.get_logger("jobs.memory")


class InMemoryJobQueue(JobQueue):
    """FIFO queue with leases and visibility timeouts.

    Parameters
    - visibility_timeout: Seconds a leased job stays hidden before redelivery
    - clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        visibility_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._pending: Deque[EmbeddingJob] = deque()
        self._leases: Dict[str, Tuple[QueueEntry, float]] = {}
        self._condition = asyncio.Condition()

    async def enqueue(self, job: EmbeddingJob) -> None:
        async with self._condition:
            self._pending.append(job)
            self._condition.notify()
        logger.debug("Job enqueued", entity_id=job.entity_id, retry_count=job.retry_count)

    def _requeue_expired(self) -> None:
        now = self._clock()
        expired = [lease_id for lease_id, (_, deadline) in self._leases.items() if deadline <= now]
        for lease_id in expired:
            entry, _ = self._leases.pop(lease_id)
            self._pending.append(entry.job)
            logger.warning(
                "Lease expired; job visible again",
                entity_id=entry.job.entity_id,
                lease_id=lease_id
            )

    def _lease_next(self) -> Optional[QueueEntry]:
        self._requeue_expired()
        if not self._pending:
            return None
        entry = QueueEntry(job=self._pending.popleft(), lease_id=str(uuid.uuid4()))
        self._leases[entry.lease_id] = (entry, self._clock() + self.visibility_timeout)
        return entry

    async def dequeue(self, timeout: float = 0.0) -> Optional[QueueEntry]:
        async with self._condition:
            entry = self._lease_next()
            if entry is not None or timeout <= 0:
                return entry
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(lambda: bool(self._pending)),
                    timeout=timeout
                )
            except asyncio.TimeoutError:
                return self._lease_next()
            return self._lease_next()

    async def complete(self, entry: QueueEntry) -> bool:
        async with self._condition:
            if self._leases.pop(entry.lease_id, None) is None:
                logger.warning(
                    "Completed a job whose lease had expired",
                    entity_id=entry.job.entity_id,
                    lease_id=entry.lease_id
                )
                return False
            return True

    async def stats(self) -> QueueStats:
        async with self._condition:
            self._requeue_expired()
            return QueueStats(pending=len(self._pending), in_flight=len(self._leases))
