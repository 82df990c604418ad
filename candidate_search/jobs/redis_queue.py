"""Durable job queue on Redis.

Layout for a queue named ``embedding_jobs``:
- ``embedding_jobs:pending``    list of job payloads (FIFO, RPUSH/LPOP)
- ``embedding_jobs:processing`` hash ``lease_id -> payload`` of leased jobs
- ``embedding_jobs:leases``     sorted set ``lease_id`` scored by deadline

Leasing and expiry recovery run in one Lua script so a job is never in
neither structure. Blocking dequeue is a short poll loop around that script.
"""

import asyncio
import time
from typing import Optional
import uuid

import redis.asyncio as redis_async
from redis.exceptions import RedisError
import structlog

from .base import EmbeddingJob, JobQueue, JobQueueError, QueueEntry, QueueStats

logger = structlog.get_logger("jobs.redis_queue")

_LEASE_SCRIPT = """
local expired = redis.call('ZRANGEBYSCORE', KEYS[3], '-inf', ARGV[1])
for _, lease in ipairs(expired) do
    local payload = redis.call('HGET', KEYS[2], lease)
    if payload then
        redis.call('RPUSH', KEYS[1], payload)
    end
    redis.call('HDEL', KEYS[2], lease)
    redis.call('ZREM', KEYS[3], lease)
end
local payload = redis.call('LPOP', KEYS[1])
if not payload then
    return nil
end
redis.call('HSET', KEYS[2], ARGV[3], payload)
redis.call('ZADD', KEYS[3], ARGV[2], ARGV[3])
return payload
"""

_COMPLETE_SCRIPT = """
local removed = redis.call('HDEL', KEYS[1], ARGV[1])
redis.call('ZREM', KEYS[2], ARGV[1])
return removed
"""


class RedisJobQueue(JobQueue):
    """At-least-once queue backed by a Redis list, hash and sorted set."""

    def __init__(
        self,
        redis_url: str,
        queue_name: str = "embedding_jobs",
        visibility_timeout: float = 300.0,
        poll_interval: float = 0.5,
        client: Optional[redis_async.Redis] = None
    ):
        self.queue_name = queue_name
        self.visibility_timeout = visibility_timeout
        self.poll_interval = poll_interval
        self.redis_client = client or redis_async.from_url(redis_url)
        self.pending_key = f"{queue_name}:pending"
        self.processing_key = f"{queue_name}:processing"
        self.leases_key = f"{queue_name}:leases"
        self._lease_script = self.redis_client.register_script(_LEASE_SCRIPT)
        self._complete_script = self.redis_client.register_script(_COMPLETE_SCRIPT)

    async def enqueue(self, job: EmbeddingJob) -> None:
        try:
            await self.redis_client.rpush(self.pending_key, job.to_json())
        except RedisError as e:
            logger.error("Failed to enqueue job", entity_id=job.entity_id, error=str(e))
            raise JobQueueError(f"Failed to enqueue job for {job.entity_id}: {e}") from e
        logger.debug("Job enqueued", entity_id=job.entity_id, retry_count=job.retry_count)

    async def _try_lease(self) -> Optional[QueueEntry]:
        lease_id = str(uuid.uuid4())
        now = time.time()
        try:
            payload = await self._lease_script(
                keys=[self.pending_key, self.processing_key, self.leases_key],
                args=[now, now + self.visibility_timeout, lease_id]
            )
        except RedisError as e:
            raise JobQueueError(f"Failed to lease job: {e}") from e

        if payload is None:
            return None

        try:
            job = EmbeddingJob.from_json(payload)
        except (ValueError, TypeError) as e:
            # Unreadable payloads would be redelivered forever; discard them.
            logger.error("Discarding malformed job payload", lease_id=lease_id, error=str(e))
            await self._complete_script(keys=[self.processing_key, self.leases_key], args=[lease_id])
            return None

        return QueueEntry(job=job, lease_id=lease_id)

    async def dequeue(self, timeout: float = 0.0) -> Optional[QueueEntry]:
        deadline = time.monotonic() + max(timeout, 0.0)
        while True:
            entry = await self._try_lease()
            if entry is not None:
                return entry
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def complete(self, entry: QueueEntry) -> bool:
        try:
            removed = await self._complete_script(
                keys=[self.processing_key, self.leases_key],
                args=[entry.lease_id]
            )
        except RedisError as e:
            raise JobQueueError(f"Failed to acknowledge job {entry.job.job_id}: {e}") from e

        if not removed:
            logger.warning(
                "Completed a job whose lease had expired",
                entity_id=entry.job.entity_id,
                lease_id=entry.lease_id
            )
            return False
        return True

    async def stats(self) -> QueueStats:
        try:
            async with self.redis_client.pipeline(transaction=False) as pipe:
                pipe.llen(self.pending_key)
                pipe.hlen(self.processing_key)
                pending, in_flight = await pipe.execute()
        except RedisError as e:
            raise JobQueueError(f"Failed to read queue stats: {e}") from e
        return QueueStats(pending=int(pending), in_flight=int(in_flight))

    async def close(self) -> None:
        await self.redis_client.aclose()
