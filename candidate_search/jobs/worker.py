"""Embedding worker.

Drains the job queue, embeds candidate text through the configured provider
and overwrites the stored vectors. Failed jobs are re-enqueued at the tail
with a backoff delay until their retry budget is spent, then dropped.

Execution model
- ``start(consumers=N)`` runs N independent consumer loops
- Delayed re-enqueues run as background tasks; ``stop`` cuts their backoff
  short and re-enqueues the job with its incremented retry count
"""

import asyncio
from dataclasses import replace
from enum import Enum
import time
from typing import List, Optional, Set

import structlog

from candidate_search.common.events import EventPublisher
from candidate_search.common.metrics import MetricsCollector
from candidate_search.common.tracing import SearchTracer, get_search_tracer
from candidate_search.embeddings.base import (
    EmbeddingDimensionError,
    EmbeddingProvider,
    EmptyEmbeddingError,
    ProviderUnavailableError,
    is_blank,
)
from candidate_search.vector_store.base import (
    CandidateNotFoundError,
    CandidateVectorStore,
    VectorDimensionError,
)

from .base import JobQueue, QueueEntry
from .retry import RetryPolicy

logger = structlog.get_logger("jobs.worker")


class JobOutcome(Enum):
    """Result of processing one queue entry."""
    COMPLETED = "completed"
    RETRIED = "retried"
    DROPPED = "dropped"
    SKIPPED_EMPTY = "skipped_empty"
    SKIPPED_MISSING = "skipped_missing"


class EmbeddingWorker:
    """Consumes embedding jobs and writes vectors.

    Parameters
    - queue / provider / store: collaborators, injected
    - retry_policy: backoff used before re-enqueueing a failed job
    - publisher: optional event publisher for generated/dropped events
    - metrics: optional ``MetricsCollector`` for job outcomes
    """

    def __init__(
        self,
        queue: JobQueue,
        provider: EmbeddingProvider,
        store: CandidateVectorStore,
        retry_policy: Optional[RetryPolicy] = None,
        publisher: Optional[EventPublisher] = None,
        metrics: Optional[MetricsCollector] = None,
        tracer: Optional[SearchTracer] = None,
        poll_timeout: float = 5.0,
        idle_delay: float = 2.0,
        error_delay: float = 10.0,
        startup_delay: float = 0.0
    ):
        self.queue = queue
        self.provider = provider
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.publisher = publisher
        self.metrics = metrics
        self.tracer = tracer or get_search_tracer("embedding-worker")
        self.poll_timeout = poll_timeout
        self.idle_delay = idle_delay
        self.error_delay = error_delay
        self.startup_delay = startup_delay
        self._consumers: List[asyncio.Task] = []
        self._delayed_retries: Set[asyncio.Task] = set()

    async def process_entry(self, entry: QueueEntry) -> JobOutcome:
        """Process one leased job and acknowledge it."""
        job = entry.job
        logger.info(
            "Processing embedding job",
            entity_id=job.entity_id,
            source=job.source,
            attempt=job.retry_count + 1,
            max_attempts=job.max_retries + 1
        )

        with self.tracer.trace_job(job.entity_id, job.retry_count):
            try:
                await self._generate_and_store(entry)
                outcome = JobOutcome.COMPLETED
            except EmptyEmbeddingError as e:
                logger.warning("Empty embedding generated; skipping", entity_id=job.entity_id, error=str(e))
                outcome = JobOutcome.SKIPPED_EMPTY
            except CandidateNotFoundError as e:
                logger.warning("No candidate row for job; skipping", entity_id=job.entity_id, error=str(e))
                outcome = JobOutcome.SKIPPED_MISSING
            except (EmbeddingDimensionError, VectorDimensionError) as e:
                logger.error(
                    "Embedding dimension mismatch; dropping job",
                    entity_id=job.entity_id,
                    error=str(e)
                )
                await self._publish_dropped(job.entity_id, job.retry_count, str(e))
                outcome = JobOutcome.DROPPED
            except asyncio.CancelledError:
                raise
            except Exception as e:
                return await self._retry_or_drop(entry, e)

        await self.queue.complete(entry)
        self._record(outcome)
        return outcome

    async def _generate_and_store(self, entry: QueueEntry) -> None:
        job = entry.job
        if not await self.provider.is_available():
            raise ProviderUnavailableError(f"{self.provider.model_name} is not available")

        texts = [job.profile_text]
        if not is_blank(job.body_text):
            texts.append(job.body_text)

        start_time = time.perf_counter()
        vectors, tokens = await self.provider.generate_batch_with_usage(texts)
        if self.metrics:
            self.metrics.record_embedding(self.provider.model_name, "job", time.perf_counter() - start_time)

        profile_vector = vectors[0]
        if profile_vector.size == 0:
            raise EmptyEmbeddingError(f"No profile text to embed for {job.entity_id}")
        body_vector = vectors[1] if len(vectors) > 1 else None

        stored = await self.store.store_embedding(
            job.entity_id,
            profile_vector,
            model_name=self.provider.model_name,
            tokens=tokens,
            body_vector=body_vector
        )

        logger.info(
            "Stored embedding for candidate",
            entity_id=job.entity_id,
            model_name=stored.model_name,
            dimensions=len(profile_vector)
        )

        if self.publisher:
            try:
                await self.publisher.publish_embedding_generated(
                    job.entity_id, stored.model_name, len(profile_vector)
                )
            except Exception as e:
                logger.warning("Failed to publish embedding generated event", entity_id=job.entity_id, error=str(e))

    async def _retry_or_drop(self, entry: QueueEntry, error: Exception) -> JobOutcome:
        job = entry.job
        logger.error(
            "Failed to generate embedding",
            entity_id=job.entity_id,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
            error_type=type(error).__name__,
            error=str(error)
        )

        if job.retry_count >= job.max_retries:
            logger.error(
                "Max retries exceeded; dropping job",
                entity_id=job.entity_id,
                retry_count=job.retry_count
            )
            await self.queue.complete(entry)
            await self._publish_dropped(job.entity_id, job.retry_count, str(error))
            self._record(JobOutcome.DROPPED)
            return JobOutcome.DROPPED

        retry_job = replace(job, retry_count=job.retry_count + 1)
        delay = self.retry_policy.delay_for(retry_job.retry_count)

        if delay <= 0:
            await self._requeue(entry, retry_job)
        else:
            task = asyncio.create_task(self._requeue_after(entry, retry_job, delay))
            self._delayed_retries.add(task)
            task.add_done_callback(self._delayed_retries.discard)

        logger.info(
            "Requeued embedding job",
            entity_id=job.entity_id,
            retry_count=retry_job.retry_count,
            max_retries=job.max_retries,
            delay_seconds=round(delay, 2)
        )
        self._record(JobOutcome.RETRIED)
        return JobOutcome.RETRIED

    async def _requeue(self, entry: QueueEntry, retry_job) -> None:
        await self.queue.enqueue(retry_job)
        await self.queue.complete(entry)

    async def _requeue_after(self, entry: QueueEntry, retry_job, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            # Shutdown skips the remaining backoff but keeps the retry count.
            await self._requeue_or_log(entry, retry_job)
            raise
        await self._requeue_or_log(entry, retry_job)

    async def _requeue_or_log(self, entry: QueueEntry, retry_job) -> None:
        try:
            await self._requeue(entry, retry_job)
        except Exception as e:
            # The original lease is still held and will be redelivered.
            logger.error("Delayed requeue failed", entity_id=retry_job.entity_id, error=str(e))

    async def _publish_dropped(self, entity_id: str, retry_count: int, reason: str) -> None:
        if not self.publisher:
            return
        try:
            await self.publisher.publish_embedding_dropped(entity_id, retry_count, reason)
        except Exception as e:
            logger.warning("Failed to publish embedding dropped event", entity_id=entity_id, error=str(e))

    def _record(self, outcome: JobOutcome) -> None:
        if self.metrics:
            self.metrics.record_job_outcome(outcome.value)

    async def run(self, consumer_id: int = 0) -> None:
        """Consumer loop; returns only when cancelled."""
        log = logger.bind(consumer_id=consumer_id)
        log.info("Embedding worker consumer started")

        if self.startup_delay > 0:
            await asyncio.sleep(self.startup_delay)

        try:
            while True:
                try:
                    entry = await self.queue.dequeue(timeout=self.poll_timeout)
                    if entry is None:
                        await asyncio.sleep(self.idle_delay)
                        continue

                    outcome = await self.process_entry(entry)
                    log.info("Embedding job finished", entity_id=entry.job.entity_id, outcome=outcome.value)

                    if self.metrics:
                        stats = await self.queue.stats()
                        self.metrics.set_queue_depth(stats.pending)

                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    log.error("Error processing embedding queue", error=str(e))
                    await asyncio.sleep(self.error_delay)
        except asyncio.CancelledError:
            log.info("Embedding worker consumer stopped")
            raise

    def start(self, consumers: int = 1) -> List[asyncio.Task]:
        """Start ``consumers`` concurrent consumer loops."""
        if self._consumers:
            raise RuntimeError("Embedding worker already started")
        self._consumers = [
            asyncio.create_task(self.run(consumer_id=i), name=f"embedding-consumer-{i}")
            for i in range(consumers)
        ]
        logger.info("Embedding worker started", consumers=consumers)
        return list(self._consumers)

    async def stop(self) -> None:
        """Cancel consumers and pending delayed re-enqueues."""
        # Freshly scheduled retries must reach their backoff sleep before cancel.
        await asyncio.sleep(0)
        tasks = self._consumers + list(self._delayed_retries)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._consumers = []
        self._delayed_retries.clear()
        logger.info("Embedding worker stopped", cancelled_tasks=len(tasks))
