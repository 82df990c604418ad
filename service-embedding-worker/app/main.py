"""Embedding worker main application."""

import asyncio
from dataclasses import replace
import signal
from typing import Any, Dict, Optional

from prometheus_client import start_http_server
import structlog

from candidate_search.common.config import WorkerConfig
from candidate_search.common.events import (
    EventPublisher,
    EventSubscriber,
    EventType,
    create_event_publisher,
    create_event_subscriber,
)
from candidate_search.common.logging import configure_logging
from candidate_search.common.metrics import MetricsCollector, get_metrics_collector
from candidate_search.common.tracing import configure_tracing, get_search_tracer
from candidate_search.embeddings.base import EmbeddingProvider
from candidate_search.embeddings.factory import create_embedding_provider
from candidate_search.jobs.base import EmbeddingJob, JobQueue
from candidate_search.jobs.factory import create_job_queue
from candidate_search.jobs.retry import RetryPolicy
from candidate_search.jobs.worker import EmbeddingWorker
from candidate_search.vector_store.base import CandidateVectorStore
from candidate_search.vector_store.factory import create_vector_store_from_config

logger = structlog.get_logger("embedding_worker")

SERVICE_NAME = "embedding-worker"


class EmbeddingWorkerService:
    """Owns the worker process lifecycle.

    Responsibilities
    - Build store, provider, queue and worker from ``WorkerConfig``
    - Run N consumers plus the ingestion event listener
    - Shut everything down in reverse order on stop
    """

    def __init__(
        self,
        config: WorkerConfig,
        store: Optional[CandidateVectorStore] = None,
        provider: Optional[EmbeddingProvider] = None,
        queue: Optional[JobQueue] = None,
        publisher: Optional[EventPublisher] = None,
        subscriber: Optional[EventSubscriber] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.config = config
        self.store = store or create_vector_store_from_config(config)
        self.provider = provider or create_embedding_provider(config)
        self.queue = queue or create_job_queue(config)
        self.publisher = publisher
        self.subscriber = subscriber
        self.metrics = metrics or get_metrics_collector(SERVICE_NAME)

        self.worker = EmbeddingWorker(
            queue=self.queue,
            provider=self.provider,
            store=self.store,
            retry_policy=RetryPolicy(
                base_delay=config.cs_retry_base_delay_seconds,
                max_delay=config.cs_retry_max_delay_seconds,
                exponential_base=config.cs_retry_exponential_base
            ),
            publisher=self.publisher,
            metrics=self.metrics,
            tracer=get_search_tracer(SERVICE_NAME),
            poll_timeout=config.cs_worker_poll_timeout_seconds,
            idle_delay=config.cs_worker_idle_delay_seconds,
            error_delay=config.cs_worker_error_delay_seconds,
            startup_delay=config.cs_worker_startup_delay_seconds
        )
        self._listener_task: Optional[asyncio.Task] = None

    async def handle_candidate_ingested(self, payload: Dict[str, Any]) -> None:
        """Enqueue an embedding job for an ingestion event."""
        try:
            job = EmbeddingJob.from_dict(payload)
        except (TypeError, ValueError) as e:
            logger.error("Invalid candidate ingested event", error=str(e))
            return

        job = replace(job, retry_count=0, max_retries=self.config.cs_job_max_retries)
        await self.queue.enqueue(job)
        logger.info("Queued embedding job from event", entity_id=job.entity_id, job_id=job.job_id, source=job.source)

    async def start(self) -> None:
        await self.store.initialize()

        if self.subscriber:
            self.subscriber.subscribe(EventType.CANDIDATE_INGESTED, self.handle_candidate_ingested)
            self._listener_task = asyncio.create_task(self.subscriber.start_listening())

        self.worker.start(consumers=self.config.cs_worker_consumers)
        logger.info(
            "Embedding worker service started",
            consumers=self.config.cs_worker_consumers,
            embedding_model=self.provider.model_name,
            queue_backend=self.config.cs_job_queue_backend,
            listen_events=self.subscriber is not None
        )

    async def stop(self) -> None:
        logger.info("Shutting down embedding worker service")
        if self._listener_task:
            self._listener_task.cancel()
            await asyncio.gather(self._listener_task, return_exceptions=True)
            self._listener_task = None

        await self.worker.stop()

        if self.subscriber:
            await self.subscriber.close()
        if self.publisher:
            await self.publisher.close()
        await self.provider.close()
        await self.queue.close()
        await self.store.close()
        logger.info("Embedding worker service shutdown complete")


async def main() -> None:
    config = WorkerConfig()
    configure_logging(SERVICE_NAME, config.cs_log_level, config.cs_log_format)

    if config.cs_tracing_enabled:
        if configure_tracing(SERVICE_NAME, config.cs_otel_exporter):
            logger.info("OpenTelemetry tracing enabled", exporter=config.cs_otel_exporter)
        else:
            logger.warning("Tracing initialization failed")
    else:
        logger.info("OpenTelemetry tracing disabled via configuration")

    metrics = get_metrics_collector(SERVICE_NAME)
    start_http_server(config.cs_worker_metrics_port, registry=metrics.registry)

    service = EmbeddingWorkerService(
        config,
        publisher=create_event_publisher(config.cs_redis_url),
        subscriber=create_event_subscriber(config.cs_redis_url) if config.cs_worker_listen_events else None,
        metrics=metrics
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await service.start()
    try:
        await stop_event.wait()
    finally:
        await service.stop()


if __name__ == "__main__":
    asyncio.run(main())
