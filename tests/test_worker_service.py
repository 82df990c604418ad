"""Tests for the embedding worker service and the enqueue CLI."""

import asyncio
import importlib.util
from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

from candidate_search.common.config import WorkerConfig
from candidate_search.common.events import EventType
from candidate_search.common.metrics import MetricsCollector
from candidate_search.jobs.memory import InMemoryJobQueue

from scripts.enqueue_embeddings import enqueue_embeddings

from .conftest import DIMENSION, StubEmbeddingProvider, as_vector, unit_vector

project_root = Path(__file__).parent.parent


def load_worker_main():
    module_spec = importlib.util.spec_from_file_location(
        "embedding_worker_main",
        project_root / "service-embedding-worker" / "app" / "main.py"
    )
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


class RecordingSubscriber:
    def __init__(self):
        self.handlers = {}
        self.closed = False

    def subscribe(self, event_type, handler):
        self.handlers[event_type] = handler

    async def start_listening(self):
        await asyncio.Event().wait()

    async def close(self):
        self.closed = True


@pytest.fixture
def worker_config():
    return WorkerConfig(
        cs_vector_dimension=DIMENSION,
        cs_job_max_retries=4,
        cs_worker_consumers=1,
        cs_worker_startup_delay_seconds=0,
        cs_worker_poll_timeout_seconds=0.01,
        cs_worker_idle_delay_seconds=0.01,
        cs_retry_base_delay_seconds=0
    )


@pytest.mark.asyncio
async def test_ingestion_event_becomes_processed_job(worker_config, memory_store):
    worker_main = load_worker_main()
    queue = InMemoryJobQueue()
    subscriber = RecordingSubscriber()
    service = worker_main.EmbeddingWorkerService(
        worker_config,
        store=memory_store,
        provider=StubEmbeddingProvider(),
        queue=queue,
        subscriber=subscriber,
        metrics=MetricsCollector("embedding-worker", registry=CollectorRegistry())
    )

    await service.start()
    handler = subscriber.handlers[EventType.CANDIDATE_INGESTED]
    await handler({
        "timestamp": 1,
        "event_type": EventType.CANDIDATE_INGESTED.value,
        "entity_id": "c-2",
        "profile_text": "Data Engineer. Skills: Spark, SQL",
        "body_text": "python pipelines with spark",
        "source": "spreadsheet"
    })

    for _ in range(200):
        if await memory_store.get_embedding("c-2") is not None:
            break
        await asyncio.sleep(0.01)
    await service.stop()

    assert await memory_store.get_embedding("c-2") is not None
    assert subscriber.closed is True


@pytest.mark.asyncio
async def test_invalid_event_is_ignored(worker_config, memory_store):
    worker_main = load_worker_main()
    queue = InMemoryJobQueue()
    service = worker_main.EmbeddingWorkerService(
        worker_config,
        store=memory_store,
        provider=StubEmbeddingProvider(),
        queue=queue,
        metrics=MetricsCollector("embedding-worker", registry=CollectorRegistry())
    )

    await service.handle_candidate_ingested({"profile_text": "no id"})
    await service.handle_candidate_ingested({"entity_id": "c-1", "profile_text": "x", "retry_count": 9})

    entry = await queue.dequeue()
    assert entry.job.entity_id == "c-1"
    assert entry.job.retry_count == 0
    assert entry.job.max_retries == 4
    assert await queue.dequeue() is None


@pytest.mark.asyncio
async def test_enqueue_missing_and_all(memory_store):
    await memory_store.store_embedding("c-1", as_vector(unit_vector(0)), "stub-embedder")
    queue = InMemoryJobQueue()

    assert await enqueue_embeddings(memory_store, queue) == 1
    entry = await queue.dequeue()
    assert entry.job.entity_id == "c-2"
    assert entry.job.source == "CLI-EnqueueEmbeddings"

    assert await enqueue_embeddings(memory_store, queue, include_existing=True, limit=5, max_retries=1) == 2
    assert (await queue.stats()).pending == 2
