"""Tests for the embedding job model, queue and retry policy."""

import asyncio
import random

import pytest

from candidate_search.jobs.base import EmbeddingJob, build_profile_text, job_for_document
from candidate_search.jobs.memory import InMemoryJobQueue
from candidate_search.jobs.retry import RetryPolicy
from candidate_search.vector_store.base import CandidateDocument


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_job_json_payload():
    job = EmbeddingJob(entity_id="c-1", profile_text="Python developer", body_text="resume", source="test")
    restored = EmbeddingJob.from_json(job.to_json().encode("utf-8"))
    assert restored == job


def test_job_from_dict_ignores_unknown_keys():
    job = EmbeddingJob.from_dict({"entity_id": 42, "profile_text": "x", "timestamp": 1, "event_type": "e"})
    assert job.entity_id == "42"
    assert job.retry_count == 0
    assert job.max_retries == 3


def test_job_from_dict_requires_entity_id():
    with pytest.raises(ValueError):
        EmbeddingJob.from_dict({"profile_text": "x"})


def test_build_profile_text():
    document = CandidateDocument(
        entity_id="c-1",
        title="Data Engineer",
        skills=["Spark", "", "SQL"],
        body_text="x" * 600,
        full_name="Grace Hopper"
    )
    text = build_profile_text(document)
    assert text.startswith("Grace Hopper. Data Engineer. Skills: Spark, SQL. ")
    assert text.endswith("x" * 500)
    assert len(text) == len("Grace Hopper. Data Engineer. Skills: Spark, SQL. ") + 500


def test_job_for_document():
    document = CandidateDocument(entity_id="c-9", title="QA", body_text="tests")
    job = job_for_document(document, "API-GenerateMissing", max_retries=5)
    assert job.entity_id == "c-9"
    assert job.profile_text == "QA. tests"
    assert job.body_text == "tests"
    assert job.source == "API-GenerateMissing"
    assert job.max_retries == 5


@pytest.mark.asyncio
async def test_queue_is_fifo_and_ack_removes_lease():
    queue = InMemoryJobQueue()
    await queue.enqueue(EmbeddingJob(entity_id="a", profile_text="a"))
    await queue.enqueue(EmbeddingJob(entity_id="b", profile_text="b"))

    first = await queue.dequeue()
    second = await queue.dequeue()
    assert (first.job.entity_id, second.job.entity_id) == ("a", "b")
    assert (await queue.stats()).to_dict() == {"pending": 0, "in_flight": 2}

    assert await queue.complete(first) is True
    assert await queue.complete(first) is False
    assert (await queue.stats()).in_flight == 1


@pytest.mark.asyncio
async def test_dequeue_times_out_when_empty():
    queue = InMemoryJobQueue()
    assert await queue.dequeue() is None
    assert await queue.dequeue(timeout=0.01) is None


@pytest.mark.asyncio
async def test_dequeue_wakes_on_enqueue():
    queue = InMemoryJobQueue()

    async def produce():
        await asyncio.sleep(0.01)
        await queue.enqueue(EmbeddingJob(entity_id="late", profile_text="x"))

    producer = asyncio.create_task(produce())
    entry = await queue.dequeue(timeout=1.0)
    await producer
    assert entry is not None
    assert entry.job.entity_id == "late"


@pytest.mark.asyncio
async def test_expired_lease_is_redelivered_at_tail():
    """An unacknowledged job becomes visible again after the visibility timeout."""
    clock = FakeClock()
    queue = InMemoryJobQueue(visibility_timeout=30.0, clock=clock)
    await queue.enqueue(EmbeddingJob(entity_id="a", profile_text="a"))
    await queue.enqueue(EmbeddingJob(entity_id="b", profile_text="b"))

    leased = await queue.dequeue()
    assert leased.job.entity_id == "a"

    clock.now += 31.0
    assert (await queue.stats()).to_dict() == {"pending": 2, "in_flight": 0}

    order = [(await queue.dequeue()).job.entity_id, (await queue.dequeue()).job.entity_id]
    assert order == ["b", "a"]
    assert await queue.complete(leased) is False


def test_retry_policy_backoff():
    policy = RetryPolicy(base_delay=2.0, max_delay=10.0, exponential_base=2.0, jitter=False)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 10.0]


def test_retry_policy_jitter_within_ten_percent():
    policy = RetryPolicy(base_delay=4.0, jitter=True, rng=random.Random(7))
    for _ in range(50):
        assert 3.6 <= policy.delay_for(1) <= 4.4


def test_immediate_retry_policy():
    assert RetryPolicy.immediate().delay_for(3) == 0.0
