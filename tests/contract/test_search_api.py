"""Contract tests for the search service HTTP API."""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from candidate_search.common.config import SearchConfig
from candidate_search.common.metrics import MetricsCollector
from candidate_search.jobs.memory import InMemoryJobQueue
from candidate_search.search.errors import SearchTimeoutError
from candidate_search.search.orchestrator import HybridSearchOrchestrator
from candidate_search.search.tenant_config import InMemoryScoringConfigStore, TenantConfigResolver
from candidate_search.vector_store.base import StorageTimeoutError, VectorStoreConnectionError

from ..conftest import DIMENSION, StubEmbeddingProvider, as_vector, unit_vector

# Add the search service to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root / "service-search"))

from app.main import app  # noqa: E402


@pytest.fixture
def services(memory_store):
    provider = StubEmbeddingProvider(vectors={"python django": unit_vector(0)})
    queue = InMemoryJobQueue()
    config_store = InMemoryScoringConfigStore({"GLOBAL": {"search.similarity_threshold": "0.0"}})
    return {
        "config": SearchConfig(cs_vector_dimension=DIMENSION, cs_job_max_retries=2),
        "metrics_collector": MetricsCollector("search-service", registry=CollectorRegistry()),
        "vector_store": memory_store,
        "embedding_provider": provider,
        "job_queue": queue,
        "config_store": config_store,
        "config_resolver": TenantConfigResolver(config_store),
        "orchestrator": HybridSearchOrchestrator(provider, memory_store, pool_size=50),
    }


@pytest.fixture
def client(services):
    @asynccontextmanager
    async def state_lifespan(_app):
        for name, value in services.items():
            setattr(_app.state, name, value)
        yield

    original = app.router.lifespan_context
    app.router.lifespan_context = state_lifespan
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.router.lifespan_context = original


@pytest.mark.contract
class TestSearchAPI:
    """Request and response shapes of the search endpoints."""

    def test_search_returns_camel_case_page(self, client, services):
        client.portal.call(services["vector_store"].store_embedding, "c-1", as_vector(unit_vector(0)), "stub-embedder")

        response = client.post("/api/v1/search", json={
            "query": "python django",
            "page": 1,
            "pageSize": 5,
            "tenantId": "acme"
        })

        assert response.status_code == 200
        body = response.json()
        assert body["totalScored"] == 1
        assert body["pageSize"] == 5
        assert body["poolLimit"] == 50
        assert body["approximate"] is True
        assert body["strategy"] == "all_or_nothing"

        result = body["results"][0]
        assert result["entityId"] == "c-1"
        assert result["finalScore"] == 1.0
        assert result["keywordScores"] == {"python": 1.0, "django": 0.95}
        assert result["title"] == "Senior Python Developer"
        assert "semanticScore" in result
        assert "explanation" in result

    def test_invalid_paging_is_bad_request(self, client):
        response = client.post("/api/v1/search", json={"query": "python", "page": 0, "pageSize": 10})
        assert response.status_code == 400

    def test_query_embedding_error_maps_to_503(self, client, services, unavailable_error):
        services["embedding_provider"].failures = [unavailable_error]
        response = client.post("/api/v1/search", json={"query": "python"})
        assert response.status_code == 503

    def test_timeout_maps_to_504(self, client, services, monkeypatch):
        async def slow_search(request, scoring_config=None):
            raise SearchTimeoutError("deadline exceeded")

        monkeypatch.setattr(services["orchestrator"], "search", slow_search)
        response = client.post("/api/v1/search", json={"query": "python"})
        assert response.status_code == 504


@pytest.mark.contract
class TestScoringConfigAPI:
    def test_get_default_config(self, client):
        response = client.get("/api/v1/config/scoring/acme")
        assert response.status_code == 200
        assert response.json() == {
            "tenantId": "acme",
            "strategyName": "all_or_nothing",
            "semanticWeight": 0.6,
            "keywordWeight": 0.4,
            "similarityThreshold": 0.0,
        }

    def test_put_then_get(self, client, services):
        response = client.put("/api/v1/config/scoring/acme", json={
            "strategyName": "option4",
            "semanticWeight": 0.5,
            "keywordWeight": 0.5,
            "similarityThreshold": 0.25
        })
        assert response.status_code == 200
        assert response.json()["strategyName"] == "tiered_multi_keyword"

        assert client.get("/api/v1/config/scoring/acme").json()["similarityThreshold"] == 0.25
        assert services["config_store"].rows["acme"]["search.scoring_strategy"] == "tiered_multi_keyword"

    def test_put_invalid_config_is_bad_request(self, client):
        response = client.put("/api/v1/config/scoring/acme", json={
            "strategyName": "all_or_nothing",
            "semanticWeight": 1.5,
            "keywordWeight": 0.5,
            "similarityThreshold": 0.25
        })
        assert response.status_code == 400


@pytest.mark.contract
class TestEmbeddingsAPI:
    def test_status(self, client, services):
        client.portal.call(services["vector_store"].store_embedding, "c-1", as_vector(unit_vector(0)), "stub-embedder")

        body = client.get("/api/v1/embeddings/status").json()
        assert body["totalActiveCandidates"] == 2
        assert body["withEmbeddings"] == 1
        assert body["withoutEmbeddings"] == 1
        assert body["coveragePercent"] == 50.0
        assert body["queueStats"] == {"queued": 0, "working": 0}
        assert body["provider"] == {"available": True, "modelName": "stub-embedder", "dimension": DIMENSION}

    def test_generate_missing_enqueues_jobs(self, client, services):
        response = client.post("/api/v1/embeddings/generate-missing")
        assert response.status_code == 200
        assert response.json()["queued"] == 2

        entry = client.portal.call(services["job_queue"].dequeue)
        assert entry.job.entity_id == "c-1"
        assert entry.job.source == "API-GenerateMissing"
        assert entry.job.max_retries == 2
        assert entry.job.profile_text.startswith("Ada Lovelace. Senior Python Developer. Skills: Python, Django, AWS")

    def test_generate_missing_respects_limit(self, client):
        response = client.post("/api/v1/embeddings/generate-missing", params={"limit": 1})
        assert response.json()["queued"] == 1

    def test_enqueue_single_job(self, client, services):
        response = client.post("/api/v1/embeddings/jobs", json={
            "entityId": "c-2",
            "profileText": "Data Engineer",
            "bodyText": "spark"
        })
        assert response.status_code == 202
        assert response.json()["queued"] == 1

        stats = client.portal.call(services["job_queue"].stats)
        assert stats.pending == 1


@pytest.mark.contract
def test_service_endpoints(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/").json()["service"] == "search-service"

    client.get("/health")
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text


class FailingConfigStore(InMemoryScoringConfigStore):
    """Config store whose reads fail or stall."""

    def __init__(self, error=None, delay=0.0):
        super().__init__()
        self.error = error
        self.delay = delay

    async def get_rows(self, tenant_id):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return await super().get_rows(tenant_id)


@pytest.mark.contract
class TestScoringConfigStorageErrors:
    """Config store failures follow the storage status mapping."""

    def test_config_read_timeout_is_gateway_timeout(self, client, services):
        services["config_resolver"].store = FailingConfigStore(error=asyncio.TimeoutError())
        response = client.post("/api/v1/search", json={"query": "python"})
        assert response.status_code == 504

    def test_slow_config_read_hits_request_deadline(self, client, services):
        services["config_resolver"].store = FailingConfigStore(delay=5.0)
        client.app.state.config = SearchConfig(cs_vector_dimension=DIMENSION, cs_search_request_timeout_seconds=0.05)
        response = client.post("/api/v1/search", json={"query": "python"})
        assert response.status_code == 504

    def test_config_store_unavailable(self, client, services):
        services["config_resolver"].store = FailingConfigStore(error=VectorStoreConnectionError("refused"))
        assert client.post("/api/v1/search", json={"query": "python"}).status_code == 503
        assert client.get("/api/v1/config/scoring/acme").status_code == 503

    def test_config_store_timeout_on_read_endpoint(self, client, services):
        services["config_resolver"].store = FailingConfigStore(error=StorageTimeoutError("slow"))
        assert client.get("/api/v1/config/scoring/acme").status_code == 504
