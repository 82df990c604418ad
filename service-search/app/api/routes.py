"""API routes for search service."""

import asyncio
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field
import structlog

from candidate_search.common.config import SearchConfig
from candidate_search.embeddings.base import EmbeddingProvider
from candidate_search.jobs.base import EmbeddingJob, JobQueue, JobQueueError, job_for_document
from candidate_search.search.errors import (
    InvalidConfigError,
    InvalidSearchRequestError,
    QueryEmbeddingError,
    SearchTimeoutError,
)
from candidate_search.search.orchestrator import HybridSearchOrchestrator, SearchRequest
from candidate_search.search.tenant_config import ScoringConfig, TenantConfigResolver
from candidate_search.vector_store.base import (
    CandidateVectorStore,
    StorageTimeoutError,
    VectorStoreConnectionError,
    VectorStoreError,
)

logger = structlog.get_logger("search_service.api")

router = APIRouter()

GENERATE_MISSING_SOURCE = "API-GenerateMissing"


class CamelModel(BaseModel):
    """Accepts and emits camelCase field names."""
    model_config = ConfigDict(populate_by_name=True)


class SearchBody(CamelModel):
    """Request model for search endpoint."""
    query: str = Field(..., description="Free-text search query")
    page: int = Field(1, description="1-based page number")
    page_size: int = Field(10, alias="pageSize", description="Results per page")
    tenant_id: Optional[str] = Field(None, alias="tenantId", description="Tenant whose scoring config applies")


class SearchResultModel(CamelModel):
    entity_id: str = Field(..., alias="entityId")
    final_score: float = Field(..., alias="finalScore")
    semantic_score: float = Field(..., alias="semanticScore")
    explanation: str
    keyword_scores: Dict[str, float] = Field(..., alias="keywordScores")
    title: Optional[str] = None


class SearchResponse(CamelModel):
    """Response model for search endpoint."""
    results: List[SearchResultModel]
    total_scored: int = Field(..., alias="totalScored")
    page: int
    page_size: int = Field(..., alias="pageSize")
    pool_limit: int = Field(..., alias="poolLimit")
    approximate: bool
    strategy: str
    keywords: List[str] = Field(default_factory=list)


class ScoringConfigModel(CamelModel):
    """Scoring configuration for one tenant."""
    strategy_name: str = Field(..., alias="strategyName")
    semantic_weight: float = Field(..., alias="semanticWeight")
    keyword_weight: float = Field(..., alias="keywordWeight")
    similarity_threshold: float = Field(..., alias="similarityThreshold")


class ScoringConfigResponse(ScoringConfigModel):
    tenant_id: str = Field(..., alias="tenantId")


class EnqueueJobBody(CamelModel):
    """Request model for enqueueing one embedding job."""
    entity_id: str = Field(..., alias="entityId")
    profile_text: str = Field(..., alias="profileText")
    body_text: str = Field("", alias="bodyText")
    source: str = Field("ingestion")


class EnqueueResponse(CamelModel):
    status: str
    queued: int
    message: str


def get_orchestrator(request: Request) -> HybridSearchOrchestrator:
    """Get search orchestrator from application state."""
    return request.app.state.orchestrator


def get_resolver(request: Request) -> TenantConfigResolver:
    """Get tenant scoring config resolver from application state."""
    return request.app.state.config_resolver


def get_store(request: Request) -> CandidateVectorStore:
    return request.app.state.vector_store


def get_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_provider(request: Request) -> EmbeddingProvider:
    return request.app.state.embedding_provider


def get_config(request: Request) -> SearchConfig:
    return request.app.state.config


@router.post("/search", response_model=SearchResponse)
async def search(
    body: SearchBody,
    orchestrator: HybridSearchOrchestrator = Depends(get_orchestrator),
    resolver: TenantConfigResolver = Depends(get_resolver),
    config: SearchConfig = Depends(get_config)
):
    """Perform hybrid semantic and keyword search."""
    tenant_id = body.tenant_id or config.cs_default_tenant

    try:
        request = SearchRequest(
            query=body.query,
            page=body.page,
            page_size=body.page_size,
            tenant_id=tenant_id
        )
    except InvalidSearchRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        scoring_config = await asyncio.wait_for(
            resolver.resolve(tenant_id),
            timeout=config.cs_search_request_timeout_seconds
        )
        page = await orchestrator.search(request, scoring_config)
    except asyncio.TimeoutError as e:
        logger.error("Search timed out resolving scoring config", tenant_id=tenant_id)
        raise HTTPException(status_code=504, detail="Search timed out: scoring config unavailable") from e
    except QueryEmbeddingError as e:
        logger.error("Search failed: query embedding unavailable", tenant_id=tenant_id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Embedding provider unavailable: {e}")
    except VectorStoreConnectionError as e:
        logger.error("Search failed: vector store unavailable", tenant_id=tenant_id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Vector store unavailable: {e}")
    except (SearchTimeoutError, StorageTimeoutError) as e:
        logger.error("Search timed out", tenant_id=tenant_id, error=str(e))
        raise HTTPException(status_code=504, detail=f"Search timed out: {e}")
    except VectorStoreError as e:
        logger.error("Search failed: vector store error", tenant_id=tenant_id, error=str(e))
        raise HTTPException(status_code=500, detail=f"Search failed: {e}")

    return SearchResponse(
        results=[
            SearchResultModel(
                entity_id=result.entity_id,
                final_score=result.final_score,
                semantic_score=result.semantic_score,
                explanation=result.explanation,
                keyword_scores=result.keyword_scores,
                title=result.title
            )
            for result in page.results
        ],
        total_scored=page.total_scored,
        page=page.page,
        page_size=page.page_size,
        pool_limit=page.pool_limit,
        approximate=page.approximate,
        strategy=page.strategy,
        keywords=page.keywords
    )


def _config_response(tenant_id: str, scoring_config: ScoringConfig) -> ScoringConfigResponse:
    return ScoringConfigResponse(
        tenant_id=tenant_id,
        strategy_name=scoring_config.strategy_name,
        semantic_weight=scoring_config.semantic_weight,
        keyword_weight=scoring_config.keyword_weight,
        similarity_threshold=scoring_config.similarity_threshold
    )


def _storage_http_error(tenant_id: str, error: VectorStoreError) -> HTTPException:
    logger.error("Scoring config storage failed", tenant_id=tenant_id, error=str(error))
    if isinstance(error, VectorStoreConnectionError):
        return HTTPException(status_code=503, detail=f"Config store unavailable: {error}")
    if isinstance(error, StorageTimeoutError):
        return HTTPException(status_code=504, detail=f"Config store timed out: {error}")
    return HTTPException(status_code=500, detail=f"Config store error: {error}")


@router.get("/config/scoring/{tenant_id}", response_model=ScoringConfigResponse)
async def get_scoring_config(tenant_id: str, resolver: TenantConfigResolver = Depends(get_resolver)):
    """Return the effective scoring configuration of a tenant."""
    try:
        scoring_config = await resolver.resolve(tenant_id)
    except VectorStoreError as e:
        raise _storage_http_error(tenant_id, e) from e
    return _config_response(tenant_id, scoring_config)


@router.put("/config/scoring/{tenant_id}", response_model=ScoringConfigResponse)
async def update_scoring_config(
    tenant_id: str,
    body: ScoringConfigModel,
    resolver: TenantConfigResolver = Depends(get_resolver)
):
    """Validate and store a tenant's scoring configuration."""
    try:
        scoring_config = await resolver.update(
            tenant_id,
            ScoringConfig(
                strategy_name=body.strategy_name,
                semantic_weight=body.semantic_weight,
                keyword_weight=body.keyword_weight,
                similarity_threshold=body.similarity_threshold
            )
        )
    except InvalidConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except VectorStoreError as e:
        raise _storage_http_error(tenant_id, e) from e
    return _config_response(tenant_id, scoring_config)


@router.get("/embeddings/status")
async def embedding_status(
    store: CandidateVectorStore = Depends(get_store),
    queue: JobQueue = Depends(get_queue),
    provider: EmbeddingProvider = Depends(get_provider)
):
    """Embedding coverage, queue depth and provider health."""
    try:
        coverage = await store.embedding_status()
        queue_stats = await queue.stats()
    except (VectorStoreError, JobQueueError) as e:
        logger.error("Failed to get embedding status", error=str(e))
        raise HTTPException(status_code=503, detail=f"Failed to get embedding status: {e}")

    return {
        "totalActiveCandidates": coverage.total_candidates,
        "withEmbeddings": coverage.with_embeddings,
        "withoutEmbeddings": coverage.without_embeddings,
        "coveragePercent": coverage.coverage_percent,
        "queueStats": {
            "queued": queue_stats.pending,
            "working": queue_stats.in_flight,
        },
        "provider": {
            "available": await provider.is_available(),
            "modelName": provider.model_name,
            "dimension": provider.dimension,
        },
    }


@router.post("/embeddings/generate-missing", response_model=EnqueueResponse)
async def generate_missing_embeddings(
    limit: Optional[int] = Query(None, ge=1, description="Maximum candidates to enqueue"),
    store: CandidateVectorStore = Depends(get_store),
    queue: JobQueue = Depends(get_queue),
    config: SearchConfig = Depends(get_config)
):
    """Enqueue embedding jobs for active candidates without a profile vector."""
    try:
        documents = await store.list_missing_embeddings(limit=limit)
        for document in documents:
            await queue.enqueue(
                job_for_document(document, GENERATE_MISSING_SOURCE, max_retries=config.cs_job_max_retries)
            )
    except (VectorStoreError, JobQueueError) as e:
        logger.error("Failed to enqueue missing embeddings", error=str(e))
        raise HTTPException(status_code=503, detail=f"Failed to enqueue missing embeddings: {e}")

    logger.info("Queued missing embedding jobs", count=len(documents))
    return EnqueueResponse(
        status="queued",
        queued=len(documents),
        message=f"Queued {len(documents)} candidates for embedding generation"
    )


@router.post("/embeddings/jobs", response_model=EnqueueResponse, status_code=202)
async def enqueue_embedding_job(
    body: EnqueueJobBody,
    queue: JobQueue = Depends(get_queue),
    config: SearchConfig = Depends(get_config)
):
    """Enqueue one embedding job (ingestion hook)."""
    job = EmbeddingJob(
        entity_id=body.entity_id,
        profile_text=body.profile_text,
        body_text=body.body_text,
        source=body.source,
        max_retries=config.cs_job_max_retries
    )
    try:
        await queue.enqueue(job)
    except JobQueueError as e:
        logger.error("Failed to enqueue embedding job", entity_id=body.entity_id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Failed to enqueue job: {e}")

    logger.info("Queued embedding job", entity_id=job.entity_id, job_id=job.job_id, source=job.source)
    return EnqueueResponse(status="queued", queued=1, message=f"Queued job {job.job_id}")
