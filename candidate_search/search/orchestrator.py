"""Hybrid search orchestrator.

Embeds the query, pulls a bounded pool of similar candidates from the vector
store, scores every pooled candidate's keywords against one fetched document
and ranks the pool with the tenant's scoring strategy.

Ranking is over the pool only, so every page is marked ``approximate``.
"""

import asyncio
from dataclasses import dataclass, field
import time
from typing import Dict, List, Optional

import numpy as np
import structlog

from candidate_search.common.logging import log_performance
from candidate_search.common.metrics import MetricsCollector
from candidate_search.common.tracing import SearchTracer, get_search_tracer
from candidate_search.embeddings.base import EmbeddingError, EmbeddingProvider, is_blank
from candidate_search.vector_store.base import CandidateVectorStore, SimilarCandidate

from .errors import InvalidSearchRequestError, QueryEmbeddingError, SearchTimeoutError
from .keywords import KeywordScorer, extract_keywords
from .scoring import ScoringStrategy, get_strategy
from .tenant_config import ScoringConfig

logger = structlog.get_logger("search.orchestrator")


@dataclass
class SearchRequest:
    """A paged search request; raises ``InvalidSearchRequestError`` on bad paging."""
    query: str
    page: int = 1
    page_size: int = 10
    tenant_id: Optional[str] = None

    def __post_init__(self):
        if self.page is None or self.page < 1:
            raise InvalidSearchRequestError(f"page must be >= 1, got {self.page}")
        if self.page_size is None or self.page_size < 1:
            raise InvalidSearchRequestError(f"page_size must be >= 1, got {self.page_size}")

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class RankedResult:
    entity_id: str
    semantic_score: float
    keyword_scores: Dict[str, float]
    final_score: float
    explanation: str
    title: Optional[str] = None


@dataclass
class SearchPage:
    results: List[RankedResult]
    total_scored: int
    page: int
    page_size: int
    pool_limit: int
    strategy: str
    keywords: List[str] = field(default_factory=list)
    approximate: bool = True


class HybridSearchOrchestrator:
    """Runs one hybrid search end to end.

    Parameters
    - provider: embeds the query text
    - store: similarity pool and candidate documents
    - scorer: per-keyword relevance against a document
    - pool_size: maximum candidates pulled from the vector store
    - keyword_concurrency: document fetches allowed in flight at once
    - request_timeout: deadline in seconds for the whole request
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: CandidateVectorStore,
        scorer: Optional[KeywordScorer] = None,
        pool_size: int = 100,
        keyword_concurrency: int = 8,
        request_timeout: float = 30.0,
        metrics: Optional[MetricsCollector] = None,
        tracer: Optional[SearchTracer] = None
    ):
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        if keyword_concurrency < 1:
            raise ValueError("keyword_concurrency must be at least 1")

        self.provider = provider
        self.store = store
        self.scorer = scorer or KeywordScorer()
        self.pool_size = pool_size
        self.keyword_concurrency = keyword_concurrency
        self.request_timeout = request_timeout
        self.metrics = metrics
        self.tracer = tracer or get_search_tracer("search-service")

    async def search(self, request: SearchRequest, scoring_config: Optional[ScoringConfig] = None) -> SearchPage:
        """Search and return one page of ranked candidates.

        Raises ``QueryEmbeddingError`` when the query cannot be embedded and
        ``SearchTimeoutError`` when the deadline passes; storage errors
        propagate unchanged.
        """
        scoring_config = scoring_config or ScoringConfig()
        strategy = get_strategy(scoring_config.strategy_name, scoring_config)
        keywords = extract_keywords(request.query)

        if is_blank(request.query):
            return self._page(request, [], 0, strategy, keywords)

        start_time = time.perf_counter()
        with self.tracer.trace_search_query(
            strategy.name,
            request.tenant_id or "",
            page=request.page,
            page_size=request.page_size,
            keyword_count=len(keywords)
        ):
            try:
                page = await asyncio.wait_for(
                    self._search(request, scoring_config, strategy, keywords),
                    timeout=self.request_timeout
                )
            except asyncio.TimeoutError as e:
                logger.error(
                    "Search request timed out",
                    tenant_id=request.tenant_id,
                    timeout_seconds=self.request_timeout
                )
                if self.metrics:
                    self.metrics.record_search_failure(strategy.name, "timeout")
                raise SearchTimeoutError(
                    f"Search did not complete within {self.request_timeout}s"
                ) from e
            except Exception as e:
                if self.metrics:
                    self.metrics.record_search_failure(strategy.name, type(e).__name__)
                raise

        duration = time.perf_counter() - start_time
        if self.metrics:
            self.metrics.record_search(strategy.name, duration, page.total_scored)

        log_performance(
            "hybrid_search",
            duration * 1000,
            tenant_id=request.tenant_id,
            strategy=strategy.name,
            keywords=keywords,
            pool_size=page.total_scored,
            returned=len(page.results)
        )
        return page

    async def _search(
        self,
        request: SearchRequest,
        scoring_config: ScoringConfig,
        strategy: ScoringStrategy,
        keywords: List[str]
    ) -> SearchPage:
        query_vector = await self._embed_query(request.query)

        pool = await self.store.search_similar(
            query_vector,
            similarity_threshold=scoring_config.similarity_threshold,
            limit=self.pool_size
        )
        logger.debug("Retrieved similarity pool", pool_size=len(pool), threshold=scoring_config.similarity_threshold)

        ranked = await self._score_pool(pool, keywords, strategy)
        ranked.sort(key=lambda r: (-r.final_score, -r.semantic_score, r.entity_id))

        return self._page(request, ranked, len(pool), strategy, keywords)

    async def _embed_query(self, query: str) -> np.ndarray:
        start_time = time.perf_counter()
        with self.tracer.trace_embedding_generation(self.provider.model_name, "query", 1):
            try:
                vector = await self.provider.generate_embedding(query)
            except EmbeddingError as e:
                logger.error("Failed to embed search query", model_name=self.provider.model_name, error=str(e))
                raise QueryEmbeddingError(f"Could not embed query: {e}") from e

        if self.metrics:
            self.metrics.record_embedding(self.provider.model_name, "query", time.perf_counter() - start_time)

        if vector.size == 0:
            raise QueryEmbeddingError("Embedding provider returned an empty query vector")
        return vector

    async def _score_pool(
        self,
        pool: List[SimilarCandidate],
        keywords: List[str],
        strategy: ScoringStrategy
    ) -> List[RankedResult]:
        semaphore = asyncio.Semaphore(self.keyword_concurrency)

        async def score_one(hit: SimilarCandidate) -> RankedResult:
            keyword_scores: Dict[str, float] = {}
            title = hit.title
            if keywords:
                async with semaphore:
                    document = await self.store.fetch_candidate_document(hit.entity_id)
                keyword_scores = self.scorer.score(keywords, document)
                if document is not None and document.title:
                    title = document.title

            final_score, explanation = strategy.score(keyword_scores, hit.similarity, len(keywords))
            return RankedResult(
                entity_id=hit.entity_id,
                semantic_score=hit.similarity,
                keyword_scores=keyword_scores,
                final_score=final_score,
                explanation=explanation,
                title=title
            )

        tasks = [asyncio.create_task(score_one(hit)) for hit in pool]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _page(
        self,
        request: SearchRequest,
        ranked: List[RankedResult],
        total_scored: int,
        strategy: ScoringStrategy,
        keywords: List[str]
    ) -> SearchPage:
        return SearchPage(
            results=ranked[request.skip:request.skip + request.page_size],
            total_scored=total_scored,
            page=request.page,
            page_size=request.page_size,
            pool_limit=self.pool_size,
            strategy=strategy.name,
            keywords=keywords
        )
