"""Search service main application."""

import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
import structlog

from .api.routes import router as api_router
from candidate_search.common.config import SearchConfig
from candidate_search.common.logging import configure_logging
from candidate_search.common.metrics import get_metrics_collector
from candidate_search.common.tracing import configure_tracing, get_search_tracer
from candidate_search.embeddings.factory import create_embedding_provider
from candidate_search.jobs.factory import create_job_queue
from candidate_search.search.keywords import KeywordScorer
from candidate_search.search.orchestrator import HybridSearchOrchestrator
from candidate_search.search.tenant_config import (
    InMemoryScoringConfigStore,
    PgScoringConfigStore,
    TenantConfigResolver,
)
from candidate_search.vector_store.factory import create_vector_store_from_config

logger = structlog.get_logger("search_service")

SERVICE_NAME = "search-service"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    config = SearchConfig()
    configure_logging(SERVICE_NAME, config.cs_log_level, config.cs_log_format)

    if config.cs_tracing_enabled:
        tracer = configure_tracing(SERVICE_NAME, config.cs_otel_exporter)
        if tracer:
            FastAPIInstrumentor.instrument_app(app)
            logger.info("OpenTelemetry tracing enabled", exporter=config.cs_otel_exporter)
        else:
            logger.warning("Tracing initialization failed")
    else:
        logger.info("OpenTelemetry tracing disabled via configuration")

    logger.info("Starting search service")
    app.state.config = config
    app.state.metrics_collector = get_metrics_collector(SERVICE_NAME)

    app.state.vector_store = create_vector_store_from_config(config)
    await app.state.vector_store.initialize()

    app.state.embedding_provider = create_embedding_provider(config)
    app.state.job_queue = create_job_queue(config)

    if config.cs_vector_backend == "memory":
        config_store = InMemoryScoringConfigStore()
    else:
        config_store = PgScoringConfigStore(config.cs_db_dsn, command_timeout=config.cs_db_command_timeout)
    app.state.config_store = config_store
    app.state.config_resolver = TenantConfigResolver(config_store, global_tenant=config.cs_default_tenant)

    app.state.orchestrator = HybridSearchOrchestrator(
        provider=app.state.embedding_provider,
        store=app.state.vector_store,
        scorer=KeywordScorer(),
        pool_size=config.cs_search_pool_size,
        keyword_concurrency=config.cs_search_keyword_concurrency,
        request_timeout=config.cs_search_request_timeout_seconds,
        metrics=app.state.metrics_collector,
        tracer=get_search_tracer(SERVICE_NAME)
    )

    logger.info(
        "Search service started successfully",
        embedding_model=app.state.embedding_provider.model_name,
        vector_backend=config.cs_vector_backend,
        pool_size=config.cs_search_pool_size
    )

    yield

    # Shutdown
    logger.info("Shutting down search service")
    await app.state.embedding_provider.close()
    await app.state.job_queue.close()
    await app.state.config_store.close()
    await app.state.vector_store.close()
    logger.info("Search service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Candidate Search Service",
    description="Hybrid semantic and keyword candidate search",
    version="0.1.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix="/api/v1")


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time header to responses."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Collect metrics for HTTP requests."""
    start_time = time.time()

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as e:
        logger.error("Unhandled request error", path=request.url.path, error=str(e))
        status_code = 500
        response = JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(e)}
        )

    duration = time.time() - start_time

    if hasattr(app.state, 'metrics_collector'):
        app.state.metrics_collector.record_http_request(
            method=request.method,
            endpoint=request.url.path,
            status=status_code,
            duration=duration
        )

    return response


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    try:
        if hasattr(app.state, 'vector_store'):
            store_health = await app.state.vector_store.health_check()
        else:
            store_health = False

        provider_available = False
        if hasattr(app.state, 'embedding_provider'):
            provider_available = await app.state.embedding_provider.is_available()

        if store_health:
            return {
                "status": "healthy",
                "service": SERVICE_NAME,
                "embedding_provider_available": provider_available
            }
        else:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "service": SERVICE_NAME}
            )
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": SERVICE_NAME, "error": str(e)}
        )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    if hasattr(app.state, 'metrics_collector'):
        metrics_data = app.state.metrics_collector.get_metrics()
        return Response(content=metrics_data, media_type="text/plain")
    else:
        return Response(content="# No metrics available\n", media_type="text/plain")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": SERVICE_NAME,
        "version": "0.1.0",
        "status": "running",
        "endpoints": {
            "health": "/health",
            "metrics": "/metrics",
            "search": "/api/v1/search",
            "scoring_config": "/api/v1/config/scoring/{tenantId}",
            "embedding_status": "/api/v1/embeddings/status",
            "generate_missing": "/api/v1/embeddings/generate-missing",
            "enqueue_job": "/api/v1/embeddings/jobs"
        }
    }


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=SearchConfig().cs_search_port,
        reload=False,
        log_level="info"
    )
