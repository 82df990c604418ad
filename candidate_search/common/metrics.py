"""Metrics collection for candidate search services.

Provides a thin convenience wrapper around ``prometheus_client`` so services
can consistently record HTTP, search, embedding and job-queue metrics.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per service (can be injected if needed)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for candidate search services.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)

    Exposes typed helpers for common events to keep label sets consistent.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.search_requests = Counter(
            'cs_search_requests_total',
            'Total hybrid search requests',
            ['strategy', 'status'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'cs_search_duration_seconds',
            'Hybrid search duration',
            ['strategy'],
            registry=self.registry
        )

        self.search_pool_size = Histogram(
            'cs_search_pool_size',
            'Number of candidates re-ranked per search request',
            buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500),
            registry=self.registry
        )

        self.embedding_requests = Counter(
            'cs_embedding_requests_total',
            'Total embedding generation calls',
            ['model_name', 'purpose'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'cs_embedding_duration_seconds',
            'Embedding generation duration',
            ['model_name', 'purpose'],
            registry=self.registry
        )

        self.job_outcomes = Counter(
            'cs_embedding_jobs_total',
            'Embedding jobs processed, partitioned by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.queue_depth = Gauge(
            'cs_embedding_queue_depth',
            'Embedding jobs waiting in the queue',
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_search(
        self,
        strategy: str,
        duration: float,
        pool_size: int,
        status: str = "ok"
    ) -> None:
        """Record one hybrid search request."""
        self.search_requests.labels(strategy=strategy, status=status).inc()
        self.search_duration.labels(strategy=strategy).observe(duration)
        self.search_pool_size.observe(pool_size)

    def record_search_failure(self, strategy: str, status: str) -> None:
        """Record a search request that did not produce a page."""
        self.search_requests.labels(strategy=strategy, status=status).inc()

    def record_embedding(
        self,
        model_name: str,
        purpose: str,
        duration: float
    ) -> None:
        """Record embedding generation metrics (``purpose``: query or job)."""
        self.embedding_requests.labels(model_name=model_name, purpose=purpose).inc()
        self.embedding_duration.labels(model_name=model_name, purpose=purpose).observe(duration)

    def record_job_outcome(self, outcome: str) -> None:
        """Record the outcome of one processed embedding job."""
        self.job_outcomes.labels(outcome=outcome).inc()

    def set_queue_depth(self, depth: int) -> None:
        """Set the number of jobs currently waiting in the queue."""
        self.queue_depth.set(depth)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process‑wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
