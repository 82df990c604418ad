"""Distributed tracing configuration for candidate search services.

Wraps OpenTelemetry setup for an OTLP/HTTP collector with optional
auto‑instrumentation for HTTPX. Also provides small conveniences for spans
used by the search orchestrator and the embedding worker.

When tracing is never configured the OpenTelemetry API hands out no-op
tracers, so the span helpers are safe to call from tests.
"""

import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode
import structlog

logger = structlog.get_logger("tracing")


def configure_tracing(
    service_name: str,
    otlp_endpoint: str = "http://localhost:4318/v1/traces",
    enable_instrumentation: bool = True
) -> Optional[trace.Tracer]:
    """Configure distributed tracing for a service.

    Parameters
    - service_name: Logical service identifier used in trace resources
    - otlp_endpoint: Collector endpoint for exporting spans
    - enable_instrumentation: Toggle built‑in HTTPX instrumentation

    Returns
    - A tracer instance for ad‑hoc span creation, or ``None`` on failure
    """

    try:
        tracer_provider = TracerProvider(
            resource=Resource.create({
                "service.name": service_name,
                "service.version": "0.1.0",
                "deployment.environment": os.getenv("CS_ENV", "local")
            })
        )

        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
        tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(tracer_provider)
        tracer = trace.get_tracer(service_name)

        if enable_instrumentation:
            try:
                HTTPXClientInstrumentor().instrument()
                logger.info("Automatic instrumentation enabled")
            except Exception as e:
                # Partial failure is acceptable; log but continue.
                logger.warning("Failed to enable some instrumentation", error=str(e))

        logger.info(
            "Distributed tracing configured",
            service_name=service_name,
            otlp_endpoint=otlp_endpoint
        )

        return tracer

    except Exception as e:
        logger.error("Failed to configure tracing", error=str(e))
        return None


class TracingContext:
    """Context manager for tracing operations.

    Starts a span on entry and ensures it ends, recording success or error.
    """

    def __init__(self, tracer: trace.Tracer, operation_name: str, **attributes):
        self.tracer = tracer
        self.operation_name = operation_name
        self.attributes = attributes
        self.span: Optional[trace.Span] = None

    def __enter__(self) -> trace.Span:
        self.span = self.tracer.start_span(self.operation_name)
        for key, value in self.attributes.items():
            self.span.set_attribute(key, str(value))
        return self.span

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.span:
            if exc_type is not None:
                self.span.set_status(Status(StatusCode.ERROR, f"{exc_type.__name__}: {exc_val}"))
            else:
                self.span.set_status(Status(StatusCode.OK))
            self.span.end()
        return False


class SearchTracer:
    """Span helpers with stable names for dashboards."""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.tracer = trace.get_tracer(service_name)

    def trace_search_query(self, strategy: str, tenant_id: str, **attributes) -> TracingContext:
        """Trace one hybrid search request."""
        return TracingContext(
            self.tracer,
            "search.query",
            strategy=strategy,
            tenant_id=tenant_id,
            **attributes
        )

    def trace_embedding_generation(self, model_name: str, purpose: str, batch_size: int) -> TracingContext:
        """Trace an embedding provider call."""
        return TracingContext(
            self.tracer,
            "embedding.generation",
            model_name=model_name,
            purpose=purpose,
            batch_size=batch_size
        )

    def trace_job(self, entity_id: str, retry_count: int) -> TracingContext:
        """Trace processing of one embedding job."""
        return TracingContext(
            self.tracer,
            "embedding.job",
            entity_id=entity_id,
            retry_count=retry_count
        )


def get_search_tracer(service_name: str) -> SearchTracer:
    """Get a tracer helper for a service."""
    return SearchTracer(service_name)
