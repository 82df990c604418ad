"""Common utilities shared across services.

Includes:
- ``config``: Pydantic-based service configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``tracing``: OpenTelemetry setup and span helpers.
- ``events``: Redis pub/sub event models, publisher, and subscriber.

Import pattern:
- from candidate_search.common.config import SearchConfig
- from candidate_search.common.logging import configure_logging
"""
