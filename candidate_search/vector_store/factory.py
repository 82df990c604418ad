"""Vector store factory for creating different implementations.

Centralizes creation of concrete ``CandidateVectorStore`` backends so callers
don't depend on implementation details. New stores can be added without
changing call sites.
"""

from enum import Enum
from typing import Any, Dict

import structlog

from candidate_search.common.config import BaseConfig

from .base import CandidateVectorStore
from .memory import InMemoryVectorStore
from .pgvector import PgVectorStore

logger = structlog.get_logger("vector_store.factory")


class VectorStoreType(Enum):
    """Supported vector store types."""
    PGVECTOR = "pgvector"
    MEMORY = "memory"


class VectorStoreFactory:
    """Factory for creating vector store instances."""

    @staticmethod
    def create(store_type: VectorStoreType, config: Dict[str, Any]) -> CandidateVectorStore:
        """Create a vector store instance.

        Parameters
        - store_type: A ``VectorStoreType`` enum value
        - config: Backend‑specific parameters (e.g., DSN for pgvector); every
          backend requires ``vector_dimension``
        """
        vector_dimension = config.get("vector_dimension")
        if not vector_dimension:
            raise ValueError("Vector store requires 'vector_dimension' in config")

        if store_type == VectorStoreType.PGVECTOR:
            dsn = config.get("dsn")
            if not dsn:
                raise ValueError("PgVector requires 'dsn' in config")

            return PgVectorStore(
                dsn=dsn,
                vector_dimension=vector_dimension,
                pool_size=config.get("pool_size", 10),
                max_queries=config.get("max_queries", 50000),
                command_timeout=config.get("command_timeout", 30.0),
            )

        elif store_type == VectorStoreType.MEMORY:
            return InMemoryVectorStore(vector_dimension=vector_dimension)

        else:
            raise ValueError(f"Unsupported vector store type: {store_type}")


def create_vector_store(store_type: str, config: Dict[str, Any]) -> CandidateVectorStore:
    """Convenience function to create a vector store."""
    try:
        store_type_enum = VectorStoreType(store_type)
    except ValueError:
        raise ValueError(f"Unsupported vector store type: {store_type}")
    return VectorStoreFactory.create(store_type_enum, config)


def create_vector_store_from_config(config: BaseConfig) -> CandidateVectorStore:
    """Create vector store from service configuration."""
    store = create_vector_store(
        config.cs_vector_backend,
        {
            "dsn": config.cs_db_dsn,
            "pool_size": config.cs_db_pool_size,
            "command_timeout": config.cs_db_command_timeout,
            "vector_dimension": config.cs_vector_dimension,
        }
    )
    logger.info(
        "Vector store created",
        backend=config.cs_vector_backend,
        dimension=config.cs_vector_dimension
    )
    return store
