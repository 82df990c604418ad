"""Embedding provider factory.

The backend is chosen once at startup from ``cs_embedding_provider``. The
factory refuses a provider whose dimension differs from the configured vector
dimension so a model swap without a column migration fails fast.
"""

from enum import Enum

import structlog

from candidate_search.common.config import BaseConfig

from .azure_openai import AzureOpenAIEmbeddingProvider
from .base import EmbeddingProvider
from .ollama import OllamaEmbeddingProvider

logger = structlog.get_logger("embeddings.factory")


class EmbeddingProviderType(Enum):
    """Supported embedding backends."""
    OLLAMA = "ollama"
    AZURE_OPENAI = "azure_openai"
    LOCAL = "local"


class EmbeddingProviderFactory:
    """Factory for creating embedding providers."""

    @staticmethod
    def create(provider_type: EmbeddingProviderType, config: BaseConfig) -> EmbeddingProvider:
        if provider_type == EmbeddingProviderType.OLLAMA:
            provider = OllamaEmbeddingProvider(
                base_url=config.cs_ollama_url,
                model=config.cs_ollama_model,
                dimension=config.cs_ollama_dimension,
                timeout=config.cs_embedding_timeout_seconds,
                availability_timeout=config.cs_embedding_availability_timeout_seconds,
            )

        elif provider_type == EmbeddingProviderType.AZURE_OPENAI:
            provider = AzureOpenAIEmbeddingProvider(
                endpoint=config.cs_azure_openai_endpoint,
                api_key=config.cs_azure_openai_api_key,
                deployment=config.cs_azure_openai_deployment,
                api_version=config.cs_azure_openai_api_version,
                dimension=config.cs_azure_openai_dimension,
                timeout=config.cs_embedding_timeout_seconds,
                availability_timeout=config.cs_embedding_availability_timeout_seconds,
            )

        elif provider_type == EmbeddingProviderType.LOCAL:
            # Heavy optional dependency; only imported when selected.
            from .sentence_transformer import SentenceTransformerEmbeddingProvider

            provider = SentenceTransformerEmbeddingProvider(
                model_name=config.cs_local_embedding_model,
                device=config.cs_local_embedding_device,
            )

        else:
            raise ValueError(f"Unsupported embedding provider: {provider_type}")

        if provider.dimension != config.cs_vector_dimension:
            raise ValueError(
                f"Embedding provider {provider.model_name} produces {provider.dimension} "
                f"dimensions but CS_VECTOR_DIMENSION is {config.cs_vector_dimension}"
            )

        logger.info(
            "Embedding provider created",
            provider=provider_type.value,
            model_name=provider.model_name,
            dimension=provider.dimension
        )
        return provider


def create_embedding_provider(config: BaseConfig) -> EmbeddingProvider:
    """Create the provider named by ``cs_embedding_provider``."""
    try:
        provider_type = EmbeddingProviderType(config.cs_embedding_provider.lower())
    except ValueError:
        raise ValueError(f"Unsupported embedding provider: {config.cs_embedding_provider}")
    return EmbeddingProviderFactory.create(provider_type, config)
