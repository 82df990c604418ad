"""Tests for embedding providers."""

import json

import httpx
import numpy as np
import pytest

from candidate_search.common.config import BaseConfig
from candidate_search.embeddings.azure_openai import AzureOpenAIEmbeddingProvider
from candidate_search.embeddings.base import (
    EmbeddingDimensionError,
    EmbeddingRequestError,
    EmptyEmbeddingError,
    ProviderUnavailableError,
)
from candidate_search.embeddings.factory import create_embedding_provider
from candidate_search.embeddings.ollama import OllamaEmbeddingProvider


def ollama_with(handler, dimension=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OllamaEmbeddingProvider(base_url="http://ollama:11434/", dimension=dimension, client=client)


@pytest.mark.asyncio
async def test_ollama_generate_embedding():
    requests = []

    def handler(request):
        requests.append(request)
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "embeddings": [[0.1, 0.2, 0.3] for _ in body["input"]],
            "prompt_eval_count": 4
        })

    provider = ollama_with(handler)
    vector = await provider.generate_embedding("python developer")

    assert vector.dtype == np.float32
    assert vector.shape == (3,)
    assert str(requests[0].url) == "http://ollama:11434/api/embed"
    assert json.loads(requests[0].content) == {"model": "nomic-embed-text", "input": ["python developer"]}
    await provider.close()


@pytest.mark.asyncio
async def test_blank_text_skips_backend():
    def handler(request):
        raise AssertionError("backend must not be called")

    provider = ollama_with(handler)
    vector = await provider.generate_embedding("   ")
    assert vector.size == 0


@pytest.mark.asyncio
async def test_batch_preserves_order_and_blank_positions():
    def handler(request):
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "embeddings": [[float(len(text)), 0.0, 1.0] for text in body["input"]]
        })

    provider = ollama_with(handler)
    vectors, tokens = await provider.generate_batch_with_usage(["ab", "", "abcd"])

    assert [v.size for v in vectors] == [3, 0, 3]
    assert vectors[0][0] == 2.0
    assert vectors[2][0] == 4.0
    assert tokens is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 503])
async def test_transient_statuses_raise_unavailable(status):
    provider = ollama_with(lambda request: httpx.Response(status, text="busy"))
    with pytest.raises(ProviderUnavailableError):
        await provider.generate_embedding("python")


@pytest.mark.asyncio
async def test_transport_error_raises_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = ollama_with(handler)
    with pytest.raises(ProviderUnavailableError):
        await provider.generate_embedding("python")


@pytest.mark.asyncio
async def test_client_error_raises_request_error():
    provider = ollama_with(lambda request: httpx.Response(400, text="model not found"))
    with pytest.raises(EmbeddingRequestError):
        await provider.generate_embedding("python")


@pytest.mark.asyncio
async def test_wrong_dimension_raises():
    provider = ollama_with(lambda request: httpx.Response(200, json={"embeddings": [[0.1, 0.2]]}))
    with pytest.raises(EmbeddingDimensionError):
        await provider.generate_embedding("python")


@pytest.mark.asyncio
async def test_empty_vector_raises():
    provider = ollama_with(lambda request: httpx.Response(200, json={"embeddings": [[]]}))
    with pytest.raises(EmptyEmbeddingError):
        await provider.generate_embedding("python")


@pytest.mark.asyncio
async def test_ollama_availability():
    def handler(request):
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": []})
        return httpx.Response(404)

    assert await ollama_with(handler).is_available() is True

    def down(request):
        raise httpx.ConnectError("down", request=request)

    assert await ollama_with(down).is_available() is False


@pytest.mark.asyncio
async def test_azure_reorders_by_index():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={
            "data": [
                {"index": 1, "embedding": [0.0, 1.0]},
                {"index": 0, "embedding": [1.0, 0.0]},
            ],
            "usage": {"total_tokens": 9}
        })

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = AzureOpenAIEmbeddingProvider(
        endpoint="https://example.openai.azure.com/",
        api_key="secret",
        deployment="embed-small",
        dimension=2,
        client=client
    )

    vectors, tokens = await provider.generate_batch_with_usage(["first", "second"])

    assert vectors[0].tolist() == [1.0, 0.0]
    assert vectors[1].tolist() == [0.0, 1.0]
    assert tokens == 9
    assert provider.model_name == "azure/embed-small"
    assert requests[0].headers["api-key"] == "secret"
    assert requests[0].url.path == "/openai/deployments/embed-small/embeddings"
    assert requests[0].url.params["api-version"] == "2024-02-01"


def test_azure_requires_credentials():
    with pytest.raises(ValueError):
        AzureOpenAIEmbeddingProvider(endpoint="", api_key="key")
    with pytest.raises(ValueError):
        AzureOpenAIEmbeddingProvider(endpoint="https://example", api_key="")


def test_factory_selects_ollama():
    config = BaseConfig(cs_embedding_provider="OLLAMA", cs_vector_dimension=768)
    provider = create_embedding_provider(config)
    assert isinstance(provider, OllamaEmbeddingProvider)
    assert provider.dimension == 768


def test_factory_rejects_dimension_mismatch():
    config = BaseConfig(cs_embedding_provider="ollama", cs_vector_dimension=384)
    with pytest.raises(ValueError):
        create_embedding_provider(config)


def test_factory_rejects_unknown_provider():
    with pytest.raises(ValueError):
        create_embedding_provider(BaseConfig(cs_embedding_provider="word2vec"))
