"""Azure OpenAI embedding provider (remote deployment)."""

from typing import List, Optional, Tuple

import httpx
import structlog

from .base import EmbeddingRequestError, HttpEmbeddingProvider

logger = structlog.get_logger("embeddings.azure_openai")


class AzureOpenAIEmbeddingProvider(HttpEmbeddingProvider):
    """Embeddings from an Azure OpenAI deployment.

    The response ``data`` items are reordered by their ``index`` so vectors
    line up with the inputs; ``usage.total_tokens`` is reported for cost
    tracking.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        deployment: str = "text-embedding-3-small",
        api_version: str = "2024-02-01",
        dimension: int = 1536,
        timeout: float = 30.0,
        availability_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        if not endpoint:
            raise ValueError("Azure OpenAI endpoint is not configured")
        if not api_key:
            raise ValueError("Azure OpenAI API key is not configured")

        super().__init__(timeout=timeout, availability_timeout=availability_timeout, client=client)
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.deployment = deployment
        self.api_version = api_version
        self._dimension = dimension

        logger.info("Azure OpenAI embedding provider initialized", deployment=deployment, dimension=dimension)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return f"azure/{self.deployment}"

    @property
    def _headers(self) -> dict:
        return {"api-key": self.api_key}

    async def _embed(self, texts: List[str]) -> Tuple[List[List[float]], Optional[int]]:
        url = (
            f"{self.endpoint}/openai/deployments/{self.deployment}/embeddings"
            f"?api-version={self.api_version}"
        )
        data = await self._post_json(url, {"model": self.deployment, "input": texts}, headers=self._headers)

        items = data.get("data")
        if not isinstance(items, list):
            raise EmbeddingRequestError("Azure OpenAI response is missing 'data'")

        try:
            ordered = sorted(items, key=lambda item: item["index"])
            embeddings = [item["embedding"] for item in ordered]
        except (KeyError, TypeError) as e:
            raise EmbeddingRequestError(f"Malformed Azure OpenAI embedding item: {e}") from e

        tokens = (data.get("usage") or {}).get("total_tokens")
        logger.info(
            "Generated embeddings",
            deployment=self.deployment,
            count=len(embeddings),
            total_tokens=tokens
        )
        return embeddings, tokens

    async def is_available(self) -> bool:
        return await self._probe(self.endpoint, headers=self._headers)
