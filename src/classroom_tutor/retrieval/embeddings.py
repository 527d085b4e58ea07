"""Embeddings client for OpenAI-compatible ``/embeddings`` endpoints."""

import logging
from typing import Optional

import httpx

from classroom_tutor.config import RetrievalConfig

logger = logging.getLogger(__name__)


class Embedder:
    def __init__(self, config: RetrievalConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.config.embedding_api_key:
                headers["Authorization"] = f"Bearer {self.config.embedding_api_key.get_secret_value()}"
            self._client = httpx.AsyncClient(
                base_url=self.config.embedding_base_url.rstrip("/"),
                headers=headers,
                timeout=httpx.Timeout(self.config.timeout),
            )
        return self._client

    async def embed(self, text: str) -> list[float]:
        """
        Embed one text.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx status
            ValueError: If the response has no embedding
        """
        response = await self._get_client().post(
            "/embeddings",
            json={"model": self.config.embedding_model, "input": text},
        )
        response.raise_for_status()
        data = response.json().get("data") or []
        if not data or "embedding" not in data[0]:
            raise ValueError("Embedding response contained no vector")
        vector = [float(v) for v in data[0]["embedding"]]
        logger.debug(f"Embedded query ({len(vector)} dimensions)")
        return vector

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
