"""
Vector indexes scoped by tutor.

``HttpVectorIndex`` speaks the Pinecone-style REST query API;
``InMemoryVectorIndex`` ranks by cosine similarity and backs the CLI and
tests.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


@dataclass
class Passage:
    """A retrieved chunk of teacher-supplied material."""

    text: str
    score: float
    source: str = "document"
    chunk_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorIndex(Protocol):
    async def query(self, vector: list[float], tutor_id: str, top_k: int) -> list[Passage]: ...


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryVectorIndex:
    def __init__(self) -> None:
        self._vectors: list[tuple[str, list[float], Passage]] = []

    def add(
        self,
        tutor_id: str,
        vector: list[float],
        text: str,
        source: str = "document",
        chunk_id: Optional[str] = None,
    ) -> None:
        self._vectors.append((tutor_id, vector, Passage(text=text, score=0.0, source=source, chunk_id=chunk_id)))

    async def query(self, vector: list[float], tutor_id: str, top_k: int) -> list[Passage]:
        scored = []
        for owner, stored, passage in self._vectors:
            if owner != tutor_id:
                continue
            scored.append(
                Passage(
                    text=passage.text,
                    score=cosine_similarity(vector, stored),
                    source=passage.source,
                    chunk_id=passage.chunk_id,
                )
            )
        scored.sort(key=lambda p: p.score, reverse=True)
        return scored[:top_k]

    def __len__(self) -> int:
        return len(self._vectors)


class HttpVectorIndex:
    """
    REST vector index client.

    Sends ``POST {url}/query`` with a ``chatbotId`` metadata filter so a
    tutor only ever sees its own knowledge base.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Api-Key"] = self.api_key
            self._client = httpx.AsyncClient(headers=headers, timeout=httpx.Timeout(self.timeout))
        return self._client

    async def query(self, vector: list[float], tutor_id: str, top_k: int) -> list[Passage]:
        body = {
            "vector": vector,
            "topK": top_k,
            "includeMetadata": True,
            "filter": {"chatbotId": {"$eq": tutor_id}},
        }
        response = await self._get_client().post(f"{self.url}/query", json=body)
        response.raise_for_status()

        passages = []
        for match in response.json().get("matches") or []:
            metadata = match.get("metadata") or {}
            text = metadata.get("text")
            if not text:
                continue
            passages.append(
                Passage(
                    text=str(text),
                    score=float(match.get("score") or 0.0),
                    source=str(metadata.get("fileName") or "document"),
                    chunk_id=metadata.get("chunkId"),
                    metadata=metadata,
                )
            )
        return passages

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
