"""Retrieval adapter: query embedding plus tutor-scoped vector search."""

import logging
from typing import Optional

import httpx

from classroom_tutor.config import RetrievalConfig
from classroom_tutor.retrieval.embeddings import Embedder
from classroom_tutor.retrieval.index import HttpVectorIndex, InMemoryVectorIndex, Passage, VectorIndex

logger = logging.getLogger(__name__)


def format_passages(passages: list[Passage], max_chars: int = 500) -> str:
    """Render passages as ``From document "{source}":`` blocks."""
    blocks = [f'From document "{p.source}":\n{p.text[:max_chars]}' for p in passages if p.text]
    return "\n\n".join(blocks)


class RetrievalAdapter:
    """
    Fetches grounding passages for a tutor.

    ``retrieve`` never raises: embedding or index failures are logged and
    the turn continues without passages.
    """

    def __init__(
        self,
        config: RetrievalConfig,
        embedder: Optional[Embedder] = None,
        index: Optional[VectorIndex] = None,
    ):
        self.config = config
        self.embedder = embedder or Embedder(config)
        if index is None:
            if config.index_url:
                key = config.index_api_key.get_secret_value() if config.index_api_key else None
                index = HttpVectorIndex(config.index_url, api_key=key, timeout=config.timeout)
            else:
                index = InMemoryVectorIndex()
        self.index = index

    async def retrieve(self, query: str, tutor_id: str) -> list[Passage]:
        if not self.config.enabled or not query.strip():
            return []
        try:
            vector = await self.embedder.embed(query)
            passages = await self.index.query(vector, tutor_id, self.config.top_k)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(f"Retrieval failed for tutor {tutor_id}, continuing without passages: {e}")
            return []

        for i, passage in enumerate(passages, start=1):
            logger.debug(f"Passage #{i} from {passage.source} score={passage.score:.4f}")
        logger.info(f"Retrieved {len(passages)} passages for tutor {tutor_id}")
        return passages

    def render(self, passages: list[Passage]) -> str:
        return format_passages(passages, self.config.max_passage_chars)

    async def close(self) -> None:
        await self.embedder.close()
        close = getattr(self.index, "close", None)
        if close is not None:
            await close()
