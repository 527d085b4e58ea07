"""Knowledge-base retrieval for document-grounded tutors."""

from classroom_tutor.retrieval.adapter import RetrievalAdapter, format_passages
from classroom_tutor.retrieval.embeddings import Embedder
from classroom_tutor.retrieval.index import (
    HttpVectorIndex,
    InMemoryVectorIndex,
    Passage,
    VectorIndex,
    cosine_similarity,
)

__all__ = [
    "RetrievalAdapter",
    "format_passages",
    "Embedder",
    "HttpVectorIndex",
    "InMemoryVectorIndex",
    "Passage",
    "VectorIndex",
    "cosine_similarity",
]
