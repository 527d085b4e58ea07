"""Per-student session memory."""

from classroom_tutor.memory.store import LearningProfile, MemoryEntry, MemoryStore
from classroom_tutor.memory.summarizer import (
    FALLBACK_SUMMARY,
    MemoryService,
    MemorySummarizer,
    render_memory_block,
)

__all__ = [
    "LearningProfile",
    "MemoryEntry",
    "MemoryStore",
    "FALLBACK_SUMMARY",
    "MemoryService",
    "MemorySummarizer",
    "render_memory_block",
]
