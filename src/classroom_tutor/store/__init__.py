"""Message persistence."""

from classroom_tutor.store.base import MessageStore
from classroom_tutor.store.memory import InMemoryStore

__all__ = ["MessageStore", "InMemoryStore"]
