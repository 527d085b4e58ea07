"""
File-backed session memory.

After a session goes idle the tutor writes itself a summary of what the
student worked on, and keeps a running learning profile. Both are read
back into the system prompt on the next turn.

Storage structure:
    {base_dir}/
    └── {author_id}/
        └── {tutor_id}.json    # {"memories": [...], "profile": {...}}
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from classroom_tutor.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class MemoryEntry:
    """Summary of one tutoring session."""

    author_id: str
    tutor_id: str
    summary: str

    room_id: Optional[str] = None

    key_topics: list[str] = field(default_factory=list)
    """Topics discussed."""

    understood: list[str] = field(default_factory=list)
    """Concepts the student handled well."""

    struggling: list[str] = field(default_factory=list)
    """Concepts the student found difficult."""

    progress: Optional[str] = None
    next_steps: Optional[str] = None
    message_count: int = 0
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "author_id": self.author_id,
            "tutor_id": self.tutor_id,
            "room_id": self.room_id,
            "summary": self.summary,
            "key_topics": self.key_topics,
            "understood": self.understood,
            "struggling": self.struggling,
            "progress": self.progress,
            "next_steps": self.next_steps,
            "message_count": self.message_count,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryEntry":
        return cls(
            author_id=data["author_id"],
            tutor_id=data["tutor_id"],
            summary=data.get("summary", ""),
            room_id=data.get("room_id"),
            key_topics=data.get("key_topics", []),
            understood=data.get("understood", []),
            struggling=data.get("struggling", []),
            progress=data.get("progress"),
            next_steps=data.get("next_steps"),
            message_count=data.get("message_count", 0),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else utcnow(),
        )


@dataclass
class LearningProfile:
    """Running view of a student's progress with one tutor."""

    topic_levels: dict[str, int] = field(default_factory=dict)
    """Per-topic level from 0 to 100; new topics start at 50."""

    preferred_style: Optional[str] = None
    pace: Optional[str] = None
    total_sessions: int = 0
    total_messages: int = 0
    last_session_at: Optional[datetime] = None

    MASTERED_LEVEL = 80
    STRUGGLING_LEVEL = 40

    @property
    def topics_mastered(self) -> list[str]:
        return [t for t, level in self.topic_levels.items() if level >= self.MASTERED_LEVEL]

    @property
    def topics_struggling(self) -> list[str]:
        return [t for t, level in self.topic_levels.items() if level < self.STRUGGLING_LEVEL]

    @property
    def topics_in_progress(self) -> list[str]:
        return [
            t
            for t, level in self.topic_levels.items()
            if self.STRUGGLING_LEVEL <= level < self.MASTERED_LEVEL
        ]

    def absorb(self, entry: MemoryEntry, user_messages: int) -> None:
        for topic in entry.key_topics:
            self.topic_levels.setdefault(topic, 50)
        for concept in entry.understood:
            self.topic_levels[concept] = min(100, self.topic_levels.get(concept, 50) + 10)
        for concept in entry.struggling:
            self.topic_levels[concept] = max(0, self.topic_levels.get(concept, 50) - 5)
        self.total_sessions += 1
        self.total_messages += user_messages
        self.last_session_at = entry.created_at

    def to_dict(self) -> dict:
        return {
            "topic_levels": self.topic_levels,
            "preferred_style": self.preferred_style,
            "pace": self.pace,
            "total_sessions": self.total_sessions,
            "total_messages": self.total_messages,
            "last_session_at": self.last_session_at.isoformat() if self.last_session_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearningProfile":
        last = data.get("last_session_at")
        return cls(
            topic_levels=data.get("topic_levels", {}),
            preferred_style=data.get("preferred_style"),
            pace=data.get("pace"),
            total_sessions=data.get("total_sessions", 0),
            total_messages=data.get("total_messages", 0),
            last_session_at=datetime.fromisoformat(last) if last else None,
        )


class MemoryStore:
    """
    Persistent storage for session memories.

    Usage:
        store = MemoryStore(Path("~/.classroom-tutor/memory"))
        store.save(MemoryEntry(author_id="s1", tutor_id="t1", summary="Worked on fractions."))
        recent = store.load("s1", "t1", limit=3)
    """

    def __init__(self, base_dir: Union[str, Path]) -> None:
        self.base_dir = Path(base_dir).expanduser().resolve()

    def _file(self, author_id: str, tutor_id: str) -> Path:
        def safe(value: str) -> str:
            return value.replace("/", "_").replace("\\", "_")

        return self.base_dir / safe(author_id) / f"{safe(tutor_id)}.json"

    def _read(self, path: Path) -> dict:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return data if isinstance(data, dict) else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in {path}: {e}")
            return {}

    def _write(self, path: Path, data: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def save(self, entry: MemoryEntry, user_messages: int = 0) -> LearningProfile:
        """Append a memory and fold it into the learning profile."""
        path = self._file(entry.author_id, entry.tutor_id)
        data = self._read(path)

        memories = data.get("memories", [])
        memories.append(entry.to_dict())

        profile = LearningProfile.from_dict(data.get("profile", {}))
        profile.absorb(entry, user_messages)

        try:
            self._write(path, {"memories": memories, "profile": profile.to_dict()})
        except OSError as e:
            logger.error(f"Failed to save memory to {path}: {e}")
            raise
        logger.debug(f"Saved memory for {entry.author_id}/{entry.tutor_id}")
        return profile

    def load(self, author_id: str, tutor_id: str, limit: Optional[int] = None) -> list[MemoryEntry]:
        """Memories newest first."""
        data = self._read(self._file(author_id, tutor_id))
        entries = [MemoryEntry.from_dict(d) for d in data.get("memories", [])]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit] if limit else entries

    def load_profile(self, author_id: str, tutor_id: str) -> Optional[LearningProfile]:
        data = self._read(self._file(author_id, tutor_id))
        if "profile" not in data:
            return None
        return LearningProfile.from_dict(data["profile"])

    def count(self, author_id: str, tutor_id: str) -> int:
        return len(self._read(self._file(author_id, tutor_id)).get("memories", []))

    def delete(self, author_id: str, tutor_id: str) -> bool:
        path = self._file(author_id, tutor_id)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted memories for {author_id}/{tutor_id}")
            return True
        return False
