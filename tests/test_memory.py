"""Tests for session memory storage and summarisation."""

import json
from datetime import timedelta

import pytest

from classroom_tutor.config import MemoryConfig
from classroom_tutor.llm import DummyProvider, DummyProviderConfig, LLMConfig, ProviderType
from classroom_tutor.memory import (
    FALLBACK_SUMMARY,
    LearningProfile,
    MemoryEntry,
    MemoryService,
    MemoryStore,
    MemorySummarizer,
    render_memory_block,
)
from classroom_tutor.models import ChatMessage, Role, utcnow

SUMMARY_JSON = json.dumps(
    {
        "summary": "Worked through photosynthesis inputs and outputs.",
        "keyTopics": ["photosynthesis"],
        "learningInsights": {"understood": ["light energy"], "struggling": ["glucose"], "progress": "good"},
        "nextSteps": "Review cellular respiration",
    }
)


def _session() -> list[ChatMessage]:
    return [
        ChatMessage(room_id="r1", author_id="s1", role=Role.USER, content="What is photosynthesis?"),
        ChatMessage(room_id="r1", author_id="s1", role=Role.ASSISTANT, content="Plants turn light into sugar."),
        ChatMessage(room_id="r1", author_id="s1", role=Role.USER, content="Where does the oxygen come from?"),
        ChatMessage(room_id="r1", author_id="s1", role=Role.ASSISTANT, content="From splitting water."),
    ]


def _provider(text: str = SUMMARY_JSON, **kwargs) -> DummyProvider:
    return DummyProvider(
        LLMConfig(provider=ProviderType.DUMMY),
        DummyProviderConfig(response_text=text, **kwargs),
    )


class TestMemoryStore:
    """Tests for the file-backed store."""

    def test_save_and_load_newest_first(self, tmp_path):
        """Memories come back newest first and respect the limit."""
        store = MemoryStore(tmp_path)
        old = MemoryEntry("s1", "t1", "First session", created_at=utcnow() - timedelta(days=3))
        new = MemoryEntry("s1", "t1", "Second session")
        store.save(old)
        store.save(new)

        loaded = store.load("s1", "t1")
        assert [m.summary for m in loaded] == ["Second session", "First session"]
        assert len(store.load("s1", "t1", limit=1)) == 1
        assert store.count("s1", "t1") == 2

    def test_profile_absorbs_sessions(self, tmp_path):
        """Understood concepts rise, struggling ones fall, sessions are counted."""
        store = MemoryStore(tmp_path)
        store.save(MemoryEntry("s1", "t1", "x", understood=["fractions"], struggling=["decimals"]), user_messages=4)

        profile = store.load_profile("s1", "t1")
        assert profile.topic_levels == {"fractions": 60, "decimals": 45}
        assert profile.total_sessions == 1
        assert profile.total_messages == 4

    def test_missing_and_corrupt_files(self, tmp_path):
        """Unknown students have no memory; corrupt files read as empty."""
        store = MemoryStore(tmp_path)
        assert store.load("nobody", "t1") == []
        assert store.load_profile("nobody", "t1") is None

        path = tmp_path / "s1" / "t1.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json")
        assert store.load("s1", "t1") == []

    def test_delete(self, tmp_path):
        """delete removes the student's file for that tutor."""
        store = MemoryStore(tmp_path)
        store.save(MemoryEntry("s1", "t1", "x"))
        assert store.delete("s1", "t1")
        assert not store.delete("s1", "t1")


class TestLearningProfile:
    """Tests for topic levels."""

    def test_topic_buckets(self):
        """Levels sort topics into mastered, in progress and struggling."""
        profile = LearningProfile(topic_levels={"a": 85, "b": 50, "c": 20})
        assert profile.topics_mastered == ["a"]
        assert profile.topics_in_progress == ["b"]
        assert profile.topics_struggling == ["c"]


class TestMemoryService:
    """Tests for snapshots and the prompt block."""

    @pytest.mark.asyncio
    async def test_snapshot_and_context_block(self, tmp_path):
        """A snapshot is summarised, stored and rendered into the next prompt."""
        service = MemoryService(MemoryStore(tmp_path), MemorySummarizer(_provider()))
        entry = await service.snapshot("s1", "t1", "r1", _session(), "Biology Buddy")

        assert entry.key_topics == ["photosynthesis"]
        assert entry.struggling == ["glucose"]
        assert entry.message_count == 4

        block = service.context_block("s1", "t1")
        assert "[Student Memory Context]" in block
        assert "Worked through photosynthesis" in block
        assert "Needs help with: glucose" in block
        assert "[Student Learning Profile]" in block

    @pytest.mark.asyncio
    async def test_summary_failure_uses_fallback(self, tmp_path):
        """A failing model still produces a stored memory."""
        service = MemoryService(MemoryStore(tmp_path), MemorySummarizer(_provider(should_fail=True)))
        entry = await service.snapshot("s1", "t1", None, _session())
        assert entry.summary == FALLBACK_SUMMARY

    @pytest.mark.asyncio
    async def test_disabled(self, tmp_path):
        """Disabled memory neither stores nor renders anything."""
        service = MemoryService(
            MemoryStore(tmp_path), MemorySummarizer(_provider()), MemoryConfig(enabled=False)
        )
        assert await service.snapshot("s1", "t1", "r1", _session()) is None
        assert service.context_block("s1", "t1") == ""

    def test_empty_block(self):
        """Nothing stored renders as an empty string."""
        assert render_memory_block([], None, utcnow()) == ""
