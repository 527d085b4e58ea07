"""Session summarisation and the memory block injected into prompts."""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from classroom_tutor.config import MemoryConfig
from classroom_tutor.llm import LLMError, LLMProvider, Message, extract_json_object
from classroom_tutor.memory.store import LearningProfile, MemoryEntry, MemoryStore
from classroom_tutor.models import ChatMessage, Role, utcnow

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "Student had a conversation with the chatbot."

SUMMARY_SYSTEM_PROMPT = """You are an educational assistant analyzing a student-chatbot conversation.
Create a memory summary that will help the chatbot remember this student in future conversations.

Return valid JSON matching this structure:
{
  "summary": "2-3 sentence summary of what was discussed",
  "keyTopics": ["topic1", "topic2"],
  "learningInsights": {
    "understood": ["concept1"],
    "struggling": ["concept2"],
    "progress": "overall progress"
  },
  "nextSteps": "recommendations"
}"""


class MemorySummarizer:
    def __init__(self, provider: LLMProvider, model: Optional[str] = None):
        self.provider = provider
        self.model = model

    async def summarize(
        self,
        messages: list[ChatMessage],
        tutor_name: str = "Assistant",
    ) -> dict:
        """
        Ask the model for a JSON session summary.

        Falls back to a generic summary when the model call or parsing fails.
        """
        transcript = "\n\n".join(
            f"{'Student' if m.role == Role.USER else tutor_name}: {m.content}"
            for m in messages
            if m.role != Role.SYSTEM
        )
        try:
            response = await self.provider.complete(
                [
                    Message.system(SUMMARY_SYSTEM_PROMPT),
                    Message.user(f"Analyze this conversation:\n\n{transcript}"),
                ],
                model=self.model,
                temperature=0.3,
                response_format={"type": "json_object"},
            )
            return extract_json_object(response.content)
        except (LLMError, ValueError) as e:
            logger.warning(f"Session summary failed, using fallback: {e}")
            return {
                "summary": FALLBACK_SUMMARY,
                "keyTopics": [],
                "learningInsights": {"understood": [], "struggling": [], "progress": "Unable to assess"},
                "nextSteps": "Continue with regular curriculum",
            }


def _strings(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


class MemoryService:
    """
    Snapshots idle sessions and renders stored memory for the composer.

    Example:
        ```python
        service = MemoryService(MemoryStore(tmp_dir), MemorySummarizer(provider))
        await service.snapshot("s1", "t1", "r1", session_messages)
        block = service.context_block("s1", "t1")
        ```
    """

    def __init__(
        self,
        store: MemoryStore,
        summarizer: MemorySummarizer,
        config: Optional[MemoryConfig] = None,
    ):
        self.store = store
        self.summarizer = summarizer
        self.config = config or MemoryConfig()

    async def snapshot(
        self,
        author_id: str,
        tutor_id: str,
        room_id: Optional[str],
        messages: list[ChatMessage],
        tutor_name: str = "Assistant",
    ) -> Optional[MemoryEntry]:
        if not self.config.enabled or not messages:
            return None

        result = await self.summarizer.summarize(messages, tutor_name)
        insights = result.get("learningInsights") or {}
        entry = MemoryEntry(
            author_id=author_id,
            tutor_id=tutor_id,
            room_id=room_id,
            summary=str(result.get("summary") or FALLBACK_SUMMARY),
            key_topics=_strings(result.get("keyTopics")),
            understood=_strings(insights.get("understood")),
            struggling=_strings(insights.get("struggling")),
            progress=insights.get("progress"),
            next_steps=result.get("nextSteps"),
            message_count=len(messages),
        )
        user_messages = sum(1 for m in messages if m.role == Role.USER)
        await asyncio.to_thread(self.store.save, entry, user_messages=user_messages)
        logger.info(f"Saved session memory for {author_id}/{tutor_id} ({len(messages)} messages)")
        return entry

    def context_block(self, author_id: str, tutor_id: str, now: Optional[datetime] = None) -> str:
        """Memory text for the system prompt; empty when nothing is stored."""
        if not self.config.enabled:
            return ""
        try:
            memories = self.store.load(author_id, tutor_id, limit=self.config.max_in_context)
            profile = self.store.load_profile(author_id, tutor_id)
        except OSError as e:
            logger.warning(f"Could not read memory for {author_id}/{tutor_id}: {e}")
            return ""
        return render_memory_block(memories, profile, now or utcnow())


def render_memory_block(
    memories: list[MemoryEntry],
    profile: Optional[LearningProfile],
    now: datetime,
) -> str:
    text = ""
    if memories:
        text += "\n\n[Student Memory Context]\nPrevious conversations with this student:\n"
        for i, memory in enumerate(memories, 1):
            days_ago = max(0, (now - memory.created_at).days)
            text += f"\n{i}. {days_ago} days ago:\n"
            text += f"   Summary: {memory.summary}\n"
            text += f"   Topics: {', '.join(memory.key_topics)}\n"
            if memory.understood:
                text += f"   Understood well: {', '.join(memory.understood)}\n"
            if memory.struggling:
                text += f"   Needs help with: {', '.join(memory.struggling)}\n"
            if memory.next_steps:
                text += f"   Suggested next steps: {memory.next_steps}\n"

    if profile is not None:
        text += "\n[Student Learning Profile]\n"
        if profile.topics_mastered:
            text += f"Topics mastered: {', '.join(profile.topics_mastered)}\n"
        if profile.topics_in_progress:
            text += f"Currently learning: {', '.join(profile.topics_in_progress)}\n"
        if profile.topics_struggling:
            text += f"Struggling with: {', '.join(profile.topics_struggling)}\n"
        if profile.preferred_style:
            text += f"Preferred learning style: {profile.preferred_style}\n"
        if profile.pace:
            text += f"Learning pace: {profile.pace}\n"

    if text:
        text += "\nUse this context to personalize your responses and build on previous conversations.\n"
    return text
