"""
Context composer.

Builds the system prompt and the outgoing message list for one turn.
System prompt blocks, in order:

1. core safety and academic-integrity rules
2. under-13 rules for minor students
3. helpline guidance when a country is resolved (never in test rooms)
4. session memory
5. spelling instruction
6. tutor persona (with assessment augmentation) and regional instruction
7. retrieved passages with the grounding instruction

Models listed in ``context.short_prompt_models`` get a compact variant.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from classroom_tutor.config import ContextConfig
from classroom_tutor.llm import Message, MessageRole
from classroom_tutor.memory import MemoryService
from classroom_tutor.models import Author, ChatMessage, Meta, Role, Room, TutorProfile, is_test_room
from classroom_tutor.pipeline import prompts
from classroom_tutor.retrieval import Passage, RetrievalAdapter, format_passages
from classroom_tutor.safety.helplines import DEFAULT_COUNTRY, normalize_country_code
from classroom_tutor.store import MessageStore

logger = logging.getLogger(__name__)


@dataclass
class ComposedContext:
    """Everything sent to the completion service for one turn."""

    system_prompt: str
    messages: list[Message]
    history: list[ChatMessage] = field(default_factory=list)
    passages: list[Passage] = field(default_factory=list)
    memory_block: str = ""
    country_code: str = DEFAULT_COUNTRY
    short_prompt: bool = False


def resolve_country_code(
    requested: Optional[str],
    author: Optional[Author],
    room_owner: Optional[Author],
) -> str:
    """Request value, then the author's profile, then the room owner's."""
    for candidate in (
        requested,
        author.country_code if author else None,
        room_owner.country_code if room_owner else None,
    ):
        if candidate and candidate.strip():
            return normalize_country_code(candidate)
    return DEFAULT_COUNTRY


def uses_short_prompt(model: str, short_prompt_models: list[str]) -> bool:
    lowered = model.lower()
    return any(fragment.lower() in lowered for fragment in short_prompt_models)


def build_system_prompt(
    tutor: TutorProfile,
    *,
    country_code: str,
    minor_student: bool = False,
    include_helplines: bool = True,
    memory_block: str = "",
    passages_text: str = "",
    short: bool = False,
) -> str:
    persona = prompts.persona_prompt(tutor)
    regional = prompts.regional_instruction(country_code)
    spelling = prompts.spelling_instruction(country_code)

    if short:
        prompt = f"{prompts.SHORT_SAFETY_RULES}{spelling}\n\n{persona}{regional}"
        if passages_text:
            prompt += f"\n\nContext: {passages_text}"
        return prompt

    prompt = prompts.CORE_SAFETY_INSTRUCTIONS
    if minor_student:
        prompt += prompts.UNDER_13_INSTRUCTIONS
    if include_helplines and country_code != DEFAULT_COUNTRY:
        prompt += "\n\n" + prompts.HELPLINE_GUIDANCE.format(country_code=country_code)
    if memory_block:
        prompt += f"\n\n{memory_block}"
    prompt += f"{spelling}\n\nTeacher's Prompt:\n{persona}{regional}"
    if passages_text:
        prompt += f"\n\nRelevant Information:\n{passages_text}\n\n{prompts.GROUNDING_INSTRUCTION}"
    return prompt


def _is_history_row(message: ChatMessage) -> bool:
    if not message.content.strip():
        return False
    meta = message.metadata
    return not (meta.get(Meta.IS_THINKING) or meta.get(Meta.IS_STREAMING) or meta.get(Meta.IS_OPTIMISTIC))


class ContextComposer:
    """
    Assembles ``ComposedContext`` for a turn.

    Retrieval and memory are optional collaborators; their failures are
    absorbed by the adapters and the prompt is built without them.
    """

    def __init__(
        self,
        store: MessageStore,
        config: Optional[ContextConfig] = None,
        retrieval: Optional[RetrievalAdapter] = None,
        memory: Optional[MemoryService] = None,
    ):
        self.store = store
        self.config = config or ContextConfig()
        self.retrieval = retrieval
        self.memory = memory

    async def load_history(self, message: ChatMessage, tutor_id: str) -> list[ChatMessage]:
        """Prior turns of this conversation, oldest first."""
        if self.config.history_limit == 0:
            return []
        rows = await self.store.list_messages(
            message.room_id,
            instance_id=message.conversation_instance_id,
            author_id=message.author_id,
            tutor_id=tutor_id,
            roles=[Role.USER, Role.ASSISTANT],
            before=message.created_at,
            limit=self.config.history_limit + 1,
            newest_first=True,
        )
        rows = [r for r in rows if r.id != message.id and _is_history_row(r)][: self.config.history_limit]
        rows.reverse()
        return rows

    async def fetch_passages(self, query: str, tutor: TutorProfile) -> list[Passage]:
        if self.retrieval is None or not tutor.enable_rag:
            return []
        return await self.retrieval.retrieve(query, tutor.id)

    async def compose(
        self,
        message: ChatMessage,
        tutor: TutorProfile,
        author: Author,
        room: Room,
        *,
        model: str,
        country_code: str,
        passages: Optional[list[Passage]] = None,
    ) -> ComposedContext:
        history = await self.load_history(message, tutor.id)
        if passages is None:
            passages = await self.fetch_passages(message.content, tutor)

        memory_block = ""
        if self.memory is not None and author.is_student:
            memory_block = await asyncio.to_thread(self.memory.context_block, author.id, tutor.id)

        max_chars = self.retrieval.config.max_passage_chars if self.retrieval else 500
        short = uses_short_prompt(model, self.config.short_prompt_models)
        system_prompt = build_system_prompt(
            tutor,
            country_code=country_code,
            minor_student=author.is_student and author.is_minor,
            include_helplines=not is_test_room(room.id),
            memory_block=memory_block,
            passages_text=format_passages(passages, max_chars),
            short=short,
        )

        messages = [Message.system(system_prompt)]
        messages.extend(Message(role=MessageRole(m.role.value), content=m.content) for m in history)
        messages.append(Message.user(message.content.strip()))

        logger.info(
            f"Composed context: {len(system_prompt)} chars, {len(history)} history, "
            f"{len(passages)} passages, memory={'yes' if memory_block else 'no'}, short={short}"
        )
        return ComposedContext(
            system_prompt=system_prompt,
            messages=messages,
            history=history,
            passages=passages,
            memory_block=memory_block,
            country_code=country_code,
            short_prompt=short,
        )
