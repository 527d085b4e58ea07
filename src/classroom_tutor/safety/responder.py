"""
Safety-response flow.

Runs when the classifier reports a concern. The steps, in order:

1. optional LLM verification (fails safe to a level-3 real concern)
2. idempotent flag for teacher review
3. teacher alert
4. per-concern-type cooldown check
5. system message with helplines
6. broadcast on the student's safety channel

The flow never generates advice about the topic the student raised; the
student only ever sees a fixed redirect with helplines.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from classroom_tutor.config import SafetyConfig
from classroom_tutor.llm import LLMError, LLMProvider, Message, extract_json_object
from classroom_tutor.models import (
    Author,
    ChatMessage,
    FlagRecord,
    Meta,
    Role,
    Room,
    utcnow,
)
from classroom_tutor.realtime import SAFETY_EVENT, RealtimeFeed, safety_channel
from classroom_tutor.safety.audit import AuditLog
from classroom_tutor.safety.helplines import normalize_country_code
from classroom_tutor.safety.messages import safety_response_message
from classroom_tutor.safety.notifier import TeacherAlert, TeacherNotifier
from classroom_tutor.safety.types import ConcernType, SafetyFinding
from classroom_tutor.store import MessageStore

logger = logging.getLogger(__name__)

FAIL_SAFE_LEVEL = 3
FAIL_SAFE_EXPLANATION = "Automated review unavailable - flagged for manual review"

VERIFICATION_SYSTEM_PROMPT = (
    "You are a student safety assessment system. Flag messages where a student is expressing "
    "PERSONAL distress, harm, or danger about THEMSELVES. EXCEPTION: Age-inappropriate "
    "relationships are ALWAYS a concern. Academic content, commands like /assess, or "
    "third-person discussions are NOT safety concerns. Respond only with valid JSON."
)


@dataclass
class Verification:
    is_real_concern: bool
    concern_level: int
    explanation: str


@dataclass
class SafetyResponse:
    """What the safety flow did for one message."""

    concern_type: ConcernType
    concern_level: int
    verified: bool
    flag_id: Optional[str] = None
    safety_message_id: Optional[str] = None
    suppressed_by_cooldown: bool = False

    @property
    def message_sent(self) -> bool:
        return self.safety_message_id is not None


def _verification_prompt(
    text: str,
    concern_type: ConcernType,
    recent: list[ChatMessage],
    age: Optional[int],
) -> str:
    labels = {Role.USER: "Student", Role.ASSISTANT: "Assistant", Role.SYSTEM: "System"}
    parts = [
        "Analyse this student message for a genuine welfare concern.",
        f"Concern Category Identified: {concern_type.value.replace('_', ' ')}",
    ]
    if age is not None:
        parts.append(f"Student Age: Approximately {age} years old")
    if recent:
        parts.append("\nRecent Conversation History (most recent last):")
        parts.extend(f"{labels[m.role]}: {m.content}" for m in recent[-3:])
    parts.extend(
        [
            f'\nStudent\'s Message: "{text}"',
            "\nOnly treat it as a real concern when the student is talking about THEMSELVES.",
            "Academic discussions, stories and hypotheticals are not concerns.",
            "\nRespond ONLY with a JSON object with these keys:",
            '"isRealConcern": boolean,',
            '"concernLevel": number from 0 to 5,',
            '"analysisExplanation": string',
        ]
    )
    return "\n".join(parts)


class SafetyResponder:
    """
    Executes the safety-response flow for one flagged message.

    Example:
        ```python
        responder = SafetyResponder(store, feed, notifier, SafetyConfig())
        response = await responder.respond(message, finding, room, author, tutor_id="t1")
        ```
    """

    def __init__(
        self,
        store: MessageStore,
        feed: RealtimeFeed,
        notifier: TeacherNotifier,
        config: Optional[SafetyConfig] = None,
        provider: Optional[LLMProvider] = None,
        audit: Optional[AuditLog] = None,
    ):
        self.store = store
        self.feed = feed
        self.notifier = notifier
        self.config = config or SafetyConfig()
        self.provider = provider
        self.audit = audit

    async def verify(
        self,
        message: ChatMessage,
        concern_type: ConcernType,
        author: Optional[Author],
    ) -> Verification:
        if not self.config.verify_with_llm or self.provider is None:
            return Verification(True, FAIL_SAFE_LEVEL, f"Keyword match: {concern_type.display_name}")

        recent = await self.store.list_messages(
            message.room_id,
            instance_id=message.conversation_instance_id,
            before=message.created_at,
            limit=self.config.context_messages,
            newest_first=True,
        )
        recent.reverse()
        age = author.age() if author else None

        try:
            response = await self.provider.complete(
                [
                    Message.system(VERIFICATION_SYSTEM_PROMPT),
                    Message.user(_verification_prompt(message.content, concern_type, recent, age)),
                ],
                model=self.config.verification_model,
                temperature=0.2,
                max_tokens=700,
                response_format={"type": "json_object"},
            )
            data = extract_json_object(response.content)
            level = int(data.get("concernLevel") or 0)
            return Verification(
                is_real_concern=data.get("isRealConcern") is True,
                concern_level=max(0, min(5, level)),
                explanation=str(data.get("analysisExplanation") or "Flagged for review"),
            )
        except (LLMError, ValueError, TypeError) as e:
            logger.warning(f"Safety verification failed, treating as real concern: {e}")
            return Verification(True, FAIL_SAFE_LEVEL, FAIL_SAFE_EXPLANATION)

    async def _recent_safety_message(
        self,
        message: ChatMessage,
        concern_type: ConcernType,
    ) -> Optional[ChatMessage]:
        since = utcnow() - timedelta(seconds=self.config.cooldown)
        rows = await self.store.list_messages(
            message.room_id,
            instance_id=message.conversation_instance_id,
            roles=[Role.SYSTEM],
            since=since,
        )
        for row in rows:
            if row.is_safety_response and row.concern_type == concern_type.value:
                return row
        return None

    async def respond(
        self,
        message: ChatMessage,
        finding: SafetyFinding,
        room: Room,
        author: Optional[Author],
        *,
        tutor_id: Optional[str] = None,
        country_code: Optional[str] = None,
    ) -> Optional[SafetyResponse]:
        """
        Run the flow; returns None when verification rejects the concern.

        A failed safety-message insert is logged and reported as not sent.
        """
        concern_type = finding.concern_type or ConcernType.SELF_HARM
        logger.info(f"Safety flow started for message {message.id} ({concern_type.value})")

        verification = await self.verify(message, concern_type, author)
        if not verification.is_real_concern or verification.concern_level < self.config.concern_threshold:
            logger.info(
                f"Concern not confirmed for {message.id} (level {verification.concern_level}), no message sent"
            )
            return None

        response = SafetyResponse(
            concern_type=concern_type,
            concern_level=verification.concern_level,
            verified=self.config.verify_with_llm and self.provider is not None,
        )

        flag, created = await self.store.insert_flag(
            FlagRecord(
                message_id=message.id,
                author_id=message.author_id,
                room_id=room.id,
                teacher_id=room.teacher_id,
                concern_type=concern_type.value,
                concern_level=verification.concern_level,
                explanation=verification.explanation,
                source=finding.source.value,
            )
        )
        response.flag_id = flag.id
        if created:
            if self.audit is not None:
                await self.audit.record(
                    "safety_flag",
                    message_id=message.id,
                    author_id=message.author_id,
                    room_id=room.id,
                    concern_type=concern_type.value,
                    concern_level=verification.concern_level,
                )
            await self.notifier.notify(
                TeacherAlert(
                    kind="safety_concern",
                    room_id=room.id,
                    author_id=message.author_id,
                    teacher_id=room.teacher_id,
                    message_id=message.id,
                    concern_type=concern_type.value,
                    concern_level=verification.concern_level,
                    explanation=verification.explanation,
                )
            )
        else:
            logger.info(f"Flag already exists for message {message.id}")

        recent = await self._recent_safety_message(message, concern_type)
        if recent is not None:
            logger.info(f"Safety message {recent.id} sent recently for {concern_type.value}, skipping")
            response.suppressed_by_cooldown = True
            return response

        country = normalize_country_code(country_code)
        safety_message = ChatMessage(
            room_id=room.id,
            author_id=message.author_id,
            role=Role.SYSTEM,
            content=safety_response_message(concern_type, country),
            conversation_instance_id=message.conversation_instance_id,
            metadata={
                Meta.IS_SAFETY_RESPONSE: True,
                Meta.CONCERN_TYPE: concern_type.value,
                Meta.CONCERN_LEVEL: verification.concern_level,
                Meta.TRIGGER_MESSAGE_ID: message.id,
                Meta.COUNTRY_CODE: country,
                Meta.CHATBOT_ID: tutor_id,
            },
        )
        try:
            stored = await self.store.insert_message(safety_message)
        except ValueError as e:
            logger.error(f"Failed to insert safety message for {message.id}: {e}")
            return response
        response.safety_message_id = stored.id

        await self.feed.publish(
            safety_channel(message.author_id),
            SAFETY_EVENT,
            {
                "room_id": room.id,
                "message_id": stored.id,
                "user_id": message.author_id,
                "student_id": message.author_id,
                "chatbot_id": tutor_id,
            },
        )
        logger.info(f"Safety message {stored.id} sent for {message.id}")
        return response
