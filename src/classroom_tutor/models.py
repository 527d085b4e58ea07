"""
Domain model for classroom tutor conversations.

Rows persisted by the datastore (messages, conversation instances, flags,
filtered-content audit entries) and the read-only profiles the pipeline
consults (authors, rooms, tutors).
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

TEST_ROOM_PREFIX = "teacher_test_room_for_"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def is_test_room(room_id: str) -> bool:
    """Teacher test rooms are named after the teacher who owns them."""
    return room_id.startswith(TEST_ROOM_PREFIX)


def teacher_test_room_id(teacher_id: str) -> str:
    return f"{TEST_ROOM_PREFIX}{teacher_id}"


class Role(str, Enum):
    """Message author role."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"


class BotType(str, Enum):
    LEARNING = "learning"
    ASSESSMENT = "assessment"


class AssessmentType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    OPEN_ENDED = "open_ended"


class Meta:
    """Wire names of message metadata keys."""

    CHATBOT_ID = "chatbotId"
    IS_OPTIMISTIC = "isOptimistic"
    OPTIMISTIC_CONTENT = "optimisticContent"
    IS_STREAMING = "isStreaming"
    STREAM_INTERRUPTED = "streamInterrupted"
    IS_THINKING = "isThinking"
    IS_SAFETY_RESPONSE = "isSystemSafetyResponse"
    IS_SAFETY_PLACEHOLDER = "isSafetyPlaceholder"
    CONCERN_TYPE = "originalConcernType"
    CONCERN_LEVEL = "originalConcernLevel"
    TRIGGER_MESSAGE_ID = "triggerMessageId"
    COUNTRY_CODE = "countryCode"
    IS_CONTENT_FILTER = "isContentFilterMessage"
    IS_MODERATION = "isModerationMessage"
    IS_ASSESSMENT_ERROR = "isAssessmentError"
    ERROR_DETAILS = "errorDetails"
    ERROR = "error"
    ERROR_CODE = "errorCode"
    IS_WELCOME = "isWelcome"
    CITATIONS = "citations"
    CONFIDENCE = "confidence"


@dataclass
class ChatMessage:
    """A persisted (or optimistic) transcript row."""

    room_id: str
    author_id: str
    role: Role
    content: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    conversation_instance_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_safety_response(self) -> bool:
        return bool(self.metadata.get(Meta.IS_SAFETY_RESPONSE))

    @property
    def concern_type(self) -> Optional[str]:
        return self.metadata.get(Meta.CONCERN_TYPE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.id,
            "room_id": self.room_id,
            "user_id": self.author_id,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "instance_id": self.conversation_instance_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        created = data.get("created_at")
        if isinstance(created, str):
            created = datetime.fromisoformat(created.replace("Z", "+00:00"))
        return cls(
            id=data.get("message_id") or data.get("id") or new_id(),
            room_id=data["room_id"],
            author_id=data.get("user_id") or data.get("author_id") or "",
            role=Role(data["role"]),
            content=data.get("content") or "",
            created_at=created or utcnow(),
            conversation_instance_id=data.get("instance_id"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Author:
    """An authenticated student or teacher."""

    id: str
    role: UserRole = UserRole.STUDENT
    country_code: Optional[str] = None
    birthdate: Optional[date] = None
    """Unknown birthdates are treated as minors."""
    display_name: Optional[str] = None

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT

    @property
    def is_teacher(self) -> bool:
        return self.role == UserRole.TEACHER

    def age(self, today: Optional[date] = None) -> Optional[int]:
        if self.birthdate is None:
            return None
        today = today or date.today()
        years = today.year - self.birthdate.year
        if (today.month, today.day) < (self.birthdate.month, self.birthdate.day):
            years -= 1
        return years

    @property
    def is_minor(self) -> bool:
        age = self.age()
        return age is None or age < 18


@dataclass
class Room:
    id: str
    teacher_id: str
    member_ids: set[str] = field(default_factory=set)
    tutor_ids: set[str] = field(default_factory=set)
    name: str = ""


@dataclass
class TutorProfile:
    """A configured AI persona bound to one or more rooms."""

    id: str
    name: str
    system_prompt: str = ""
    model: Optional[str] = None
    """Completion model; falls back to the configured default."""
    temperature: float = 0.7
    max_tokens: int = 1000
    bot_type: BotType = BotType.LEARNING
    assessment_criteria: Optional[str] = None
    assessment_type: AssessmentType = AssessmentType.MULTIPLE_CHOICE
    assessment_question_count: int = 10
    enable_rag: bool = False
    welcome_message: Optional[str] = None

    @property
    def is_assessment(self) -> bool:
        return self.bot_type == BotType.ASSESSMENT


@dataclass
class ConversationInstance:
    """One author talking to one tutor in one room."""

    room_id: str
    author_id: str
    tutor_id: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class FlagRecord:
    """Teacher-visible safety flag raised for a message."""

    message_id: str
    author_id: str
    room_id: str
    teacher_id: str
    concern_type: str
    concern_level: int
    explanation: str = ""
    source: str = "keyword"
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    status: str = "pending"


@dataclass
class FilteredContentRecord:
    """Compliance audit row for a blocked message."""

    author_id: str
    room_id: str
    original_content: str
    filter_reason: str
    flagged_patterns: list[str] = field(default_factory=list)
    tutor_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
