"""
Outcome types of the message pipeline.

Each gate stage yields exactly one of ``Passed``, ``Skipped``, ``Blocked``
or ``Concern``; a whole turn ends in one of the ``*Result`` types.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional, Union

from classroom_tutor.safety.responder import SafetyResponse
from classroom_tutor.safety.types import ConcernType

SAFETY_TRIGGERED_MESSAGE = "Safety intervention triggered. A safety message will be displayed."
ASSESSMENT_PENDING_MESSAGE = (
    "Your responses are being submitted for assessment. Feedback will appear here shortly."
)


class Stage(str, Enum):
    SAFETY = "safety"
    CONTENT_FILTER = "content_filter"
    MODERATION = "moderation"


class BlockKind(str, Enum):
    CONTENT = "content_blocked"
    MODERATION = "moderation_blocked"


@dataclass(frozen=True)
class Passed:
    stage: Stage
    note: Optional[str] = None


@dataclass(frozen=True)
class Skipped:
    stage: Stage
    reason: str


@dataclass(frozen=True)
class Blocked:
    stage: Stage
    kind: BlockKind
    reason: str
    flagged_patterns: tuple[str, ...] = ()


@dataclass(frozen=True)
class Concern:
    stage: Stage
    concern_type: ConcernType


StageOutcome = Union[Passed, Skipped, Blocked, Concern]


def stage_outcome(trace: list[StageOutcome], stage: Stage) -> Optional[StageOutcome]:
    for outcome in trace:
        if outcome.stage == stage:
            return outcome
    return None


@dataclass
class SafetyInterventionResult:
    message_id: str
    room_id: str
    user_id: str
    country_code: str
    safety: Optional[SafetyResponse] = None
    trace: list[StageOutcome] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "safety_intervention_triggered",
            "message": SAFETY_TRIGGERED_MESSAGE,
            "country_code": self.country_code,
            "message_id": self.message_id,
            "room_id": self.room_id,
            "user_id": self.user_id,
        }


@dataclass
class BlockedResult:
    kind: BlockKind
    reason: str
    message: str
    """Kind redirect shown to the student."""

    system_message_id: Optional[str] = None
    trace: list[StageOutcome] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": "Message blocked",
            "type": self.kind.value,
            "message": self.message,
            "reason": self.reason,
            "systemMessageId": self.system_message_id,
        }


@dataclass
class AssessmentPendingResult:
    message_id: str
    task: Optional["asyncio.Task[bool]"] = field(default=None, repr=False)
    trace: list[StageOutcome] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {"type": "assessment_pending", "message": ASSESSMENT_PENDING_MESSAGE}


@dataclass
class StreamingResult:
    """A streamed assistant reply; ``frames`` yields SSE-encoded strings."""

    message_id: str
    assistant_message_id: str
    frames: AsyncIterator[str] = field(repr=False)
    trace: list[StageOutcome] = field(default_factory=list)


TurnOutcome = Union[SafetyInterventionResult, BlockedResult, AssessmentPendingResult, StreamingResult]
