"""
Transcript reducer.

``merge`` folds a batch of incoming rows into a transcript and returns a
new list; the input transcript is never modified. Precedence, lowest
first:

1. optimistic local rows (echoes, placeholders)
2. authoritative rows from a fetch or the realtime feed
3. a newer authoritative row of the same kind (same id, same user
   content, or same safety concern type within the safety window)

Safety messages older than ``stale_safety_after`` are dropped on an
initial load so a returning student is not greeted by an old
intervention.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from classroom_tutor.config import ReconciliationConfig
from classroom_tutor.models import ChatMessage, Meta, Role, utcnow

LOCAL_ID_PREFIXES = ("local-", "safety-placeholder-", "assessment-thank-you-")


@dataclass(frozen=True)
class MergePolicy:
    safety_window: float = 300.0
    stale_safety_after: float = 300.0
    user_dedup_window: Optional[float] = None

    @classmethod
    def from_config(cls, config: ReconciliationConfig) -> "MergePolicy":
        return cls(
            safety_window=config.safety_window,
            stale_safety_after=config.stale_safety_after,
            user_dedup_window=config.user_dedup_window,
        )


def is_optimistic(message: ChatMessage) -> bool:
    return bool(message.metadata.get(Meta.IS_OPTIMISTIC))


def is_safety_placeholder(message: ChatMessage) -> bool:
    return bool(message.metadata.get(Meta.IS_SAFETY_PLACEHOLDER))


def is_safety_message(message: ChatMessage) -> bool:
    return message.role == Role.SYSTEM and message.is_safety_response and not is_safety_placeholder(message)


def is_local(message: ChatMessage) -> bool:
    """Rows that exist only on the client until the server confirms them."""
    return (
        is_optimistic(message)
        or is_safety_placeholder(message)
        or message.id.startswith(LOCAL_ID_PREFIXES)
    )


def _within(a: datetime, b: datetime, seconds: Optional[float]) -> bool:
    return seconds is None or abs((a - b).total_seconds()) < seconds


def _supersedes_user(existing: ChatMessage, incoming: ChatMessage, policy: MergePolicy) -> bool:
    if existing.role != Role.USER or existing.author_id != incoming.author_id:
        return False
    if is_optimistic(existing):
        echoed = existing.metadata.get(Meta.OPTIMISTIC_CONTENT, existing.content)
        return echoed == incoming.content
    return existing.content == incoming.content and _within(
        existing.created_at, incoming.created_at, policy.user_dedup_window
    )


def _same_concern(existing: ChatMessage, incoming: ChatMessage, policy: MergePolicy) -> bool:
    return (
        is_safety_message(existing)
        and existing.concern_type == incoming.concern_type
        and _within(existing.created_at, incoming.created_at, policy.safety_window)
    )


def merge(
    transcript: Sequence[ChatMessage],
    incoming: Iterable[ChatMessage],
    policy: MergePolicy = MergePolicy(),
    now: Optional[datetime] = None,
    initial_load: bool = False,
    *,
    snapshot: bool = False,
) -> list[ChatMessage]:
    """
    Merge ``incoming`` rows into ``transcript``.

    Args:
        transcript: Current ordered transcript
        incoming: Authoritative or local rows to fold in
        policy: Dedup and staleness windows
        now: Reference time for the staleness check
        initial_load: Apply the stale-safety guard
        snapshot: ``incoming`` is a complete fetch; authoritative rows
            missing from it are dropped while local rows are kept

    Returns:
        A new transcript ordered by ``created_at``
    """
    now = now or utcnow()
    batch = list(incoming)

    if snapshot:
        fetched = {m.id for m in batch}
        result = [m for m in transcript if is_local(m) or m.id in fetched]
    else:
        result = list(transcript)

    for message in batch:
        if is_safety_message(message) and initial_load:
            if (now - message.created_at) > timedelta(seconds=policy.stale_safety_after):
                continue

        index = next((i for i, m in enumerate(result) if m.id == message.id), None)
        if index is not None:
            result[index] = message
            continue

        if message.role == Role.USER and not is_optimistic(message):
            result = [m for m in result if not _supersedes_user(m, message, policy)]
        elif is_safety_message(message):
            placeholder = next((i for i, m in enumerate(result) if is_safety_placeholder(m)), None)
            if placeholder is not None:
                result[placeholder] = message
                continue
            rival = next((m for m in result if _same_concern(m, message, policy)), None)
            if rival is not None:
                if rival.created_at > message.created_at:
                    continue
                result.remove(rival)

        result.append(message)

    if any(is_safety_message(m) for m in batch) and any(is_safety_message(m) for m in result):
        result = [m for m in result if not is_safety_placeholder(m)]

    result.sort(key=lambda m: m.created_at)
    return result


def remove(transcript: Sequence[ChatMessage], message_id: str) -> list[ChatMessage]:
    return [m for m in transcript if m.id != message_id]


def replace(
    transcript: Sequence[ChatMessage],
    message: ChatMessage,
    message_id: Optional[str] = None,
) -> list[ChatMessage]:
    """Swap the row with ``message_id`` (default ``message.id``) in place."""
    target = message_id or message.id
    return [message if m.id == target else m for m in transcript]
