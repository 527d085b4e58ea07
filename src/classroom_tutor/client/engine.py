"""
Client reconciliation engine.

Owns one student's view of a conversation. Every source of change
(submit, fetch, realtime event, JSON outcome, stream frame) is turned into
a call to the pure reducers in ``transcript`` and the result replaces the
transcript as a whole.
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from classroom_tutor.client.activity import SessionMemoryTracker
from classroom_tutor.client.stream import (
    CONNECTION_LOST_MESSAGE,
    INTERRUPTED_SUFFIX,
    FrameCoalescer,
    SSEDecoder,
    StreamFrame,
    StreamSession,
)
from classroom_tutor.client.transcript import MergePolicy, merge, remove, replace
from classroom_tutor.config import ReconciliationConfig
from classroom_tutor.models import ChatMessage, Meta, Role, utcnow
from classroom_tutor.realtime import INSERT_EVENT, SAFETY_EVENT, RealtimeEvent

logger = logging.getLogger(__name__)

SAFETY_PLACEHOLDER_TEXT = "Processing safety check..."
ASSESSMENT_THANK_YOU = (
    "Thank you for submitting your assessment. Your responses are being evaluated and "
    "feedback will appear here shortly."
)
SEND_FAILED_MESSAGE = "Failed to send message. Please try again."


def _millis() -> int:
    return int(time.time() * 1000)


class ReconciliationEngine:
    """
    Merges optimistic, fetched and pushed rows into one transcript.

    Example:
        ```python
        engine = ReconciliationEngine("student-1", "room-1", "tutor-1")
        echo = engine.submit("What is photosynthesis?")
        session = engine.begin_stream()
        engine.feed_stream(session, 'data: {"content": "Plants"}\\n\\n')
        engine.finish_stream(session)
        ```
    """

    def __init__(
        self,
        author_id: str,
        room_id: str,
        tutor_id: str,
        config: Optional[ReconciliationConfig] = None,
        *,
        tracker: Optional[SessionMemoryTracker] = None,
        on_render: Optional[Callable[[list[ChatMessage]], None]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.author_id = author_id
        self.room_id = room_id
        self.tutor_id = tutor_id
        self.config = config or ReconciliationConfig()
        self.policy = MergePolicy.from_config(self.config)
        self.tracker = tracker
        self.on_render = on_render
        self._clock = clock
        self._transcript: list[ChatMessage] = []
        self._sessions: dict[str, StreamSession] = {}
        self._decoders: dict[str, SSEDecoder] = {}
        self._coalescer = FrameCoalescer(self._render, self.config.frame_interval)
        self.error: Optional[str] = None

    @property
    def transcript(self) -> list[ChatMessage]:
        return list(self._transcript)

    def _set(self, transcript: list[ChatMessage], *, immediate: bool = True) -> None:
        self._transcript = transcript
        if self.tracker is not None:
            self.tracker.observe(self._transcript)
        if immediate:
            self._coalescer.flush()
        else:
            self._coalescer.schedule()

    def _render(self) -> None:
        if self.on_render is not None:
            self.on_render(self.transcript)

    def _local(self, message_id: str, role: Role, content: str, **metadata: Any) -> ChatMessage:
        return ChatMessage(
            id=message_id,
            room_id=self.room_id,
            author_id=self.author_id,
            role=role,
            content=content,
            created_at=self._clock(),
            metadata={Meta.CHATBOT_ID: self.tutor_id, **metadata},
        )

    def _belongs_here(self, message: ChatMessage) -> bool:
        if message.room_id != self.room_id or message.author_id != self.author_id:
            return False
        tutor_id = message.metadata.get(Meta.CHATBOT_ID)
        return tutor_id is None or tutor_id == self.tutor_id

    def _merge(self, rows: Iterable[ChatMessage], *, initial_load: bool = False, snapshot: bool = False) -> None:
        streaming = {s.real_id for s in self._sessions.values() if s.real_id and not s.status.is_terminal}
        rows = [r for r in rows if self._belongs_here(r) and r.id not in streaming]
        self._set(
            merge(
                self._transcript,
                rows,
                self.policy,
                now=self._clock(),
                initial_load=initial_load,
                snapshot=snapshot,
            )
        )

    # -------------------------------------------------------------------------
    # Fetches and realtime
    # -------------------------------------------------------------------------

    def load(self, rows: Iterable[ChatMessage]) -> None:
        """First fetch when the chat opens; stale safety messages are hidden."""
        self._merge(rows, initial_load=True, snapshot=True)

    def apply_rows(self, rows: Iterable[ChatMessage]) -> None:
        """A later full fetch of authoritative rows."""
        self._merge(rows, snapshot=True)

    def apply_event(self, event: RealtimeEvent) -> Optional[str]:
        """
        Fold a realtime event in.

        Returns:
            The safety message id to fetch for a ``safety-message`` broadcast
        """
        if event.event == INSERT_EVENT:
            self._merge([ChatMessage.from_dict(event.payload)])
            return None
        if event.event == SAFETY_EVENT:
            payload = event.payload
            if payload.get("room_id") == self.room_id and payload.get("user_id") == self.author_id:
                return payload.get("message_id")
        return None

    def apply_safety_message(self, message: ChatMessage) -> None:
        """A safety message fetched after a broadcast; replaces any placeholder."""
        self._merge([message])

    # -------------------------------------------------------------------------
    # Submit and JSON outcomes
    # -------------------------------------------------------------------------

    def submit(self, content: str) -> ChatMessage:
        """Add the optimistic echo of a message being sent."""
        text = content.strip()
        self.error = None
        echo = self._local(
            f"local-user-{_millis()}",
            Role.USER,
            text,
            **{Meta.IS_OPTIMISTIC: True, Meta.OPTIMISTIC_CONTENT: text},
        )
        self._set(merge(self._transcript, [echo], self.policy, now=self._clock()))
        return echo

    def apply_outcome(self, payload: dict[str, Any], echo_id: Optional[str] = None) -> None:
        """Handle a JSON (non-streaming) reply to a submit."""
        kind = payload.get("type")
        if kind == "safety_intervention_triggered":
            transcript = remove(self._transcript, echo_id) if echo_id else list(self._transcript)
            placeholder = self._local(
                f"safety-placeholder-{_millis()}",
                Role.SYSTEM,
                SAFETY_PLACEHOLDER_TEXT,
                **{Meta.IS_SAFETY_PLACEHOLDER: True, Meta.IS_SAFETY_RESPONSE: True},
            )
            self._set(merge(transcript, [placeholder], self.policy, now=self._clock()))
        elif kind == "assessment_pending":
            thanks = self._local(
                f"assessment-thank-you-{_millis()}",
                Role.ASSISTANT,
                payload.get("message") or ASSESSMENT_THANK_YOU,
                isAssessmentResponse=True,
            )
            self._set(merge(self._transcript, [thanks], self.policy, now=self._clock()))
        elif kind in ("content_blocked", "moderation_blocked"):
            transcript = remove(self._transcript, echo_id) if echo_id else list(self._transcript)
            notice_id = payload.get("systemMessageId") or f"local-system-{_millis()}"
            marker = Meta.IS_CONTENT_FILTER if kind == "content_blocked" else Meta.IS_MODERATION
            notice = self._local(notice_id, Role.SYSTEM, payload.get("message") or "", **{marker: True})
            self._set(merge(transcript, [notice], self.policy, now=self._clock()))
        else:
            self.fail_submit(echo_id, payload.get("error") or payload.get("message") or SEND_FAILED_MESSAGE)

    def fail_submit(self, echo_id: Optional[str], error: str) -> None:
        """Mark the echo as failed so the student can resend it."""
        self.error = error
        if echo_id is None:
            self._set(list(self._transcript))
            return
        transcript = list(self._transcript)
        for i, message in enumerate(transcript):
            if message.id == echo_id:
                metadata = {**message.metadata, Meta.ERROR: error, Meta.IS_OPTIMISTIC: False}
                transcript[i] = ChatMessage(
                    id=message.id,
                    room_id=message.room_id,
                    author_id=message.author_id,
                    role=message.role,
                    content=message.content,
                    created_at=message.created_at,
                    metadata=metadata,
                )
        self._set(transcript)

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    def begin_stream(self, real_id: Optional[str] = None) -> StreamSession:
        session = StreamSession(temp_id=f"local-assistant-{_millis()}", real_id=real_id)
        self._sessions[session.temp_id] = session
        self._decoders[session.temp_id] = SSEDecoder()
        bubble = self._local(session.temp_id, Role.ASSISTANT, "", **{Meta.IS_STREAMING: True})
        self._set(merge(self._transcript, [bubble], self.policy, now=self._clock()))
        return session

    def _session_row(self, session: StreamSession) -> Optional[ChatMessage]:
        return next((m for m in self._transcript if m.id == session.temp_id), None)

    def _update_row(self, session: StreamSession, content: str, *, immediate: bool, **metadata: Any) -> None:
        row = self._session_row(session)
        if row is None:
            return
        updated = ChatMessage(
            id=row.id,
            room_id=row.room_id,
            author_id=row.author_id,
            role=row.role,
            content=content,
            created_at=row.created_at,
            metadata={**row.metadata, **metadata},
        )
        self._set(replace(self._transcript, updated), immediate=immediate)

    def feed_stream(self, session: StreamSession, text: str) -> list[StreamFrame]:
        """Decode raw response text and apply its frames."""
        frames = self._decoders[session.temp_id].feed(text)
        for frame in frames:
            self.apply_frame(session, frame)
        return frames

    def apply_frame(self, session: StreamSession, frame: StreamFrame) -> None:
        if frame.done:
            return
        changed = session.apply(frame)
        if frame.citations is not None:
            self._update_row(
                session,
                session.accumulated_content,
                immediate=False,
                **{Meta.CITATIONS: frame.citations, Meta.CONFIDENCE: frame.confidence},
            )
        elif changed:
            self._update_row(session, session.accumulated_content, immediate=False)

    def finish_stream(self, session: StreamSession) -> None:
        """Normal end of stream; a server error frame ends it as interrupted."""
        decoder = self._decoders.pop(session.temp_id, None)
        if decoder is not None:
            for frame in decoder.close():
                self.apply_frame(session, frame)
        if session.error:
            self.interrupt_stream(session, session.error)
            return

        self._coalescer.cancel()
        session.complete()
        if not session.has_content:
            self._set(remove(self._transcript, session.temp_id))
            self._sessions.pop(session.temp_id, None)
            return
        self._update_row(session, session.accumulated_content, immediate=True, **{Meta.IS_STREAMING: False})
        self._confirm(session)

    def interrupt_stream(self, session: StreamSession, error: Optional[str] = None) -> None:
        """The connection broke; keep partial content, marked as interrupted."""
        self._decoders.pop(session.temp_id, None)
        self._coalescer.cancel()
        session.interrupt(error)
        logger.warning(f"Stream {session.temp_id} interrupted after {len(session.accumulated_content)} chars")

        if not session.has_content:
            self.error = session.error or CONNECTION_LOST_MESSAGE
            self._set(remove(self._transcript, session.temp_id))
            self._sessions.pop(session.temp_id, None)
            return

        self._update_row(
            session,
            session.accumulated_content + INTERRUPTED_SUFFIX,
            immediate=True,
            **{Meta.IS_STREAMING: False, Meta.STREAM_INTERRUPTED: True, Meta.ERROR_DETAILS: error or "stream error"},
        )
        self._confirm(session)

    def _confirm(self, session: StreamSession) -> None:
        """Rename the local row to the server id so later fetches replace it."""
        self._sessions.pop(session.temp_id, None)
        if not session.real_id:
            return
        row = self._session_row(session)
        if row is None:
            return
        confirmed = ChatMessage(
            id=session.real_id,
            room_id=row.room_id,
            author_id=row.author_id,
            role=row.role,
            content=row.content,
            created_at=row.created_at,
            metadata=dict(row.metadata),
        )
        without_duplicate = [m for m in self._transcript if m.id != session.real_id]
        self._set(replace(without_duplicate, confirmed, session.temp_id))
