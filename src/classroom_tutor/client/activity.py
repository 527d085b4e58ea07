"""
Inactivity-driven session memory snapshots.

The tracker watches the transcript, keeps a rolling list of the session's
conversation turns and hands them to a snapshot callback once the student
has been idle for ``inactivity_timeout``. Only new user turns reset the
timer. At most one snapshot is taken per idle period; the next user turn
re-arms it.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Sequence

from classroom_tutor.config import ReconciliationConfig
from classroom_tutor.models import ChatMessage, Meta, Role

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[ChatMessage]], Awaitable[Any]]


def session_turns(transcript: Sequence[ChatMessage]) -> list[ChatMessage]:
    """Confirmed user and assistant turns, without duplicates or welcome rows."""
    seen: set[tuple[str, str, str]] = set()
    turns = []
    for message in transcript:
        if message.role not in (Role.USER, Role.ASSISTANT):
            continue
        meta = message.metadata
        if meta.get(Meta.IS_OPTIMISTIC) or meta.get(Meta.IS_WELCOME) or meta.get(Meta.IS_STREAMING):
            continue
        key = (message.role.value, message.content[:50], message.created_at.isoformat())
        if key in seen:
            continue
        seen.add(key)
        turns.append(message)
    return turns


class SessionMemoryTracker:
    """
    Per-session snapshot state.

    Example:
        ```python
        tracker = SessionMemoryTracker(save_memory, ReconciliationConfig())
        tracker.observe(engine.transcript)
        ...
        await tracker.close()
        ```
    """

    def __init__(
        self,
        snapshot: SnapshotCallback,
        config: Optional[ReconciliationConfig] = None,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._snapshot = snapshot
        self.config = config or ReconciliationConfig()
        self.enabled = enabled
        self._clock = clock
        self.session_messages: list[ChatMessage] = []
        self.saved = False
        self.snapshot_count = 0
        self._seen_user_ids: set[str] = set()
        self._last_user_activity = clock()
        self._timer: Optional[asyncio.Task[None]] = None
        self._saving = False

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def observe(self, transcript: Sequence[ChatMessage]) -> None:
        self.session_messages = session_turns(transcript)
        user_ids = {m.id for m in self.session_messages if m.role == Role.USER}
        new_ids = user_ids - self._seen_user_ids
        self._seen_user_ids |= user_ids
        if new_ids:
            self._last_user_activity = self._clock()
            if self.saved:
                logger.debug("New user activity after snapshot; re-arming")
                self.saved = False
            self._reset_timer()

    def _reset_timer(self) -> None:
        self._cancel_timer()
        if not self.enabled or self.saved:
            return
        try:
            self._timer = asyncio.get_running_loop().create_task(self._idle_then_save())
        except RuntimeError:
            logger.debug("No running event loop; inactivity timer not armed")

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _idle_then_save(self) -> None:
        await asyncio.sleep(self.config.inactivity_timeout)
        logger.info(f"{self.config.inactivity_timeout:g}s of inactivity; saving session memory")
        await self.save()

    async def save(self) -> bool:
        """Snapshot once; returns True when a snapshot was taken."""
        if not self.enabled or self.saved or self._saving:
            return False
        if len(self.session_messages) < self.config.min_session_messages:
            logger.debug(f"Session too short for memory ({len(self.session_messages)} messages)")
            return False

        self._saving = True
        try:
            await self._snapshot(list(self.session_messages))
        except Exception as e:
            logger.error(f"Session memory snapshot failed: {e}")
            return False
        finally:
            self._saving = False
        self.saved = True
        self.snapshot_count += 1
        return True

    async def close(self) -> bool:
        """Session ends; snapshot unless the student was active very recently."""
        if self._timer is not None and self._timer is not asyncio.current_task():
            self._cancel_timer()
        idle = self._clock() - self._last_user_activity
        if idle <= self.config.unmount_grace:
            logger.debug(f"Skipping snapshot on close; last user turn {idle:.0f}s ago")
            return False
        return await self.save()
