"""
Client side of a streamed reply.

``SSEDecoder`` turns raw response text into ``StreamFrame`` objects,
``StreamSession`` accumulates them, and ``FrameCoalescer`` batches
transcript renders to the frame interval instead of one per delta.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

INTERRUPTED_SUFFIX = "\n\n[Message interrupted due to connection error]"
CONNECTION_LOST_MESSAGE = "Connection interrupted. Please try sending your message again."


class StreamStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamStatus.COMPLETE, StreamStatus.INTERRUPTED)


@dataclass
class StreamFrame:
    """One decoded ``data:`` frame."""

    content: Optional[str] = None
    citations: Optional[list[Any]] = None
    confidence: Optional[float] = None
    error: Optional[str] = None
    done: bool = False


class SSEDecoder:
    """
    Incremental decoder for ``data: ...`` lines.

    Text may arrive split at any point; incomplete trailing lines are
    buffered until the next ``feed``.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> list[StreamFrame]:
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        frames = []
        for line in lines:
            frame = self._decode_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def close(self) -> list[StreamFrame]:
        """Decode whatever is left in the buffer."""
        rest, self._buffer = self._buffer, ""
        frame = self._decode_line(rest)
        return [frame] if frame is not None else []

    def _decode_line(self, line: str) -> Optional[StreamFrame]:
        line = line.strip()
        if not line.startswith("data:"):
            return None
        data = line[5:].strip()
        if data == "[DONE]":
            return StreamFrame(done=True)
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Skipping malformed stream frame: {data[:80]}")
            return None
        if not isinstance(parsed, dict):
            return None

        content = parsed.get("content")
        if content is None:
            choices = parsed.get("choices") or [{}]
            content = (choices[0].get("delta") or {}).get("content")
        return StreamFrame(
            content=content if isinstance(content, str) else None,
            citations=parsed.get("citations"),
            confidence=parsed.get("confidence"),
            error=parsed.get("error"),
        )


@dataclass
class StreamSession:
    """
    One in-flight reply.

    ``temp_id`` names the local transcript row; ``real_id`` is the server's
    assistant row once known. Status moves pending -> streaming ->
    complete | interrupted and never leaves a terminal state.
    """

    temp_id: str
    real_id: Optional[str] = None
    parts: list[str] = field(default_factory=list)
    status: StreamStatus = StreamStatus.PENDING
    citations: Optional[list[Any]] = None
    confidence: Optional[float] = None
    error: Optional[str] = None

    @property
    def accumulated_content(self) -> str:
        return "".join(self.parts)

    @property
    def has_content(self) -> bool:
        return any(self.parts)

    def apply(self, frame: StreamFrame) -> bool:
        """Fold one frame in; returns True when the visible content changed."""
        if self.status.is_terminal:
            return False
        if frame.error:
            self.error = frame.error
        if frame.citations is not None:
            self.citations = frame.citations
            self.confidence = frame.confidence
        if frame.content:
            self.parts.append(frame.content)
            self.status = StreamStatus.STREAMING
            return True
        return False

    def complete(self) -> None:
        if not self.status.is_terminal:
            self.status = StreamStatus.COMPLETE

    def interrupt(self, error: Optional[str] = None) -> None:
        if self.status.is_terminal:
            return
        self.status = StreamStatus.INTERRUPTED
        if error:
            self.error = error


class FrameCoalescer:
    """
    Runs ``render`` at most once per frame interval.

    Without a running event loop every ``schedule`` renders immediately.
    """

    def __init__(self, render: Callable[[], None], interval: float = 1 / 60):
        self.render = render
        self.interval = interval
        self._handle: Optional[asyncio.TimerHandle] = None
        self.render_count = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        if self._handle is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._run()
            return
        self._handle = loop.call_later(self.interval, self._run)

    def flush(self) -> None:
        """Render now, dropping any scheduled render."""
        self.cancel()
        self._run()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _run(self) -> None:
        self._handle = None
        self.render_count += 1
        self.render()
