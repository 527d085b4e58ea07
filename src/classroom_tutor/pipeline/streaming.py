"""
Streaming completion adapter.

Opens a completion stream for a composed context and turns it into
client-facing SSE frames while persisting the assistant row:

- an empty placeholder row (``isStreaming``) is inserted before the first
  chunk is read
- incremental content writes are scheduled without awaiting them
- the final write is awaited after pending writes drain
- partial content survives upstream errors and client disconnects
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from classroom_tutor.config import StreamingConfig
from classroom_tutor.llm import LLMError, LLMProvider, StreamChunk
from classroom_tutor.models import ChatMessage, Meta, Role, TutorProfile
from classroom_tutor.pipeline.composer import ComposedContext
from classroom_tutor.pipeline.errors import map_completion_error
from classroom_tutor.store import MessageStore

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"

_TRAILING_SOURCE = re.compile(r"\s*Source:\s*\[\d+\]\s*$", re.MULTILINE)
_TRAILING_MARKER = re.compile(r"\s*\[\d+\]\s*$", re.MULTILINE)
_REPEATED_NEWLINES = re.compile(r"(\r\n|\n|\r){2,}")
_REPEATED_SPACES = re.compile(r" +")


def sse_frame(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


def clean_completion(text: str) -> str:
    """Strip trailing citation markers and collapse repeated whitespace."""
    cleaned = _TRAILING_SOURCE.sub("", text.strip()).strip()
    cleaned = _TRAILING_MARKER.sub("", cleaned).strip()
    cleaned = _REPEATED_NEWLINES.sub(r"\1", cleaned)
    return _REPEATED_SPACES.sub(" ", cleaned)


def is_slow_model(model: str, slow_models: list[str]) -> bool:
    lowered = model.lower()
    return any(fragment.lower() in lowered for fragment in slow_models)


@dataclass
class _StreamRun:
    """Mutable state of one streamed reply."""

    message: ChatMessage
    tutor_id: str
    model: str
    placeholder_id: str
    thinking_id: Optional[str] = None
    parts: list[str] = field(default_factory=list)
    flushed_chars: int = 0
    citations: Optional[list[Any]] = None
    confidence: Optional[float] = None
    pending: set["asyncio.Task[Any]"] = field(default_factory=set)

    @property
    def content(self) -> str:
        return "".join(self.parts)


class StreamingCompletion:
    """
    Streams one assistant reply.

    Example:
        ```python
        streamer = StreamingCompletion(provider, store)
        assistant_id, frames = await streamer.start(context, tutor, message, model="openai/gpt-4.1-mini")
        async for frame in frames:
            response.write(frame)
        ```
    """

    def __init__(
        self,
        provider: LLMProvider,
        store: MessageStore,
        config: Optional[StreamingConfig] = None,
    ):
        self.provider = provider
        self.store = store
        self.config = config or StreamingConfig()

    def _assistant_row(self, message: ChatMessage, tutor_id: str, content: str, **metadata: Any) -> ChatMessage:
        return ChatMessage(
            room_id=message.room_id,
            author_id=message.author_id,
            role=Role.ASSISTANT,
            content=content,
            conversation_instance_id=message.conversation_instance_id,
            metadata={Meta.CHATBOT_ID: tutor_id, **metadata},
        )

    async def start(
        self,
        context: ComposedContext,
        tutor: TutorProfile,
        message: ChatMessage,
        *,
        model: str,
    ) -> tuple[str, AsyncIterator[str]]:
        """
        Open the stream and read its first chunk.

        Returns:
            The placeholder assistant message id and the SSE frame iterator

        Raises:
            CompletionStreamError: If the stream fails before any chunk arrives
        """
        max_tokens = tutor.max_tokens
        thinking_id = None
        if is_slow_model(model, self.config.slow_models):
            max_tokens = min(max_tokens, self.config.slow_model_max_tokens)
            thinking = await self.store.insert_message(
                self._assistant_row(
                    message, tutor.id, self.config.thinking_text, **{Meta.IS_THINKING: True, "model": model}
                )
            )
            thinking_id = thinking.id
            logger.debug(f"Inserted thinking message {thinking_id} for slow model {model}")

        placeholder = await self.store.insert_message(
            self._assistant_row(message, tutor.id, "", **{Meta.IS_STREAMING: True})
        )
        run = _StreamRun(
            message=message,
            tutor_id=tutor.id,
            model=model,
            placeholder_id=placeholder.id,
            thinking_id=thinking_id,
        )
        logger.info(f"Streaming reply {placeholder.id} with {model} (max_tokens={max_tokens})")

        chunks = self.provider.stream(
            context.messages,
            model=model,
            temperature=tutor.temperature,
            max_tokens=max_tokens,
        ).__aiter__()
        try:
            first: Optional[StreamChunk] = await chunks.__anext__()
        except StopAsyncIteration:
            first = None
        except LLMError as e:
            logger.error(f"Completion request failed for {model}: {e}")
            await self._discard(run)
            raise map_completion_error(e, model) from e

        return placeholder.id, self._frames(run, chunks, first)

    async def _frames(
        self,
        run: _StreamRun,
        chunks: AsyncIterator[StreamChunk],
        chunk: Optional[StreamChunk],
    ) -> AsyncIterator[str]:
        settled = False
        try:
            while chunk is not None:
                if chunk.content:
                    if run.thinking_id:
                        await self._delete_thinking(run)
                    run.parts.append(chunk.content)
                    yield sse_frame({"content": chunk.content})
                    self._maybe_flush(run)
                if chunk.has_metadata:
                    run.citations = chunk.citations
                    run.confidence = chunk.confidence
                    yield sse_frame({"citations": chunk.citations or [], "confidence": chunk.confidence})
                try:
                    chunk = await chunks.__anext__()
                except StopAsyncIteration:
                    chunk = None
        except LLMError as e:
            settled = True
            logger.error(f"Stream broke after {len(run.content)} chars from {run.model}: {e}")
            await self._persist_interrupted(run, status_code=e.status_code)
            yield sse_frame({"error": map_completion_error(e, run.model).message})
        else:
            settled = True
            await self._persist_final(run)
        finally:
            if not settled:
                logger.warning(f"Client left stream {run.placeholder_id} after {len(run.content)} chars")
                await self._persist_interrupted(run)
        yield DONE_FRAME

    def _maybe_flush(self, run: _StreamRun) -> None:
        total = sum(len(p) for p in run.parts)
        if total - run.flushed_chars < self.config.flush_every_chars:
            return
        run.flushed_chars = total
        task = asyncio.create_task(self.store.update_message(run.placeholder_id, content=run.content))
        run.pending.add(task)

        def _done(t: "asyncio.Task[Any]") -> None:
            run.pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Incremental write for {run.placeholder_id} failed: {t.exception()}")

        task.add_done_callback(_done)

    async def _drain(self, run: _StreamRun) -> None:
        if run.pending:
            await asyncio.gather(*list(run.pending), return_exceptions=True)

    async def _delete_thinking(self, run: _StreamRun) -> None:
        if run.thinking_id is None:
            return
        thinking_id, run.thinking_id = run.thinking_id, None
        await self.store.delete_message(thinking_id)
        logger.debug(f"Deleted thinking message {thinking_id}")

    async def _discard(self, run: _StreamRun) -> None:
        await self._delete_thinking(run)
        await self.store.delete_message(run.placeholder_id)

    async def _persist_final(self, run: _StreamRun) -> None:
        await self._drain(run)
        await self._delete_thinking(run)
        content = clean_completion(run.content)

        if not content:
            logger.warning(f"Completion from {run.model} produced no content; inserting fallback reply")
            await self.store.delete_message(run.placeholder_id)
            await self.store.insert_message(
                self._assistant_row(run.message, run.tutor_id, self.config.empty_completion_text)
            )
            return

        metadata: dict[str, Any] = {Meta.IS_STREAMING: False}
        if run.citations is not None:
            metadata[Meta.CITATIONS] = run.citations
        if run.confidence is not None:
            metadata[Meta.CONFIDENCE] = run.confidence
        await self.store.update_message(run.placeholder_id, content=content, metadata=metadata)
        logger.info(f"Stored reply {run.placeholder_id} ({len(content)} chars)")

    async def _persist_interrupted(self, run: _StreamRun, status_code: Optional[int] = None) -> None:
        await self._drain(run)
        await self._delete_thinking(run)
        content = run.content
        if not content:
            await self.store.delete_message(run.placeholder_id)
            return

        metadata: dict[str, Any] = {Meta.IS_STREAMING: False, Meta.STREAM_INTERRUPTED: True}
        if status_code is not None:
            metadata[Meta.ERROR_CODE] = status_code
        await self.store.update_message(run.placeholder_id, content=content, metadata=metadata)
        logger.info(f"Stored partial reply {run.placeholder_id} ({len(content)} chars)")
