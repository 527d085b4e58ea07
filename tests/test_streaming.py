"""Tests for the streaming completion adapter."""

import json

import pytest

from classroom_tutor.config import StreamingConfig
from classroom_tutor.llm import DummyProvider, DummyProviderConfig, LLMConfig, Message, ProviderType
from classroom_tutor.models import ChatMessage, Meta, Role
from classroom_tutor.pipeline import (
    DONE_FRAME,
    CompletionStreamError,
    ComposedContext,
    StreamingCompletion,
    clean_completion,
    sse_frame,
)
from classroom_tutor.pipeline.errors import user_safe_completion_message


def _provider(**kwargs) -> DummyProvider:
    return DummyProvider(LLMConfig(provider=ProviderType.DUMMY), DummyProviderConfig(**kwargs))


def _context() -> ComposedContext:
    return ComposedContext(
        system_prompt="Be helpful.",
        messages=[Message.system("Be helpful."), Message.user("What is photosynthesis?")],
    )


def _payloads(frames: list[str]) -> list:
    out = []
    for frame in frames:
        body = frame[len("data: "):].strip()
        out.append(body if body == "[DONE]" else json.loads(body))
    return out


async def _user_message(store, classroom) -> ChatMessage:
    instance = await store.get_or_create_instance(classroom.room.id, classroom.student.id, classroom.tutor.id)
    return await store.insert_message(
        ChatMessage(
            room_id=classroom.room.id,
            author_id=classroom.student.id,
            role=Role.USER,
            content="What is photosynthesis?",
            conversation_instance_id=instance.id,
            metadata={Meta.CHATBOT_ID: classroom.tutor.id},
        )
    )


async def _assistant_rows(store, classroom) -> list[ChatMessage]:
    return await store.list_messages(classroom.room.id, roles=[Role.ASSISTANT])


class TestCleanCompletion:
    """Tests for final-text cleanup."""

    def test_strips_trailing_citations(self):
        """Trailing Source markers and bracket numbers are removed."""
        assert clean_completion("Plants make sugar. Source: [1]") == "Plants make sugar."
        assert clean_completion("Plants make sugar. [2]") == "Plants make sugar."

    def test_collapses_whitespace(self):
        """Blank-line runs become one newline and space runs one space."""
        assert clean_completion("  One\n\n\nTwo   three  ") == "One\nTwo three"

    def test_inline_markers_kept(self):
        """Markers inside the text are left alone."""
        assert clean_completion("See [1] for more. Done") == "See [1] for more. Done"


class TestFrames:
    """Tests for SSE frame encoding."""

    def test_sse_frame(self):
        """Frames are JSON data lines terminated by a blank line."""
        assert sse_frame({"content": "hi"}) == 'data: {"content": "hi"}\n\n'
        assert DONE_FRAME == "data: [DONE]\n\n"


class TestStreamingCompletion:
    """Tests for StreamingCompletion against the dummy provider."""

    @pytest.mark.asyncio
    async def test_stream_persists_final_reply(self, store, classroom):
        """Deltas are forwarded and the cleaned reply replaces the placeholder."""
        provider = _provider(stream_chunks=["Plants ", "use  light. ", "Source: [1]"])
        streamer = StreamingCompletion(provider, store)
        message = await _user_message(store, classroom)

        assistant_id, frames = await streamer.start(_context(), classroom.tutor, message, model="openai/gpt-4.1-mini")
        collected = [frame async for frame in frames]

        assert _payloads(collected) == [
            {"content": "Plants "},
            {"content": "use  light. "},
            {"content": "Source: [1]"},
            "[DONE]",
        ]
        stored = await store.get_message(assistant_id)
        assert stored.content == "Plants use light."
        assert stored.metadata[Meta.IS_STREAMING] is False
        assert stored.metadata[Meta.CHATBOT_ID] == classroom.tutor.id
        assert stored.conversation_instance_id == message.conversation_instance_id
        assert provider.last_kwargs["max_tokens"] == classroom.tutor.max_tokens
        assert provider.last_kwargs["temperature"] == classroom.tutor.temperature

    @pytest.mark.asyncio
    async def test_placeholder_inserted_before_first_frame(self, store, classroom):
        """The streaming placeholder exists as soon as start returns."""
        streamer = StreamingCompletion(_provider(stream_chunks=["Hi"]), store)
        message = await _user_message(store, classroom)

        assistant_id, frames = await streamer.start(_context(), classroom.tutor, message, model="m")
        placeholder = await store.get_message(assistant_id)
        assert placeholder.content == ""
        assert placeholder.metadata[Meta.IS_STREAMING] is True
        await frames.aclose()

    @pytest.mark.asyncio
    async def test_early_failure_raises_and_discards(self, store, classroom):
        """A failure before the first chunk raises a mapped error and leaves no rows."""
        streamer = StreamingCompletion(_provider(should_fail=True, fail_status_code=429), store)
        message = await _user_message(store, classroom)

        with pytest.raises(CompletionStreamError) as exc_info:
            await streamer.start(_context(), classroom.tutor, message, model="m")

        assert exc_info.value.status_code == 429
        assert exc_info.value.message == user_safe_completion_message(429)
        assert await _assistant_rows(store, classroom) == []

    @pytest.mark.asyncio
    async def test_mid_stream_failure_keeps_partial(self, store, classroom):
        """An upstream error after some text keeps it and ends with an error frame."""
        provider = _provider(stream_chunks=["Plants ", "use ", "light."], fail_after_chunks=2, fail_status_code=502)
        streamer = StreamingCompletion(provider, store)
        message = await _user_message(store, classroom)

        assistant_id, frames = await streamer.start(_context(), classroom.tutor, message, model="m")
        payloads = _payloads([frame async for frame in frames])

        assert payloads[:2] == [{"content": "Plants "}, {"content": "use "}]
        assert payloads[2] == {"error": user_safe_completion_message(502)}
        assert payloads[-1] == "[DONE]"

        stored = await store.get_message(assistant_id)
        assert stored.content == "Plants use "
        assert stored.metadata[Meta.STREAM_INTERRUPTED] is True
        assert stored.metadata[Meta.ERROR_CODE] == 502

    @pytest.mark.asyncio
    async def test_client_disconnect_keeps_partial(self, store, classroom):
        """Closing the frame iterator early persists what was streamed."""
        streamer = StreamingCompletion(_provider(stream_chunks=["Plants ", "use ", "light."]), store)
        message = await _user_message(store, classroom)

        assistant_id, frames = await streamer.start(_context(), classroom.tutor, message, model="m")
        first = await frames.__anext__()
        await frames.aclose()

        assert _payloads([first]) == [{"content": "Plants "}]
        stored = await store.get_message(assistant_id)
        assert stored.content == "Plants "
        assert stored.metadata[Meta.IS_STREAMING] is False
        assert stored.metadata[Meta.STREAM_INTERRUPTED] is True

    @pytest.mark.asyncio
    async def test_empty_completion_gets_fallback(self, store, classroom):
        """A stream with no text is replaced by the fallback reply."""
        config = StreamingConfig()
        streamer = StreamingCompletion(_provider(stream_chunks=["", "  "]), store, config)
        message = await _user_message(store, classroom)

        assistant_id, frames = await streamer.start(_context(), classroom.tutor, message, model="m")
        [frame async for frame in frames]

        assert await store.get_message(assistant_id) is None
        rows = await _assistant_rows(store, classroom)
        assert [r.content for r in rows] == [config.empty_completion_text]

    @pytest.mark.asyncio
    async def test_slow_model_thinking_row(self, store, classroom):
        """Slow models get a capped token budget and a transient thinking row."""
        provider = _provider(stream_chunks=["Deep ", "answer."])
        config = StreamingConfig(slow_model_max_tokens=512)
        streamer = StreamingCompletion(provider, store, config)
        message = await _user_message(store, classroom)
        classroom.tutor.max_tokens = 8000

        assistant_id, frames = await streamer.start(_context(), classroom.tutor, message, model="deepseek/deepseek-r1")
        rows = await _assistant_rows(store, classroom)
        assert any(r.metadata.get(Meta.IS_THINKING) for r in rows)
        assert provider.last_kwargs["max_tokens"] == 512

        [frame async for frame in frames]
        rows = await _assistant_rows(store, classroom)
        assert [r.id for r in rows] == [assistant_id]
        assert rows[0].content == "Deep answer."

    @pytest.mark.asyncio
    async def test_incremental_flush(self, store, classroom):
        """Long replies are written to the row while streaming."""
        provider = _provider(stream_chunks=["abcd", "efgh", "ijkl"])
        streamer = StreamingCompletion(provider, store, StreamingConfig(flush_every_chars=4))
        message = await _user_message(store, classroom)

        assistant_id, frames = await streamer.start(_context(), classroom.tutor, message, model="m")
        await frames.__anext__()
        await frames.__anext__()
        partial = await store.get_message(assistant_id)
        assert partial.content in ("", "abcd", "abcdefgh")

        [frame async for frame in frames]
        assert (await store.get_message(assistant_id)).content == "abcdefghijkl"
