"""Tests for completion providers."""

import json

import httpx
import pytest

from classroom_tutor.llm import (
    DummyProvider,
    DummyProviderConfig,
    LLMConfig,
    LLMResponse,
    Message,
    OpenAIProvider,
    ProviderType,
    StreamChunk,
    extract_json_object,
    get_provider,
    list_providers,
    parse_sse_line,
)
from classroom_tutor.llm.exceptions import (
    LLMAuthenticationError,
    LLMError,
    LLMModelUnavailableError,
    LLMProviderNotFoundError,
    LLMRateLimitError,
    LLMResponseError,
)


def _sse(*frames: dict) -> bytes:
    body = "".join(f"data: {json.dumps(f)}\n\n" for f in frames) + "data: [DONE]\n\n"
    return body.encode()


def _openai_provider(handler, **overrides) -> OpenAIProvider:
    config = LLMConfig(
        provider=ProviderType.OPENROUTER,
        model="openai/gpt-4.1-mini",
        base_url="https://llm.example.test/api/v1",
        api_key="sk-test",
        referer="https://classroom.example.org",
        **overrides,
    )
    client = httpx.AsyncClient(
        base_url=config.base_url,
        transport=httpx.MockTransport(handler),
    )
    return OpenAIProvider(config, client=client)


class TestLLMConfig:
    """Tests for LLMConfig."""

    def test_default_config(self):
        """Defaults target an OpenRouter-style gateway."""
        config = LLMConfig()
        assert config.provider == ProviderType.OPENROUTER
        assert config.base_url == "https://openrouter.ai/api/v1"
        assert config.temperature == 0.7
        assert config.max_tokens == 1000

    def test_base_url_trailing_slash_removed(self):
        """Trailing slash is removed from base_url."""
        config = LLMConfig(base_url="http://localhost:1234/v1/")
        assert config.base_url == "http://localhost:1234/v1"

    def test_to_generation_params(self):
        """Unset optional fields are omitted."""
        config = LLMConfig(model="m", temperature=0.2, max_tokens=None, top_p=0.9)
        params = config.to_generation_params()
        assert params == {"model": "m", "temperature": 0.2, "top_p": 0.9}

    def test_with_overrides(self):
        """Overrides build a new config and leave the original unchanged."""
        config = LLMConfig(temperature=0.5)
        new_config = config.with_overrides(temperature=0.9, max_tokens=100)
        assert config.temperature == 0.5
        assert new_config.temperature == 0.9
        assert new_config.max_tokens == 100

    def test_api_key_hidden_in_repr(self):
        """The key never appears in repr."""
        config = LLMConfig(api_key="sk-secret")
        assert "sk-secret" not in repr(config)
        assert config.get_api_key() == "sk-secret"


class TestMessage:
    """Tests for Message helpers."""

    def test_constructors(self):
        """Each helper sets its role."""
        assert Message.system("a").role.value == "system"
        assert Message.user("b").role.value == "user"
        assert Message.assistant("c").role.value == "assistant"


class TestDummyProvider:
    """Tests for DummyProvider."""

    @pytest.fixture
    def provider(self):
        """Create a dummy provider for tests."""
        config = LLMConfig(provider=ProviderType.DUMMY, model="dummy")
        dummy_config = DummyProviderConfig(
            response_text="Test response",
            stream_chunks=["Hello ", "World!"],
        )
        return DummyProvider(config, dummy_config)

    @pytest.mark.asyncio
    async def test_complete(self, provider):
        """complete() returns the configured response."""
        response = await provider.complete("Any prompt")
        assert isinstance(response, LLMResponse)
        assert response.content == "Test response"
        assert response.finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_stream(self, provider):
        """stream() yields the configured chunks, the last one final."""
        chunks = [chunk async for chunk in provider.stream("Any prompt")]
        assert [c.content for c in chunks] == ["Hello ", "World!"]
        assert chunks[-1].is_final
        assert not chunks[0].is_final

    @pytest.mark.asyncio
    async def test_call_tracking(self, provider):
        """Calls, prompts and generation overrides are recorded."""
        await provider.complete("First", temperature=0.1)
        assert provider.call_count == 1
        assert provider.last_prompt == "First"
        assert provider.last_kwargs["temperature"] == 0.1

        async for _ in provider.stream("Second"):
            pass
        assert provider.call_count == 2
        assert provider.last_prompt == "Second"

    @pytest.mark.asyncio
    async def test_should_fail_raises_before_first_chunk(self):
        """should_fail raises on the first advance with the scripted status."""
        provider = DummyProvider(
            LLMConfig(provider=ProviderType.DUMMY),
            DummyProviderConfig(should_fail=True, fail_status_code=503, error_message="down"),
        )
        with pytest.raises(LLMError) as exc_info:
            await provider.stream("x").__anext__()
        assert exc_info.value.status_code == 503
        assert "down" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_stream_fail_after_chunks(self):
        """fail_after_chunks yields that many chunks and then raises."""
        provider = DummyProvider(
            LLMConfig(provider=ProviderType.DUMMY),
            DummyProviderConfig(stream_chunks=["A", "B", "C", "D"], fail_after_chunks=2),
        )
        chunks = []
        with pytest.raises(LLMError):
            async for chunk in provider.stream("Any"):
                chunks.append(chunk.content)
        assert chunks == ["A", "B"]


class TestFactory:
    """Tests for the provider registry."""

    def test_list_providers(self):
        """Every built-in backend is listed."""
        providers = list_providers()
        for name in ("openrouter", "openai", "lmstudio", "ollama", "dummy"):
            assert name in providers

    def test_get_dummy_provider(self):
        """The dummy type builds a DummyProvider."""
        provider = get_provider(LLMConfig(provider=ProviderType.DUMMY))
        assert isinstance(provider, DummyProvider)

    def test_get_openai_compatible_provider(self):
        """OpenAI-compatible types share one provider class."""
        provider = get_provider(LLMConfig(provider=ProviderType.LMSTUDIO, model="local-model"))
        assert isinstance(provider, OpenAIProvider)
        assert provider.provider_name == "lmstudio"
        assert provider.model_name == "local-model"

    def test_unknown_provider_type(self, monkeypatch):
        """A type with no registered factory raises LLMProviderNotFoundError."""
        from classroom_tutor.llm import factory

        monkeypatch.setattr(factory, "_PROVIDER_REGISTRY", {})
        with pytest.raises(LLMProviderNotFoundError):
            get_provider(LLMConfig(provider=ProviderType.OLLAMA))


class TestPrepareMessages:
    """Tests for request message assembly."""

    def test_config_system_prompt_prepended_to_text(self):
        """A plain prompt gets the configured system prompt."""
        provider = DummyProvider(LLMConfig(provider=ProviderType.DUMMY, system_prompt="Be kind"))
        messages = provider._prepare_messages("Hi")
        assert messages == [
            {"role": "system", "content": "Be kind"},
            {"role": "user", "content": "Hi"},
        ]

    def test_existing_system_message_wins(self):
        """A message list that already has a system message is left alone."""
        provider = DummyProvider(LLMConfig(provider=ProviderType.DUMMY, system_prompt="Be kind"))
        messages = provider._prepare_messages([Message.system("Tutor rules"), Message.user("Hi")])
        assert messages[0] == {"role": "system", "content": "Tutor rules"}
        assert len(messages) == 2


class TestOpenAIProvider:
    """Tests for the OpenAI-compatible provider against a mock transport."""

    @pytest.mark.asyncio
    async def test_stream_yields_deltas_and_citations(self):
        """Deltas become chunks; gateway citations ride along."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["headers"] = request.headers
            return httpx.Response(
                200,
                content=_sse(
                    {"choices": [{"delta": {"content": "Plants "}}]},
                    {"choices": [{"delta": {"content": "use light."}, "finish_reason": "stop"}]},
                    {"citations": [{"index": 1, "title": "Chapter 3"}], "confidence": 0.82},
                ),
                headers={"content-type": "text/event-stream"},
            )

        provider = _openai_provider(handler)
        chunks = [c async for c in provider.stream([Message.user("What is photosynthesis?")], max_tokens=200)]
        await provider.close()

        assert "".join(c.content for c in chunks) == "Plants use light."
        assert chunks[1].is_final
        assert chunks[2].citations == [{"index": 1, "title": "Chapter 3"}]
        assert chunks[2].confidence == 0.82
        assert seen["body"]["stream"] is True
        assert seen["body"]["max_tokens"] == 200
        assert seen["headers"]["authorization"] == "Bearer sk-test"
        assert seen["headers"]["http-referer"] == "https://classroom.example.org"
        assert seen["headers"]["x-title"] == "Classroom Tutor"

    @pytest.mark.asyncio
    async def test_stream_skips_malformed_frames(self):
        """Unparseable frames are skipped rather than ending the stream."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = b'data: {"content": "a"}\n\ndata: {oops\n\n: keep-alive\n\ndata: {"content": "b"}\n\ndata: [DONE]\n\n'
            return httpx.Response(200, content=body)

        provider = _openai_provider(handler)
        chunks = [c.content async for c in provider.stream("x")]
        assert chunks == ["a", "b"]

    @pytest.mark.asyncio
    async def test_complete(self):
        """A JSON completion becomes an LLMResponse."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "model": "openai/gpt-4.1-mini",
                    "choices": [{"message": {"content": "Hello"}, "finish_reason": "stop"}],
                    "usage": {"total_tokens": 12},
                },
            )

        provider = _openai_provider(handler)
        response = await provider.complete("Hi")
        assert response.content == "Hello"
        assert response.total_tokens == 12

    @pytest.mark.parametrize(
        "status,error_type",
        [
            (401, LLMAuthenticationError),
            (406, LLMModelUnavailableError),
            (500, LLMResponseError),
        ],
    )
    @pytest.mark.asyncio
    async def test_error_status_mapping(self, status, error_type):
        """Upstream statuses map to LLMError subclasses carrying the status."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"error": {"message": "nope"}})

        provider = _openai_provider(handler)
        with pytest.raises(error_type) as exc_info:
            await provider.stream("x").__anext__()
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after(self):
        """429 carries the Retry-After value."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": "slow down"}, headers={"Retry-After": "7"})

        provider = _openai_provider(handler)
        with pytest.raises(LLMRateLimitError) as exc_info:
            await provider.complete("x")
        assert exc_info.value.retry_after == 7.0


class TestHelpers:
    """Tests for parsing helpers."""

    def test_parse_sse_line(self):
        """Data lines are unwrapped; comments and other fields are ignored."""
        assert parse_sse_line("data: {}") == "{}"
        assert parse_sse_line("data:{}") == "{}"
        assert parse_sse_line(": ping") is None
        assert parse_sse_line("event: x") is None
        assert parse_sse_line("") is None

    def test_extract_json_object(self):
        """The first embedded object is parsed out of surrounding prose."""
        assert extract_json_object('Sure! {"a": 1} done') == {"a": 1}
        with pytest.raises(ValueError):
            extract_json_object("no json here")

    def test_stream_chunk_metadata_flag(self):
        """has_metadata is set by citations or confidence."""
        assert not StreamChunk(content="x").has_metadata
        assert StreamChunk(content="", confidence=0.5).has_metadata
