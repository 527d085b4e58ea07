"""
Offline provider returning scripted replies.

Used by the ``chat`` demo command and throughout the test-suite to drive
the streaming adapter through success, early failure and mid-stream
failure without a network.
"""

import asyncio
from typing import Any, AsyncIterator, Optional

from classroom_tutor.llm.base import LLMProvider, LLMResponse, StreamChunk
from classroom_tutor.llm.config import DummyProviderConfig, LLMConfig, Message
from classroom_tutor.llm.exceptions import LLMError


class DummyProvider(LLMProvider):
    """
    Scripted provider.

    ``should_fail`` raises before the first chunk; ``fail_after_chunks``
    raises once that many chunks have been yielded. ``fail_status_code``
    attaches an HTTP status to the raised error so status mapping can be
    exercised.
    """

    def __init__(
        self,
        config: LLMConfig,
        dummy_config: Optional[DummyProviderConfig] = None,
    ):
        super().__init__(config)
        self.dummy_config = dummy_config or DummyProviderConfig()
        self._call_count = 0
        self._last_prompt: Optional[str | list[Message]] = None
        self._last_kwargs: dict[str, Any] = {}

    @property
    def call_count(self) -> int:
        return self._call_count

    @property
    def last_prompt(self) -> Optional[str | list[Message]]:
        return self._last_prompt

    @property
    def last_kwargs(self) -> dict[str, Any]:
        return self._last_kwargs

    def reset_tracking(self) -> None:
        self._call_count = 0
        self._last_prompt = None
        self._last_kwargs = {}

    def _record(self, prompt: str | list[Message], system_prompt: Optional[str], kwargs: dict) -> None:
        self._call_count += 1
        self._last_prompt = prompt
        self._last_kwargs = {"system_prompt": system_prompt, **kwargs}

    def _error(self, message: str) -> LLMError:
        return LLMError(
            message,
            provider=self.provider_name,
            model=self._last_kwargs.get("model") or self.model_name,
            status_code=self.dummy_config.fail_status_code,
        )

    async def complete(
        self,
        prompt: str | list[Message],
        *,
        system_prompt: Optional[str] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        self._record(prompt, system_prompt, kwargs)

        if self.dummy_config.delay_seconds > 0:
            await asyncio.sleep(self.dummy_config.delay_seconds)
        if self.dummy_config.should_fail:
            raise self._error(self.dummy_config.error_message)

        text = self.dummy_config.response_text
        prompt_tokens = self._estimate_tokens(prompt)
        return LLMResponse(
            content=text,
            model=kwargs.get("model") or self.config.model,
            finish_reason="stop",
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": len(text.split()),
                "total_tokens": prompt_tokens + len(text.split()),
            },
        )

    async def stream(
        self,
        prompt: str | list[Message],
        *,
        system_prompt: Optional[str] = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamChunk]:
        self._record(prompt, system_prompt, kwargs)

        if self.dummy_config.should_fail:
            raise self._error(self.dummy_config.error_message)

        chunks = self.dummy_config.stream_chunks
        fail_after = self.dummy_config.fail_after_chunks
        for i, text in enumerate(chunks):
            if self.dummy_config.delay_seconds > 0:
                await asyncio.sleep(self.dummy_config.delay_seconds)
            if fail_after is not None and i >= fail_after:
                raise self._error(f"Simulated failure after {i} chunks")

            is_final = i == len(chunks) - 1
            yield StreamChunk(
                content=text,
                finish_reason="stop" if is_final else None,
                is_final=is_final,
            )

    def _estimate_tokens(self, prompt: str | list[Message]) -> int:
        text = prompt if isinstance(prompt, str) else " ".join(m.content for m in prompt)
        return int(len(text.split()) / 0.75)

    def set_response(self, text: str) -> None:
        self.dummy_config.response_text = text

    def set_stream_chunks(self, chunks: list[str]) -> None:
        self.dummy_config.stream_chunks = chunks
