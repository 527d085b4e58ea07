"""
Abstract completion provider.

Providers turn a list of chat messages into either a full response or an
async stream of deltas. Document-grounded gateways may also attach
citation metadata to stream chunks.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from classroom_tutor.llm.config import LLMConfig, Message


@dataclass
class LLMResponse:
    """Result of a non-streaming completion."""

    content: str
    model: str
    finish_reason: Optional[str] = None
    usage: Optional[dict[str, int]] = None
    raw_response: Optional[dict[str, Any]] = field(default=None, repr=False)

    @property
    def total_tokens(self) -> Optional[int]:
        if self.usage:
            return self.usage.get("total_tokens")
        return None


@dataclass
class StreamChunk:
    """
    One frame of a streaming completion.

    Attributes:
        content: Text delta (may be empty for metadata-only frames)
        finish_reason: Set on the last frame
        is_final: Whether the provider signalled the end of generation
        citations: Source references sent by document-grounded gateways
        confidence: Grounding confidence sent alongside citations
    """

    content: str
    finish_reason: Optional[str] = None
    is_final: bool = False
    citations: Optional[list[Any]] = None
    confidence: Optional[float] = None

    @property
    def has_metadata(self) -> bool:
        return self.citations is not None or self.confidence is not None


class LLMProvider(ABC):
    """
    Interface shared by every completion backend.

    Subclasses implement ``complete`` and ``stream``; the helpers below
    build the request messages and merge per-call generation overrides.
    """

    def __init__(self, config: LLMConfig):
        self.config = config

    @property
    def provider_name(self) -> str:
        return self.config.provider.value

    @property
    def model_name(self) -> str:
        return self.config.model

    @abstractmethod
    async def complete(
        self,
        prompt: str | list[Message],
        *,
        system_prompt: Optional[str] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a whole response.

        Args:
            prompt: User text or a prepared message list
            system_prompt: Overrides the configured system prompt
            **kwargs: Generation overrides (model, temperature, max_tokens, ...)

        Raises:
            LLMError: Any subclass describing the upstream failure
        """
        ...

    @abstractmethod
    def stream(
        self,
        prompt: str | list[Message],
        *,
        system_prompt: Optional[str] = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a response as it is generated.

        Errors that happen before the first frame are raised when the
        iterator is first advanced.
        """
        ...

    def _prepare_messages(
        self,
        prompt: str | list[Message],
        system_prompt: Optional[str] = None,
    ) -> list[dict[str, str]]:
        """Convert the prompt to request dicts, prepending a system prompt."""
        messages: list[dict[str, str]] = []

        effective_system_prompt = system_prompt or self.config.system_prompt
        has_system = not isinstance(prompt, str) and any(
            m.role.value == "system" for m in prompt
        )
        if effective_system_prompt and not has_system:
            messages.append({"role": "system", "content": effective_system_prompt})

        if isinstance(prompt, str):
            messages.append({"role": "user", "content": prompt})
        else:
            for msg in prompt:
                messages.append({"role": msg.role.value, "content": msg.content})

        return messages

    def _merge_generation_params(self, **kwargs: Any) -> dict[str, Any]:
        """Config generation params overridden by non-None call values."""
        params = self.config.to_generation_params()
        for key, value in kwargs.items():
            if value is not None:
                params[key] = value
        return params

    async def close(self) -> None:
        """Release network resources."""

    async def __aenter__(self) -> "LLMProvider":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(provider={self.provider_name}, model={self.model_name})"


def extract_json_object(text: str) -> dict[str, Any]:
    """
    Parse the first JSON object embedded in a model reply.

    Raises:
        ValueError: If no object is present or it does not parse
    """
    start = text.find("{")
    end = text.rfind("}") + 1
    if start == -1 or end == 0:
        raise ValueError("No JSON object found in response")

    data = json.loads(text[start:end])
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data
