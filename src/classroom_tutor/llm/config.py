"""
Completion model configuration.

Pydantic models describing which OpenAI-compatible endpoint a tutor talks to
and how generation is parameterised.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator


class ProviderType(str, Enum):
    """Supported completion backends."""

    OPENROUTER = "openrouter"
    OPENAI = "openai"
    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"
    DUMMY = "dummy"


class MessageRole(str, Enum):
    """Roles understood by chat-completion endpoints."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """A single chat-completion message."""

    role: MessageRole
    content: str

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content)


class LLMConfig(BaseModel):
    """
    Connection and generation settings for the completion service.

    The defaults target an OpenRouter-style gateway, which expects the
    ``HTTP-Referer`` and ``X-Title`` headers in addition to the bearer key.

    Example:
        ```python
        config = LLMConfig(
            model="openai/gpt-4.1-mini",
            api_key="sk-or-...",
            referer="https://classroom.example.org",
        )
        ```
    """

    provider: ProviderType = Field(
        default=ProviderType.OPENROUTER,
        description="Completion backend type",
    )
    model: str = Field(
        default="openai/gpt-4.1-mini",
        description="Default model when a tutor does not name one",
    )
    base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL of the OpenAI-compatible API",
    )
    api_key: Optional[SecretStr] = Field(
        default=None,
        description="Bearer key for the completion service",
    )
    referer: Optional[str] = Field(
        default=None,
        description="Value sent as HTTP-Referer (site URL)",
    )
    app_title: str = Field(
        default="Classroom Tutor",
        description="Value sent as X-Title",
    )

    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )
    max_tokens: Optional[int] = Field(
        default=1000,
        gt=0,
        description="Maximum tokens to generate (None = model default)",
    )
    top_p: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Nucleus sampling parameter",
    )
    stop_sequences: Optional[list[str]] = Field(
        default=None,
        description="Stop sequences to end generation",
    )

    timeout: float = Field(
        default=120.0,
        gt=0,
        description="Request timeout in seconds",
    )
    system_prompt: Optional[str] = Field(
        default=None,
        description="Fallback system prompt when a request carries none",
    )
    extra_options: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional provider-specific request fields",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Strip the trailing slash so paths can be appended."""
        return v.rstrip("/")

    def get_api_key(self) -> Optional[str]:
        """Return the API key as a plain string."""
        if self.api_key:
            return self.api_key.get_secret_value()
        return None

    def to_generation_params(self) -> dict[str, Any]:
        """Request-body generation fields, omitting unset values."""
        params: dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
        }
        if self.max_tokens is not None:
            params["max_tokens"] = self.max_tokens
        if self.top_p is not None:
            params["top_p"] = self.top_p
        if self.stop_sequences is not None:
            params["stop"] = self.stop_sequences
        params.update(self.extra_options)
        return params

    def with_overrides(self, **kwargs: Any) -> "LLMConfig":
        """Copy of this config with the given fields replaced."""
        data = self.model_dump()
        data.update(kwargs)
        return LLMConfig.model_validate(data)

    def __repr__(self) -> str:
        key = "'***'" if self.api_key else "None"
        return f"LLMConfig(provider={self.provider.value!r}, model={self.model!r}, api_key={key})"


class DummyProviderConfig(BaseModel):
    """Scripted behaviour for the offline dummy provider."""

    response_text: str = Field(
        default="This is a dummy tutor reply.",
        description="Text returned by complete()",
    )
    stream_chunks: list[str] = Field(
        default_factory=lambda: ["Let's ", "work ", "through ", "it ", "together."],
        description="Chunks yielded by stream()",
    )
    delay_seconds: float = Field(
        default=0.0,
        ge=0.0,
        description="Artificial delay before each chunk",
    )
    fail_after_chunks: Optional[int] = Field(
        default=None,
        description="Raise after this many chunks have been yielded",
    )
    should_fail: bool = Field(
        default=False,
        description="Raise on every call before producing output",
    )
    fail_status_code: Optional[int] = Field(
        default=None,
        description="HTTP status attached to simulated failures",
    )
    error_message: str = Field(
        default="Simulated dummy provider error",
        description="Message of simulated failures",
    )
