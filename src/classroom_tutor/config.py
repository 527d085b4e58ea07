"""
Pipeline configuration.

One pydantic model per pipeline stage, composed into ``PipelineConfig``.
Durations accept seconds or short human strings ("30s", "5m", "2h").

Example YAML:
    ```yaml
    llm:
      model: openai/gpt-4.1-mini
      referer: https://classroom.example.org
    moderation:
      fail_closed: false
    reconciliation:
      safety_window: 5m
      inactivity_timeout: 10m
    ```
"""

import json
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, Optional, Union

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator

from classroom_tutor.llm.config import LLMConfig

if TYPE_CHECKING:
    from classroom_tutor.settings import ServiceSettings

_DURATION_UNITS = {
    "s": 1, "sec": 1, "second": 1, "seconds": 1,
    "m": 60, "min": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hr": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Convert a duration to seconds.

    Numbers are taken as seconds; strings may carry a unit ("250ms" is not
    supported, use "0.25s").

    Raises:
        ValueError: If the string is not a recognised duration
    """
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value}")
        return float(value)

    text = value.strip().lower()
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([a-z]*)$", text)
    if not match:
        raise ValueError(f"Invalid duration: '{value}'. Use formats like '30s', '5m', '2h'")

    amount = float(match.group(1))
    unit = match.group(2) or "s"
    if unit not in _DURATION_UNITS:
        raise ValueError(f"Unknown time unit: {unit}")
    return amount * _DURATION_UNITS[unit]


class _DurationModel(BaseModel):
    """Base for sections with duration fields listed in ``_durations``."""

    _durations: ClassVar[tuple[str, ...]] = ()

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_durations(cls, v: Any, info: Any) -> Any:
        if info.field_name in cls._durations and isinstance(v, str):
            return parse_duration(v)
        return v


class SafetyConfig(_DurationModel):
    """Safety classifier and safety-response flow."""

    _durations: ClassVar[tuple[str, ...]] = ("cooldown",)

    verify_with_llm: bool = Field(
        default=False,
        description="Ask the completion model to confirm keyword concerns",
    )
    verification_model: Optional[str] = Field(
        default=None,
        description="Model used for verification (defaults to llm.model)",
    )
    concern_threshold: int = Field(
        default=3,
        ge=0,
        le=5,
        description="Minimum verified concern level that produces a safety message",
    )
    cooldown: float = Field(
        default=1800.0,
        ge=0,
        description="Seconds during which a repeat concern of the same type is not re-messaged",
    )
    context_messages: int = Field(
        default=20,
        ge=0,
        description="Recent messages passed to verification",
    )
    alert_webhook_url: Optional[str] = Field(
        default=None,
        description="Teacher alert webhook; alerts are only logged when unset",
    )
    audit_log_path: Optional[str] = Field(
        default=None,
        description="JSONL file receiving one line per flag or block",
    )


class ContentFilterConfig(BaseModel):
    enabled: bool = Field(default=True, description="Run the content filter for students")
    strict_mode: bool = Field(
        default=True,
        description="Block personal information for adults as well as minors",
    )
    allowed_link_domains: list[str] = Field(
        default_factory=list,
        description="Hosts exempt from the external-link rule",
    )


class ModerationConfig(BaseModel):
    """External moderation model (OpenAI-compatible /moderations)."""

    enabled: bool = Field(default=True, description="Call the moderation service for students")
    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the moderation API",
    )
    api_key: Optional[SecretStr] = Field(default=None, description="Moderation API key")
    model: str = Field(default="omni-moderation-latest", description="Moderation model")
    timeout: float = Field(default=10.0, gt=0, description="Request timeout in seconds")
    fail_closed: bool = Field(
        default=False,
        description="Block messages when the service is unavailable instead of allowing them",
    )
    alert_on_failure: bool = Field(
        default=True,
        description="Notify the teacher channel when moderation is unavailable",
    )

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")


class RetrievalConfig(BaseModel):
    """Embedding and vector index services."""

    enabled: bool = Field(default=True, description="Retrieve passages for RAG-enabled tutors")
    embedding_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the embeddings API",
    )
    embedding_api_key: Optional[SecretStr] = Field(default=None, description="Embeddings API key")
    embedding_model: str = Field(default="text-embedding-3-small", description="Embedding model")
    index_url: Optional[str] = Field(
        default=None,
        description="REST vector index URL; an in-memory index is used when unset",
    )
    index_api_key: Optional[SecretStr] = Field(default=None, description="Vector index API key")
    top_k: int = Field(default=3, ge=1, le=20, description="Passages per query")
    max_passage_chars: int = Field(default=500, ge=50, description="Passage truncation length")
    timeout: float = Field(default=10.0, gt=0, description="Request timeout in seconds")


class ContextConfig(BaseModel):
    history_limit: int = Field(
        default=5,
        ge=0,
        description="Prior messages of this conversation sent with each turn",
    )
    short_prompt_models: list[str] = Field(
        default_factory=lambda: ["deepseek"],
        description="Model name fragments that get the compact system prompt",
    )
    default_country: str = Field(
        default="DEFAULT",
        description="Country code used when none can be resolved",
    )


class StreamingConfig(BaseModel):
    flush_every_chars: int = Field(
        default=200,
        ge=1,
        description="Persist partial content after this many new characters",
    )
    slow_models: list[str] = Field(
        default_factory=lambda: ["deepseek"],
        description="Model name fragments treated as slow reasoning models",
    )
    slow_model_max_tokens: int = Field(default=4096, gt=0, description="max_tokens cap for slow models")
    thinking_text: str = Field(
        default=(
            "<details><summary>🤔 Thinking deeply about your question...</summary>\n"
            "This model reasons carefully before it answers, which usually takes 20-40 seconds.</details>"
        ),
        description="Transient message shown while a slow model reasons",
    )
    empty_completion_text: str = Field(
        default="I'm sorry, I couldn't come up with a response just now. Could you try asking again?",
        description="Stored when the model finishes without producing text",
    )


class AssessmentConfig(_DurationModel):
    _durations: ClassVar[tuple[str, ...]] = ("attempt_timeout", "backoff_base")

    trigger: str = Field(default="/assess", description="Reserved command that starts grading")
    context_count: int = Field(
        default=5,
        ge=1,
        description="Prior messages submitted for grading",
    )
    grading_url: Optional[str] = Field(
        default=None,
        description="Grading service endpoint (POST)",
    )
    grading_api_key: Optional[SecretStr] = Field(default=None, description="Grading service key")
    attempt_timeout: float = Field(default=30.0, gt=0, description="Per-attempt timeout in seconds")
    max_retries: int = Field(default=2, ge=0, le=10, description="Retries after the first attempt")
    backoff_base: float = Field(
        default=1.0,
        ge=0,
        description="First backoff delay; doubles per retry",
    )


class ReconciliationConfig(_DurationModel):
    """Client-side transcript merge and session memory timers."""

    _durations: ClassVar[tuple[str, ...]] = (
        "safety_window",
        "stale_safety_after",
        "inactivity_timeout",
        "unmount_grace",
        "user_dedup_window",
        "frame_interval",
    )

    safety_window: float = Field(
        default=300.0,
        ge=0,
        description="Safety messages of one concern type within this window are deduplicated",
    )
    stale_safety_after: float = Field(
        default=300.0,
        ge=0,
        description="Safety messages older than this are hidden on initial load",
    )
    inactivity_timeout: float = Field(
        default=600.0,
        gt=0,
        description="Idle time before the session is snapshotted to memory",
    )
    min_session_messages: int = Field(
        default=4,
        ge=1,
        description="Minimum session messages worth a memory snapshot",
    )
    unmount_grace: float = Field(
        default=120.0,
        ge=0,
        description="On close, snapshot if the last user turn is older than this",
    )
    user_dedup_window: Optional[float] = Field(
        default=None,
        description="Limit user-message dedup to this time window (unlimited when unset)",
    )
    frame_interval: float = Field(
        default=1 / 60,
        gt=0,
        description="Render batching interval in seconds",
    )


class MemoryConfig(BaseModel):
    enabled: bool = Field(default=True, description="Store and inject session memories")
    store_dir: str = Field(
        default="~/.classroom-tutor/memory",
        description="Directory for memory JSON files",
    )
    max_in_context: int = Field(default=3, ge=0, description="Memories injected into the prompt")
    summary_model: Optional[str] = Field(
        default=None,
        description="Model used to summarise sessions (defaults to llm.model)",
    )


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8000, ge=1, le=65535, description="Bind port")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")


class PipelineConfig(BaseModel):
    """
    Complete configuration of the tutoring pipeline.

    Secrets live in ``SecretStr`` fields and are masked by ``to_dict`` unless
    ``include_secrets`` is requested.
    """

    model_config = {"extra": "forbid"}

    llm: LLMConfig = Field(default_factory=LLMConfig, description="Completion service")
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    content_filter: ContentFilterConfig = Field(default_factory=ContentFilterConfig)
    moderation: ModerationConfig = Field(default_factory=ModerationConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    assessment: AssessmentConfig = Field(default_factory=AssessmentConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    def __repr__(self) -> str:
        return f"PipelineConfig(llm={self.llm!r}, moderation_enabled={self.moderation.enabled})"

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PipelineConfig":
        """
        Load configuration from YAML or JSON.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        path = Path(path).expanduser().resolve()
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        content = path.read_text()
        if path.suffix == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineConfig":
        return cls.model_validate(data)

    def to_dict(self, include_secrets: bool = False) -> dict:
        """Plain dict; secrets are replaced by "***" unless requested."""
        data = self.model_dump(mode="json")

        def reveal(section: str, key: str, secret: Optional[SecretStr]) -> None:
            if secret is None:
                data[section][key] = None
            else:
                data[section][key] = secret.get_secret_value() if include_secrets else "***"

        reveal("llm", "api_key", self.llm.api_key)
        reveal("moderation", "api_key", self.moderation.api_key)
        reveal("retrieval", "embedding_api_key", self.retrieval.embedding_api_key)
        reveal("retrieval", "index_api_key", self.retrieval.index_api_key)
        reveal("assessment", "grading_api_key", self.assessment.grading_api_key)
        return data

    def save(self, path: Union[str, Path], format: str = "yaml", include_secrets: bool = False) -> None:
        path = Path(path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.to_dict(include_secrets=include_secrets)
        if format == "yaml":
            content = yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
        else:
            content = json.dumps(data, indent=2, ensure_ascii=False)

        path.write_text(content)
        if include_secrets:
            os.chmod(path, 0o600)

    def apply_settings(self, settings: "ServiceSettings") -> "PipelineConfig":
        """Copy secrets and URLs from the environment into their sections."""
        if settings.openrouter_api_key:
            self.llm.api_key = settings.openrouter_api_key
        if settings.llm_base_url:
            self.llm.base_url = settings.llm_base_url.rstrip("/")
        if settings.app_url:
            self.llm.referer = settings.app_url
        if settings.openai_api_key:
            if self.moderation.api_key is None:
                self.moderation.api_key = settings.openai_api_key
            if self.retrieval.embedding_api_key is None:
                self.retrieval.embedding_api_key = settings.openai_api_key
        if settings.vector_index_url:
            self.retrieval.index_url = settings.vector_index_url
        if settings.vector_index_api_key:
            self.retrieval.index_api_key = settings.vector_index_api_key
        if settings.grading_url:
            self.assessment.grading_url = settings.grading_url
        if settings.grading_api_key:
            self.assessment.grading_api_key = settings.grading_api_key
        if settings.alert_webhook_url:
            self.safety.alert_webhook_url = settings.alert_webhook_url
        return self
