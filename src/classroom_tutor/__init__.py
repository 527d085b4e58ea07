"""
Classroom Tutor - safety-gated AI tutor message pipeline.

Routes each student or teacher message through a safety classifier, a
content filter and a moderation check, then builds tutor context and
streams the completion back while persisting it incrementally. A
client-side reconciliation engine merges optimistic, fetched and pushed
rows into one transcript.
"""

__version__ = "0.1.0"

from classroom_tutor.config import PipelineConfig, parse_duration
from classroom_tutor.llm import (
    DummyProvider,
    DummyProviderConfig,
    LLMConfig,
    LLMProvider,
    Message,
    ProviderType,
    StreamChunk,
    get_provider,
)
from classroom_tutor.models import (
    Author,
    ChatMessage,
    Meta,
    Role,
    Room,
    TutorProfile,
    UserRole,
)
from classroom_tutor.pipeline import MessageOrchestrator, TurnRequest
from classroom_tutor.settings import ServiceSettings

__all__ = [
    # Version
    "__version__",
    # Configuration
    "PipelineConfig",
    "ServiceSettings",
    "parse_duration",
    # LLM
    "LLMConfig",
    "LLMProvider",
    "DummyProvider",
    "DummyProviderConfig",
    "Message",
    "ProviderType",
    "StreamChunk",
    "get_provider",
    # Domain
    "Author",
    "ChatMessage",
    "Meta",
    "Role",
    "Room",
    "TutorProfile",
    "UserRole",
    # Pipeline
    "MessageOrchestrator",
    "TurnRequest",
]
