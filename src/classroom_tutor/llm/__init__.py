"""
Completion provider layer.

Example:
    ```python
    from classroom_tutor.llm import LLMConfig, get_provider

    provider = get_provider(LLMConfig(api_key="sk-or-..."))
    async for chunk in provider.stream("Explain photosynthesis"):
        print(chunk.content, end="")
    ```
"""

from classroom_tutor.llm.base import LLMProvider, LLMResponse, StreamChunk, extract_json_object
from classroom_tutor.llm.config import (
    DummyProviderConfig,
    LLMConfig,
    Message,
    MessageRole,
    ProviderType,
)
from classroom_tutor.llm.dummy_provider import DummyProvider
from classroom_tutor.llm.exceptions import (
    LLMAuthenticationError,
    LLMConfigurationError,
    LLMConnectionError,
    LLMContentFilterError,
    LLMContextLengthError,
    LLMError,
    LLMModelNotFoundError,
    LLMModelUnavailableError,
    LLMProviderNotFoundError,
    LLMRateLimitError,
    LLMResponseError,
    LLMTimeoutError,
)
from classroom_tutor.llm.factory import get_provider, list_providers, register_provider
from classroom_tutor.llm.openai_provider import OpenAIProvider, parse_sse_line

__all__ = [
    # Config
    "LLMConfig",
    "DummyProviderConfig",
    "ProviderType",
    "Message",
    "MessageRole",
    # Providers
    "LLMProvider",
    "LLMResponse",
    "StreamChunk",
    "OpenAIProvider",
    "DummyProvider",
    "parse_sse_line",
    "extract_json_object",
    # Factory
    "get_provider",
    "list_providers",
    "register_provider",
    # Exceptions
    "LLMError",
    "LLMConnectionError",
    "LLMAuthenticationError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "LLMResponseError",
    "LLMModelNotFoundError",
    "LLMModelUnavailableError",
    "LLMContextLengthError",
    "LLMContentFilterError",
    "LLMProviderNotFoundError",
    "LLMConfigurationError",
]
