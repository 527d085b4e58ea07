"""
Provider registry.

Maps each ``ProviderType`` to a factory so deployments can plug in their own
completion backend with ``@register_provider``.
"""

from typing import Callable, Optional

from classroom_tutor.llm.base import LLMProvider
from classroom_tutor.llm.config import DummyProviderConfig, LLMConfig, ProviderType
from classroom_tutor.llm.dummy_provider import DummyProvider
from classroom_tutor.llm.exceptions import LLMProviderNotFoundError
from classroom_tutor.llm.openai_provider import OpenAIProvider

ProviderFactory = Callable[[LLMConfig], LLMProvider]

_PROVIDER_REGISTRY: dict[ProviderType, ProviderFactory] = {}


def register_provider(
    provider_type: ProviderType,
    factory: Optional[ProviderFactory] = None,
) -> Callable[[ProviderFactory], ProviderFactory]:
    """Register ``factory`` for ``provider_type``; usable as a decorator."""

    def decorator(func: ProviderFactory) -> ProviderFactory:
        _PROVIDER_REGISTRY[provider_type] = func
        return func

    if factory is not None:
        return decorator(factory)
    return decorator


def get_provider(
    config: LLMConfig,
    *,
    dummy_config: Optional[DummyProviderConfig] = None,
) -> LLMProvider:
    """
    Build the provider named by ``config.provider``.

    Raises:
        LLMProviderNotFoundError: Nothing is registered for the type
    """
    if config.provider == ProviderType.DUMMY:
        return DummyProvider(config, dummy_config)

    factory = _PROVIDER_REGISTRY.get(config.provider)
    if factory is None:
        available = ", ".join(p.value for p in _PROVIDER_REGISTRY)
        raise LLMProviderNotFoundError(
            f"Unknown provider type: {config.provider.value}. Available providers: {available}",
            provider=config.provider.value,
        )
    return factory(config)


def list_providers() -> list[str]:
    return [p.value for p in _PROVIDER_REGISTRY] + [ProviderType.DUMMY.value]


def _openai_compatible(config: LLMConfig) -> LLMProvider:
    return OpenAIProvider(config)


for _provider_type in (
    ProviderType.OPENROUTER,
    ProviderType.OPENAI,
    ProviderType.LMSTUDIO,
    ProviderType.OLLAMA,
):
    register_provider(_provider_type, _openai_compatible)
