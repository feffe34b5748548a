"""Explicit provider registry keyed by adapter type.

Adapters are never registered as an import side effect; call
:func:`register_builtin_providers` (or :func:`build_default_registry`) once
at startup.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from ..config import AIProviderConfig, ProviderType
from ..errors import ProviderConfigError
from .anthropic import AnthropicAdapter
from .base import ChatProvider
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter

LOGGER = logging.getLogger(__name__)

ProviderFactory = Callable[..., ChatProvider]

BUILTIN_PROVIDERS: dict[ProviderType, ProviderFactory] = {
    ProviderType.CLAUDE: AnthropicAdapter,
    ProviderType.OPENAI: OpenAIAdapter,
    ProviderType.GEMINI: GeminiAdapter,
    ProviderType.OLLAMA: OllamaAdapter,
}


class ProviderRegistry:
    """Constructor map used to build adapters from configurations."""

    def __init__(self) -> None:
        self._factories: dict[ProviderType, ProviderFactory] = {}

    def register(self, provider_type: ProviderType | str, factory: ProviderFactory) -> None:
        key = ProviderType(provider_type)
        if key in self._factories:
            msg = f"provider type '{key.value}' is already registered"
            raise ProviderConfigError(msg)
        self._factories[key] = factory
        LOGGER.debug("registered provider type %s", key.value)

    def is_registered(self, provider_type: ProviderType | str) -> bool:
        try:
            return ProviderType(provider_type) in self._factories
        except ValueError:
            return False

    def types(self) -> list[str]:
        return sorted(key.value for key in self._factories)

    def create(self, config: AIProviderConfig, **dependencies: Any) -> ChatProvider:
        """Instantiate the adapter for ``config.type``.

        ``dependencies`` are passed through to the adapter constructor
        (``secrets``, ``model_registry``, ``http_client`` and so on).
        """

        factory = self._factories.get(config.type)
        if factory is None:
            msg = f"no provider registered for type '{config.type.value}'"
            raise ProviderConfigError(msg)
        return factory(config, **dependencies)


def register_builtin_providers(registry: ProviderRegistry) -> ProviderRegistry:
    for provider_type, factory in BUILTIN_PROVIDERS.items():
        registry.register(provider_type, factory)
    return registry


def build_default_registry() -> ProviderRegistry:
    return register_builtin_providers(ProviderRegistry())


__all__ = [
    "BUILTIN_PROVIDERS",
    "ProviderFactory",
    "ProviderRegistry",
    "build_default_registry",
    "register_builtin_providers",
]
