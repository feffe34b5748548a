"""Entry point that wires configurations, collaborators and adapters together."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx

from .core.adapters.base import ChatProvider, ChatRequest
from .core.adapters.registry import ProviderRegistry, build_default_registry
from .core.config import AIProviderConfig
from .core.errors import VendorHttpError
from .core.events import EventCallback
from .core.message import AIResponse
from .services import ModelRegistry, SecretService, StaticModelRegistry
from .settings import GatewaySettings, get_settings

LOGGER = logging.getLogger(__name__)


class Gateway:
    """Build adapters on demand and retry once against a fallback model.

    Adapters are cached per configuration, so repeated calls with the same
    :class:`AIProviderConfig` reuse one long-lived instance. The cache holds
    one entry per distinct config and is never evicted; fallback-model
    adapters are built per call and are not cached.
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry | None = None,
        secrets: SecretService | None = None,
        model_registry: ModelRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
        settings: GatewaySettings | None = None,
    ) -> None:
        self._registry = registry or build_default_registry()
        self._secrets = secrets
        self._model_registry = model_registry
        self._http_client = http_client
        self._settings = settings or GatewaySettings()
        self._providers: dict[AIProviderConfig, ChatProvider] = {}

    @classmethod
    def from_settings(cls, settings: GatewaySettings | None = None, **kwargs: Any) -> "Gateway":
        settings = settings or get_settings()
        if "model_registry" not in kwargs and settings.models_file is not None:
            kwargs["model_registry"] = StaticModelRegistry.from_file(settings.models_file)
        return cls(settings=settings, **kwargs)

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def model_registry(self) -> ModelRegistry | None:
        return self._model_registry

    def provider(self, config: AIProviderConfig) -> ChatProvider:
        provider = self._providers.get(config)
        if provider is None:
            provider = self._create(config)
            self._providers[config] = provider
        return provider

    def _create(self, config: AIProviderConfig) -> ChatProvider:
        return self._registry.create(
            config,
            secrets=self._secrets,
            model_registry=self._model_registry,
            http_client=self._http_client,
            retry_policy=self._settings.retry_policy(),
            timeout=self._settings.timeout(),
        )

    async def chat(
        self,
        config: AIProviderConfig,
        request: ChatRequest,
        *,
        use_fallback: bool = True,
    ) -> AIResponse:
        return await self._with_fallback(
            config,
            lambda provider: provider.chat(request),
            use_fallback=use_fallback,
        )

    async def chat_stream(
        self,
        config: AIProviderConfig,
        request: ChatRequest,
        on_event: EventCallback,
        *,
        use_fallback: bool = True,
    ) -> AIResponse:
        # A missing model is reported before the first event, so a retry
        # never replays events the caller already saw.
        return await self._with_fallback(
            config,
            lambda provider: provider.chat_stream(request, on_event),
            use_fallback=use_fallback,
        )

    async def _with_fallback(
        self,
        config: AIProviderConfig,
        call: Callable[[ChatProvider], Awaitable[AIResponse]],
        *,
        use_fallback: bool,
    ) -> AIResponse:
        provider = self.provider(config)
        try:
            return await call(provider)
        except VendorHttpError as exc:
            fallback = self._fallback_model(provider, exc) if use_fallback else None
            if fallback is None:
                raise
            LOGGER.warning(
                "%s: model %s unavailable (HTTP %d), retrying with %s",
                provider.name,
                provider.resolve_model(),
                exc.status,
                fallback,
            )
            return await call(self._create(config.model_copy(update={"model": fallback})))

    def _fallback_model(self, provider: ChatProvider, error: VendorHttpError) -> str | None:
        if error.status != 404 or self._model_registry is None:
            return None
        model = provider.resolve_model()
        fallback = self._model_registry.get_fallback(model)
        if not fallback or fallback == model:
            return None
        return fallback


__all__ = ["Gateway"]
