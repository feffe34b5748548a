"""Interfaces to the secret store and model registry, with in-process defaults."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Mapping
from enum import Enum
from pathlib import Path
from typing import Dict, List, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class SecretService(Protocol):
    async def get(self, name: str) -> str | None:
        """Return the secret stored under ``name`` or ``None``."""


@runtime_checkable
class ModelRegistry(Protocol):
    def get_provider_default_id(self, provider: str) -> str:
        """Return the default model id for ``provider`` or an empty string."""

    def get_provider_model_ids(self, provider: str) -> list[str]:
        """Return the available model ids for ``provider``."""

    def get_fallback(self, model_id: str) -> str | None:
        """Return a model to use when ``model_id`` is unavailable."""


class StaticSecretService:
    """Secret service backed by an in-memory mapping."""

    def __init__(self, secrets: Mapping[str, str] | None = None) -> None:
        self._secrets = dict(secrets or {})

    async def get(self, name: str) -> str | None:
        return self._secrets.get(name) or None


class EnvSecretService:
    """Secret service that reads the process environment."""

    async def get(self, name: str) -> str | None:
        return os.environ.get(name) or None


class QualityTier(str, Enum):
    BASIC = "basic"
    GOOD = "good"
    EXCELLENT = "excellent"
    BEST = "best"

    @property
    def rank(self) -> int:
        return _QUALITY_RANK[self]


_QUALITY_RANK = {
    QualityTier.BASIC: 1,
    QualityTier.GOOD: 2,
    QualityTier.EXCELLENT: 3,
    QualityTier.BEST: 4,
}


class ModelDefinition(BaseModel):
    """One entry of the model catalogue."""

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str = Field(..., min_length=1, description="Vendor model identifier.")
    provider: str = Field(..., description="Registry provider id (anthropic, openai, google, ollama, custom).")
    name: str | None = Field(None, description="Human readable name.")
    quality: QualityTier = Field(QualityTier.GOOD, description="Output quality tier used for fallback matching.")
    available: bool = Field(True, description="Whether the model can currently be used.")
    replaced_by: str | None = Field(None, description="Preferred replacement when this model is retired.")
    is_default: bool = Field(False, description="Default model for its provider when no explicit default is set.")


class ModelsConfig(BaseModel):
    """Serialized form of the model catalogue."""

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    provider_defaults: Dict[str, str] = Field(default_factory=dict, description="Default model id per provider.")
    models: List[ModelDefinition] = Field(default_factory=list, description="Known models in preference order.")


class StaticModelRegistry:
    """Immutable model registry; safe to share between concurrent calls."""

    def __init__(
        self,
        models: Iterable[ModelDefinition] = (),
        *,
        provider_defaults: Mapping[str, str] | None = None,
    ) -> None:
        self._models = tuple(models)
        self._by_id = {model.id: model for model in self._models}
        self._defaults = dict(provider_defaults or {})

    @classmethod
    def from_config(cls, config: ModelsConfig) -> "StaticModelRegistry":
        return cls(config.models, provider_defaults=config.provider_defaults)

    @classmethod
    def from_file(cls, path: Path) -> "StaticModelRegistry":
        """Load a catalogue from a JSON file."""

        data = json.loads(Path(path).read_text(encoding="utf-8"))
        config = ModelsConfig.model_validate(data)
        LOGGER.debug("loaded %d model definitions from %s", len(config.models), path)
        return cls.from_config(config)

    def get_model(self, model_id: str) -> ModelDefinition | None:
        return self._by_id.get(model_id)

    def get_provider_default_id(self, provider: str) -> str:
        if provider in self._defaults:
            return self._defaults[provider]
        for model in self._models:
            if model.provider == provider and model.is_default and model.available:
                return model.id
        return ""

    def get_provider_model_ids(self, provider: str) -> list[str]:
        return [
            model.id
            for model in self._models
            if model.provider == provider and model.available
        ]

    def get_fallback(self, model_id: str) -> str | None:
        original = self._by_id.get(model_id)
        if original is None:
            return None

        if original.replaced_by:
            replacement = self._by_id.get(original.replaced_by)
            if replacement is not None and replacement.available:
                return replacement.id

        for candidate in self._models:
            if (
                candidate.provider == original.provider
                and candidate.available
                and candidate.id != model_id
                and candidate.quality.rank >= original.quality.rank - 1
            ):
                return candidate.id
        return None


__all__ = [
    "EnvSecretService",
    "ModelDefinition",
    "ModelRegistry",
    "ModelsConfig",
    "QualityTier",
    "SecretService",
    "StaticModelRegistry",
    "StaticSecretService",
]
