"""Typed provider configuration models."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProviderType(str, Enum):
    """Adapter families understood by the provider registry."""

    CLAUDE = "claude"
    OPENAI = "openai"
    GEMINI = "gemini"
    OLLAMA = "ollama"


class AnthropicOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["claude"] = "claude"
    api_version: str = Field("2023-06-01", description="Value of the anthropic-version header.")
    default_max_tokens: int = Field(4096, gt=0, description="max_tokens sent when the request has none.")


class OpenAIOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["openai"] = "openai"
    organization: str | None = Field(None, description="Sent as the OpenAI-Organization header when set.")
    default_max_tokens: int | None = Field(None, gt=0, description="Token limit used when the request has none.")


class GeminiOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["gemini"] = "gemini"
    default_max_output_tokens: int = Field(8192, gt=0, description="generationConfig.maxOutputTokens default.")


class OllamaOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["ollama"] = "ollama"
    keep_alive: str | None = Field(None, description="How long the daemon keeps the model loaded, e.g. '5m'.")
    availability_timeout: float = Field(5.0, gt=0, description="Seconds to wait for the /api/tags probe.")


ProviderOptions = Annotated[
    Union[AnthropicOptions, OpenAIOptions, GeminiOptions, OllamaOptions],
    Field(discriminator="kind"),
]

_DEFAULT_OPTIONS: dict[ProviderType, type[BaseModel]] = {
    ProviderType.CLAUDE: AnthropicOptions,
    ProviderType.OPENAI: OpenAIOptions,
    ProviderType.GEMINI: GeminiOptions,
    ProviderType.OLLAMA: OllamaOptions,
}


class AIProviderConfig(BaseModel):
    """Caller-owned configuration for one adapter instance."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: ProviderType = Field(..., description="Adapter family to instantiate.")
    name: str = Field(..., min_length=1, description="Display name for this provider configuration.")
    model: str | None = Field(None, description="Model id overriding registry and built-in defaults.")
    base_url: str | None = Field(None, description="Override for the vendor API base URL.")
    api_key: str | None = Field(None, description="Explicit API key; skips secret lookup when set.")
    options: ProviderOptions | None = Field(None, description="Vendor specific settings.")

    @model_validator(mode="after")
    def _options_match_type(self) -> "AIProviderConfig":
        if self.options is not None and self.options.kind != self.type.value:
            msg = f"options of kind '{self.options.kind}' do not apply to provider type '{self.type.value}'"
            raise ValueError(msg)
        return self

    def resolved_options(self) -> Union[AnthropicOptions, OpenAIOptions, GeminiOptions, OllamaOptions]:
        """Return ``options`` or the defaults for this provider type."""

        if self.options is not None:
            return self.options
        return _DEFAULT_OPTIONS[self.type]()  # type: ignore[return-value]


__all__ = [
    "AIProviderConfig",
    "AnthropicOptions",
    "GeminiOptions",
    "OllamaOptions",
    "OpenAIOptions",
    "ProviderOptions",
    "ProviderType",
]
