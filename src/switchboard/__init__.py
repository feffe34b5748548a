"""Multi-provider streaming chat gateway.

switchboard exposes one request/response model (messages, content blocks,
tool calls, stream events, stop reasons, token usage) on top of four vendor
families: Anthropic Messages, OpenAI chat completions, Google Gemini and a
local Ollama daemon. Adapters are built through an explicit registry and
every call owns its own cancellation state.
"""

from __future__ import annotations

from .core import (
    AIProviderConfig,
    AIResponse,
    CancellationToken,
    Cancelled,
    ChatMessage,
    DecodeError,
    GatewayError,
    ImageContent,
    MessageRole,
    MissingCredential,
    NetworkError,
    ProviderType,
    StopReason,
    StreamVendorError,
    TextContent,
    TokenUsage,
    ToolArgumentDecodeError,
    ToolDefinition,
    ToolResultContent,
    ToolUseContent,
    VendorHttpError,
    merge_tokens,
)
from .core.adapters import (
    ChatProvider,
    ChatRequest,
    ProviderRegistry,
    build_default_registry,
    register_builtin_providers,
)
from .gateway import Gateway
from .services import ModelRegistry, SecretService, StaticModelRegistry, StaticSecretService

__all__ = [
    "AIProviderConfig",
    "AIResponse",
    "CancellationToken",
    "Cancelled",
    "ChatMessage",
    "ChatProvider",
    "ChatRequest",
    "DecodeError",
    "Gateway",
    "GatewayError",
    "ImageContent",
    "MessageRole",
    "MissingCredential",
    "ModelRegistry",
    "NetworkError",
    "ProviderRegistry",
    "ProviderType",
    "SecretService",
    "StaticModelRegistry",
    "StaticSecretService",
    "StopReason",
    "StreamVendorError",
    "TextContent",
    "TokenUsage",
    "ToolArgumentDecodeError",
    "ToolDefinition",
    "ToolResultContent",
    "ToolUseContent",
    "VendorHttpError",
    "build_default_registry",
    "merge_tokens",
    "register_builtin_providers",
]

__version__ = "0.1.0"
