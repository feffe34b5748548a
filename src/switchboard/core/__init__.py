"""Core data structures, transport utilities and adapter interfaces."""

from __future__ import annotations

from .cancellation import CancellationToken, merge_tokens
from .config import AIProviderConfig, ProviderType
from .errors import (
    Cancelled,
    DecodeError,
    GatewayError,
    MissingCredential,
    NetworkError,
    ProviderConfigError,
    StreamVendorError,
    ToolArgumentDecodeError,
    VendorHttpError,
)
from .message import (
    AIResponse,
    ChatMessage,
    ImageContent,
    MessageRole,
    StopReason,
    TextContent,
    TokenUsage,
    ToolResultContent,
    ToolUseContent,
)
from .adapters.toolbridge import ToolDefinition

__all__ = [
    "AIProviderConfig",
    "AIResponse",
    "CancellationToken",
    "Cancelled",
    "ChatMessage",
    "DecodeError",
    "GatewayError",
    "ImageContent",
    "MessageRole",
    "MissingCredential",
    "NetworkError",
    "ProviderConfigError",
    "ProviderType",
    "StopReason",
    "StreamVendorError",
    "TextContent",
    "TokenUsage",
    "ToolArgumentDecodeError",
    "ToolDefinition",
    "ToolResultContent",
    "ToolUseContent",
    "VendorHttpError",
    "merge_tokens",
]
