"""Provider contract and vendor adapter implementations."""

from __future__ import annotations

from .anthropic import AnthropicAdapter
from .base import AIProviderCapabilities, ChatProvider, ChatRequest, StreamNormalizer
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter
from .registry import ProviderRegistry, build_default_registry, register_builtin_providers
from .stream import StreamAssembler
from .toolbridge import ParsedToolArguments, ToolArgumentOutcome, ToolDefinition, parse_tool_arguments

__all__ = [
    "AIProviderCapabilities",
    "AnthropicAdapter",
    "ChatProvider",
    "ChatRequest",
    "GeminiAdapter",
    "OllamaAdapter",
    "OpenAIAdapter",
    "ParsedToolArguments",
    "ProviderRegistry",
    "StreamAssembler",
    "StreamNormalizer",
    "ToolArgumentOutcome",
    "ToolDefinition",
    "build_default_registry",
    "parse_tool_arguments",
    "register_builtin_providers",
]
