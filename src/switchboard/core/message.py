"""Message schema shared across adapters."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import json
import math
from types import MappingProxyType
from typing import Any, ClassVar, Literal, Union
import uuid


class MessageRole(str, Enum):
    """Canonical role names supported by switchboard."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class StopReason(str, Enum):
    """Normalized reason a model turn ended."""

    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TextContent:
    text: str
    type: ClassVar[Literal["text"]] = "text"

    def __post_init__(self) -> None:
        if not isinstance(self.text, str):
            msg = "text content must be a string"
            raise TypeError(msg)


@dataclass(frozen=True, slots=True)
class ImageContent:
    """Inline image; ``data`` holds the base64 encoded bytes."""

    media_type: str
    data: str
    type: ClassVar[Literal["image"]] = "image"

    def __post_init__(self) -> None:
        if not isinstance(self.media_type, str) or not self.media_type:
            msg = "image media_type must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.data, str):
            msg = "image data must be a base64 string"
            raise TypeError(msg)


@dataclass(frozen=True, slots=True)
class ToolUseContent:
    """A tool invocation proposed by the model."""

    id: str
    name: str
    input: Mapping[str, Any] = field(default_factory=dict)
    signature: str | None = None
    type: ClassVar[Literal["tool_use"]] = "tool_use"

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            msg = "tool_use id must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.name, str) or not self.name:
            msg = "tool_use name must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.input, Mapping):
            msg = "tool_use input must be a mapping"
            raise TypeError(msg)

        plain_input = thaw_json(self.input)
        ensure_json_compatible(plain_input, path=f"tool_use('{self.name}').input")
        object.__setattr__(self, "input", freeze_json(plain_input))

    def plain_input(self) -> dict[str, Any]:
        """Return a mutable deep copy of ``input`` suitable for JSON encoding."""

        return thaw_json(self.input)


@dataclass(frozen=True, slots=True)
class ToolResultContent:
    """The caller's answer to a previous ``tool_use`` block."""

    tool_use_id: str
    content: Any
    is_error: bool = False
    type: ClassVar[Literal["tool_result"]] = "tool_result"

    def __post_init__(self) -> None:
        if not isinstance(self.tool_use_id, str) or not self.tool_use_id:
            msg = "tool_result tool_use_id must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.content, str):
            plain = thaw_json(self.content)
            ensure_json_compatible(plain, path="tool_result.content")
            object.__setattr__(self, "content", freeze_json(plain))

    def content_text(self) -> str:
        """Return the result as text, JSON encoding structured payloads."""

        if isinstance(self.content, str):
            return self.content
        return json.dumps(thaw_json(self.content))


MessageContent = Union[TextContent, ImageContent, ToolUseContent, ToolResultContent]

_CONTENT_TYPES = (TextContent, ImageContent, ToolUseContent, ToolResultContent)


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """A single turn in a conversation."""

    role: MessageRole
    content: tuple[MessageContent, ...]

    def __post_init__(self) -> None:
        try:
            role = MessageRole(self.role)
        except ValueError as exc:
            msg = f"unsupported message role: {self.role!r}"
            raise ValueError(msg) from exc
        object.__setattr__(self, "role", role)

        if isinstance(self.content, (str, bytes, bytearray)) or not isinstance(
            self.content, Sequence
        ):
            msg = "message content must be a sequence of content blocks"
            raise TypeError(msg)
        blocks = tuple(self.content)
        for index, block in enumerate(blocks):
            if not isinstance(block, _CONTENT_TYPES):
                msg = f"content[{index}] is not a supported content block"
                raise TypeError(msg)
        object.__setattr__(self, "content", blocks)

    @classmethod
    def text(cls, role: MessageRole | str, text: str) -> "ChatMessage":
        return cls(role=MessageRole(role), content=(TextContent(text),))

    @property
    def text_content(self) -> str:
        return "".join(block.text for block in self.content if isinstance(block, TextContent))


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True, slots=True)
class AssistantMessage:
    """The assistant turn carried by :class:`AIResponse`."""

    id: str
    content: tuple[MessageContent, ...]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    role: MessageRole = MessageRole.ASSISTANT

    def __post_init__(self) -> None:
        object.__setattr__(self, "content", tuple(self.content))


@dataclass(frozen=True, slots=True)
class AIResponse:
    """Aggregate result of a chat call, streamed or not."""

    message: AssistantMessage
    stop_reason: StopReason
    usage: TokenUsage | None = None

    @property
    def text(self) -> str:
        return "".join(
            block.text for block in self.message.content if isinstance(block, TextContent)
        )

    @property
    def tool_calls(self) -> tuple[ToolUseContent, ...]:
        return tuple(
            block for block in self.message.content if isinstance(block, ToolUseContent)
        )


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


def ensure_json_compatible(value: Any, *, path: str) -> None:
    if isinstance(value, Mapping):
        for key, inner in value.items():
            if not isinstance(key, str):
                msg = f"{path} keys must be strings"
                raise TypeError(msg)
            ensure_json_compatible(inner, path=f"{path}.{key}")
        return

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        for index, item in enumerate(value):
            ensure_json_compatible(item, path=f"{path}[{index}]")
        return

    if isinstance(value, (bool, type(None), str)):
        return

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            msg = f"{path} contains non-finite float values"
            raise ValueError(msg)
        return

    msg = f"{path} contains unsupported value type {type(value).__name__}"
    raise TypeError(msg)


def freeze_json(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze_json(inner) for key, inner in value.items()})

    if isinstance(value, list):
        return tuple(freeze_json(inner) for inner in value)

    return value


def thaw_json(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: thaw_json(inner) for key, inner in value.items()}

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [thaw_json(inner) for inner in value]

    return value


__all__ = [
    "AIResponse",
    "AssistantMessage",
    "ChatMessage",
    "ImageContent",
    "MessageContent",
    "MessageRole",
    "StopReason",
    "TextContent",
    "TokenUsage",
    "ToolResultContent",
    "ToolUseContent",
    "ensure_json_compatible",
    "freeze_json",
    "new_message_id",
    "thaw_json",
]
