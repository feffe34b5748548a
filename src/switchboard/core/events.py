"""Canonical streaming event schema emitted by every adapter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, ClassVar, Literal, Optional, Union

from .message import MessageRole, StopReason, TokenUsage

BlockKind = Literal["text", "tool_use"]


@dataclass(slots=True)
class TextDelta:
    text: str
    type: ClassVar[str] = "text_delta"


@dataclass(slots=True)
class InputJsonDelta:
    partial_json: str
    type: ClassVar[str] = "input_json_delta"


BlockDelta = Union[TextDelta, InputJsonDelta]


@dataclass(slots=True)
class MessageStart:
    """First event of every streamed call."""

    id: str
    role: MessageRole = MessageRole.ASSISTANT
    type: ClassVar[str] = "message_start"


@dataclass(slots=True)
class ContentBlockStart:
    """A new content block was opened at ``index``."""

    index: int
    kind: BlockKind
    tool_id: Optional[str] = None
    tool_name: Optional[str] = None
    type: ClassVar[str] = "content_block_start"


@dataclass(slots=True)
class ContentBlockDelta:
    """Incremental payload for an open block."""

    index: int
    delta: BlockDelta
    type: ClassVar[str] = "content_block_delta"


@dataclass(slots=True)
class ContentBlockStop:
    index: int
    type: ClassVar[str] = "content_block_stop"


@dataclass(slots=True)
class MessageDelta:
    """Carries the final stop reason, emitted once after all blocks close."""

    stop_reason: StopReason
    usage: Optional[TokenUsage] = None
    type: ClassVar[str] = "message_delta"


@dataclass(slots=True)
class MessageStop:
    type: ClassVar[str] = "message_stop"


@dataclass(slots=True)
class StreamError:
    """In-band failure that aborts the event sequence."""

    error_type: str
    message: str
    type: ClassVar[str] = "error"


StreamEvent = Union[
    MessageStart,
    ContentBlockStart,
    ContentBlockDelta,
    ContentBlockStop,
    MessageDelta,
    MessageStop,
    StreamError,
]

EventCallback = Callable[[StreamEvent], None]


__all__ = [
    "BlockDelta",
    "BlockKind",
    "ContentBlockDelta",
    "ContentBlockStart",
    "ContentBlockStop",
    "EventCallback",
    "InputJsonDelta",
    "MessageDelta",
    "MessageStart",
    "MessageStop",
    "StreamError",
    "StreamEvent",
    "TextDelta",
]
