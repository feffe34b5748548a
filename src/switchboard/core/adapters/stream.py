"""Per-call stream normalization shared by every vendor adapter.

Adapters translate vendor records into calls on :class:`StreamAssembler`,
which emits the canonical :mod:`switchboard.core.events` sequence to the
caller's callback and keeps the accumulators the aggregate
:class:`~switchboard.core.message.AIResponse` is built from. Because the
response is assembled from the same state that produced the deltas, the
aggregate never contains anything the callback did not see.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..cancellation import CancellationToken
from ..errors import DecodeError, StreamVendorError, ToolArgumentDecodeError
from ..events import (
    BlockKind,
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    EventCallback,
    InputJsonDelta,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamError,
    StreamEvent,
    TextDelta,
)
from ..message import (
    AIResponse,
    AssistantMessage,
    MessageContent,
    StopReason,
    TextContent,
    TokenUsage,
    ToolUseContent,
    new_message_id,
)
from .toolbridge import ParsedToolArguments, parse_tool_arguments

LOGGER = logging.getLogger(__name__)


@dataclass
class _BlockState:
    """Accumulator for one content block."""

    index: int
    kind: BlockKind
    tool_id: str | None = None
    tool_name: str | None = None
    signature: str | None = None
    fragments: list[str] = field(default_factory=list)
    closed: bool = False
    content: MessageContent | None = None

    @property
    def accumulated(self) -> str:
        return "".join(self.fragments)


class StreamAssembler:
    """Drive the canonical event sequence for one streaming call."""

    def __init__(
        self,
        on_event: EventCallback,
        *,
        provider: str,
        token: CancellationToken | None = None,
    ) -> None:
        self._on_event = on_event
        self._provider = provider
        self._token = token
        self._message_id: str | None = None
        self._blocks: dict[int, _BlockState] = {}
        self._last_index = -1
        self._stop_reason: StopReason | None = None
        self._input_tokens = 0
        self._output_tokens = 0
        self._usage_seen = False
        self._finished = False
        self.dropped_tool_calls: list[ToolArgumentDecodeError] = []

    @property
    def started(self) -> bool:
        return self._message_id is not None

    @property
    def message_id(self) -> str | None:
        return self._message_id

    @property
    def next_index(self) -> int:
        return self._last_index + 1

    @property
    def has_tool_calls(self) -> bool:
        return any(block.kind == "tool_use" for block in self._blocks.values())

    def is_open(self, index: int) -> bool:
        block = self._blocks.get(index)
        return block is not None and not block.closed

    def start(self, message_id: str | None = None) -> None:
        """Emit ``message_start`` once; later calls are ignored."""

        if self._message_id is not None:
            return
        self._message_id = message_id or new_message_id()
        self._emit(MessageStart(id=self._message_id))

    def open_text(self, index: int) -> None:
        self._open(_BlockState(index=index, kind="text"))
        self._emit(ContentBlockStart(index=index, kind="text"))

    def open_tool(
        self,
        index: int,
        *,
        tool_id: str,
        tool_name: str,
        signature: str | None = None,
    ) -> None:
        if not tool_id or not tool_name:
            msg = f"tool block at index {index} needs both an id and a name"
            raise DecodeError(msg)
        self._open(
            _BlockState(
                index=index,
                kind="tool_use",
                tool_id=tool_id,
                tool_name=tool_name,
                signature=signature,
            )
        )
        self._emit(
            ContentBlockStart(index=index, kind="tool_use", tool_id=tool_id, tool_name=tool_name)
        )

    def append_text(self, index: int, text: str) -> None:
        block = self._require_open(index, "text")
        if not text:
            return
        block.fragments.append(text)
        self._emit(ContentBlockDelta(index=index, delta=TextDelta(text=text)))

    def append_tool_json(self, index: int, fragment: str) -> None:
        block = self._require_open(index, "tool_use")
        if not fragment:
            return
        block.fragments.append(fragment)
        self._emit(ContentBlockDelta(index=index, delta=InputJsonDelta(partial_json=fragment)))

    def add_tool_call(
        self,
        index: int,
        *,
        tool_id: str,
        tool_name: str,
        arguments: Mapping[str, Any],
        signature: str | None = None,
    ) -> None:
        """Record a tool call that arrived whole in a single vendor record."""

        self.open_tool(index, tool_id=tool_id, tool_name=tool_name, signature=signature)
        self.append_tool_json(index, json.dumps(dict(arguments)))
        self.close(index)

    def close(self, index: int) -> None:
        block = self._blocks.get(index)
        if block is None:
            msg = f"cannot close unknown content block {index}"
            raise DecodeError(msg)
        if block.closed:
            return
        block.closed = True

        if block.kind == "text":
            if block.fragments:
                block.content = TextContent(text=block.accumulated)
        else:
            self._finalize_tool(block)

        self._emit(ContentBlockStop(index=index))

    def set_stop_reason(self, reason: StopReason) -> None:
        self._stop_reason = reason

    def set_usage(
        self,
        *,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
    ) -> None:
        if input_tokens is not None:
            self._input_tokens = int(input_tokens)
            self._usage_seen = True
        if output_tokens is not None:
            self._output_tokens = int(output_tokens)
            self._usage_seen = True

    def finish(self) -> AIResponse:
        """Close open blocks, emit the trailing events and build the response."""

        if self._finished:
            msg = "stream already finished"
            raise RuntimeError(msg)
        self.start()
        for index in sorted(self._blocks):
            if not self._blocks[index].closed:
                self.close(index)

        stop_reason = self._stop_reason or StopReason.END_TURN
        usage = self._usage()
        self._emit(MessageDelta(stop_reason=stop_reason, usage=usage))
        self._emit(MessageStop())
        self._finished = True
        return self.build_response(stop_reason=stop_reason, usage=usage)

    def fail(self, error_type: str, message: str) -> StreamVendorError:
        """Emit an ``error`` event and return the exception to raise."""

        self._emit(StreamError(error_type=error_type, message=message))
        self._finished = True
        return StreamVendorError(error_type, message)

    def build_response(
        self,
        *,
        stop_reason: StopReason,
        usage: TokenUsage | None,
    ) -> AIResponse:
        content = [
            self._blocks[index].content
            for index in sorted(self._blocks)
            if self._blocks[index].content is not None
        ]
        message = AssistantMessage(id=self._message_id or new_message_id(), content=tuple(content))
        return AIResponse(message=message, stop_reason=stop_reason, usage=usage)

    def _usage(self) -> TokenUsage | None:
        if not self._usage_seen:
            return None
        return TokenUsage(input_tokens=self._input_tokens, output_tokens=self._output_tokens)

    def _finalize_tool(self, block: _BlockState) -> None:
        assert block.tool_id is not None and block.tool_name is not None
        outcome = parse_tool_arguments(
            block.accumulated,
            index=block.index,
            tool_id=block.tool_id,
            tool_name=block.tool_name,
        )
        if isinstance(outcome, ParsedToolArguments):
            block.content = ToolUseContent(
                id=block.tool_id,
                name=block.tool_name,
                input=outcome.arguments,
                signature=block.signature,
            )
            return

        self.dropped_tool_calls.append(outcome)
        LOGGER.warning("%s: dropping tool call: %s", self._provider, outcome)

    def _open(self, block: _BlockState) -> None:
        self.start()
        if block.index in self._blocks:
            msg = f"content block {block.index} was already opened"
            raise DecodeError(msg)
        if block.index < self._last_index:
            msg = f"content block {block.index} opened after block {self._last_index}"
            raise DecodeError(msg)
        self._blocks[block.index] = block
        self._last_index = block.index

    def _require_open(self, index: int, kind: BlockKind) -> _BlockState:
        block = self._blocks.get(index)
        if block is None or block.closed:
            msg = f"content block {index} is not open"
            raise DecodeError(msg)
        if block.kind != kind:
            msg = f"content block {index} is a {block.kind} block, not {kind}"
            raise DecodeError(msg)
        return block

    def _emit(self, event: StreamEvent) -> None:
        if self._token is not None:
            self._token.raise_if_cancelled()
        self._on_event(event)


__all__ = ["StreamAssembler"]
