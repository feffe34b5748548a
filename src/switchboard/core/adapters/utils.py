"""Pure conversion helpers shared by adapter implementations."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..errors import DecodeError
from ..message import ChatMessage, MessageRole, StopReason, TextContent

LOGGER = logging.getLogger(__name__)


def split_system_messages(
    messages: Sequence[ChatMessage],
    system: str | None = None,
) -> tuple[str | None, list[ChatMessage]]:
    """Lift system turns out of ``messages``.

    Returns the combined system prompt (``system`` first, then the text of
    each system message in order, joined by blank lines) and the remaining
    turns in their original order.
    """

    prompts: list[str] = []
    if system:
        prompts.append(system)

    turns: list[ChatMessage] = []
    for message in messages:
        if message.role is MessageRole.SYSTEM:
            text = "".join(
                block.text for block in message.content if isinstance(block, TextContent)
            )
            if text:
                prompts.append(text)
            continue
        turns.append(message)

    combined = "\n\n".join(prompts) if prompts else None
    return combined, turns


def map_stop_reason(
    signal: str | None,
    table: Mapping[str, StopReason],
    *,
    provider: str,
) -> StopReason:
    """Translate a vendor finish signal; unknown or missing signals end the turn."""

    if signal is None:
        return StopReason.END_TURN
    reason = table.get(signal)
    if reason is None:
        LOGGER.debug("%s: unmapped finish signal %r treated as end_turn", provider, signal)
        return StopReason.END_TURN
    return reason


def ensure_mapping(value: Any, *, path: str) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value
    msg = f"{path} must be a JSON object"
    raise DecodeError(msg)


def ensure_sequence(value: Any, *, path: str) -> Sequence[Any]:
    if value is None:
        return ()
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return value
    msg = f"{path} must be a JSON array"
    raise DecodeError(msg)


def optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


__all__ = [
    "ensure_mapping",
    "ensure_sequence",
    "map_stop_reason",
    "optional_int",
    "split_system_messages",
]
