"""Anthropic Messages API adapter."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from ..config import AnthropicOptions
from ..decoders import DecodedRecord
from ..errors import DecodeError
from ..message import (
    AIResponse,
    AssistantMessage,
    ChatMessage,
    ImageContent,
    MessageContent,
    MessageRole,
    StopReason,
    TextContent,
    TokenUsage,
    ToolResultContent,
    ToolUseContent,
    new_message_id,
)
from .base import AIProviderCapabilities, ChatProvider, ChatRequest, VendorRequest
from .stream import StreamAssembler
from .toolbridge import coerce_tool_input
from .utils import (
    ensure_mapping,
    ensure_sequence,
    map_stop_reason,
    optional_int,
    split_system_messages,
)

LOGGER = logging.getLogger(__name__)

STOP_REASONS = {
    "end_turn": StopReason.END_TURN,
    "tool_use": StopReason.TOOL_USE,
    "max_tokens": StopReason.MAX_TOKENS,
    "stop_sequence": StopReason.STOP_SEQUENCE,
}


class AnthropicAdapter(ChatProvider):
    """Talk to ``/v1/messages`` using content blocks and SSE streaming."""

    provider_id = "anthropic"
    default_model = "claude-sonnet-4-20250514"
    default_base_url = "https://api.anthropic.com"
    credential_names = ("ANTHROPIC_API_KEY",)
    fallback_models = (
        "claude-sonnet-4-20250514",
        "claude-opus-4-20250514",
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
        "claude-3-opus-20240229",
    )

    def capabilities(self) -> AIProviderCapabilities:
        return AIProviderCapabilities(
            tool_use=True,
            streaming=True,
            vision=True,
            system_messages=True,
            max_context_tokens=200000,
            max_output_tokens=8192,
        )

    @property
    def options(self) -> AnthropicOptions:
        return self._config.resolved_options()  # type: ignore[return-value]

    def _headers(self, api_key: str | None) -> dict[str, str]:
        return {
            "x-api-key": api_key or "",
            "anthropic-version": self.options.api_version,
            "content-type": "application/json",
        }

    def _chat_request(
        self,
        request: ChatRequest,
        *,
        model: str,
        api_key: str | None,
        stream: bool,
    ) -> VendorRequest:
        system, turns = split_system_messages(request.messages, request.system)
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": request.max_tokens or self.options.default_max_tokens,
            "messages": messages_to_anthropic(turns),
        }
        if system:
            payload["system"] = system
        if request.tools:
            payload["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters_schema(),
                }
                for tool in request.tools
            ]
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if stream:
            payload["stream"] = True

        return VendorRequest(
            method="POST",
            url=f"{self.base_url}/v1/messages",
            json=payload,
            headers=self._headers(api_key),
        )

    def _parse_response(self, payload: Any, *, model: str) -> AIResponse:
        body = ensure_mapping(payload, path="response")
        content: list[MessageContent] = []
        for index, raw_block in enumerate(ensure_sequence(body.get("content"), path="content")):
            block = ensure_mapping(raw_block, path=f"content[{index}]")
            block_type = block.get("type")
            if block_type == "text":
                content.append(TextContent(text=str(block.get("text", ""))))
            elif block_type == "tool_use":
                try:
                    arguments = coerce_tool_input(block.get("input"))
                    content.append(
                        ToolUseContent(
                            id=str(block.get("id", "")),
                            name=str(block.get("name", "")),
                            input=arguments,
                        )
                    )
                except (TypeError, ValueError) as exc:
                    msg = f"content[{index}] is not a valid tool_use block"
                    raise DecodeError(msg) from exc

        usage_payload = body.get("usage")
        usage = None
        if isinstance(usage_payload, dict):
            usage = TokenUsage(
                input_tokens=optional_int(usage_payload.get("input_tokens")) or 0,
                output_tokens=optional_int(usage_payload.get("output_tokens")) or 0,
            )

        message = AssistantMessage(id=str(body.get("id") or new_message_id()), content=tuple(content))
        stop_reason = map_stop_reason(body.get("stop_reason"), STOP_REASONS, provider=self.name)
        return AIResponse(message=message, stop_reason=stop_reason, usage=usage)

    def _stream_normalizer(self, assembler: StreamAssembler, *, model: str) -> "AnthropicStreamNormalizer":
        return AnthropicStreamNormalizer(assembler, provider=self.name)

    async def _fetch_models(self) -> list[str]:
        api_key = await self._require_api_key()
        body = await self._request_json(
            VendorRequest(method="GET", url=f"{self.base_url}/v1/models", headers=self._headers(api_key))
        )
        data = ensure_sequence(ensure_mapping(body, path="models").get("data"), path="data")
        models = [str(item["id"]) for item in data if isinstance(item, dict) and item.get("id")]
        LOGGER.debug("%s: fetched %d models", self.name, len(models))
        return models


class AnthropicStreamNormalizer:
    """Apply Anthropic SSE events to a :class:`StreamAssembler`."""

    def __init__(self, assembler: StreamAssembler, *, provider: str) -> None:
        self._assembler = assembler
        self._provider = provider
        self._ignored_blocks: set[int] = set()

    def handle(self, record: DecodedRecord) -> None:
        payload = ensure_mapping(record.payload, path="event")
        event_type = payload.get("type") or record.event

        if event_type == "message_start":
            message = payload.get("message")
            message_id = None
            if isinstance(message, dict):
                message_id = message.get("id")
                usage = message.get("usage")
                if isinstance(usage, dict):
                    self._assembler.set_usage(
                        input_tokens=optional_int(usage.get("input_tokens")),
                        output_tokens=optional_int(usage.get("output_tokens")),
                    )
            self._assembler.start(message_id if isinstance(message_id, str) else None)
        elif event_type == "content_block_start":
            self._start_block(payload)
        elif event_type == "content_block_delta":
            self._apply_delta(payload)
        elif event_type == "content_block_stop":
            index = self._index(payload)
            if index in self._ignored_blocks:
                return
            self._assembler.close(index)
        elif event_type == "message_delta":
            delta = payload.get("delta")
            if isinstance(delta, dict) and delta.get("stop_reason") is not None:
                self._assembler.set_stop_reason(
                    map_stop_reason(delta.get("stop_reason"), STOP_REASONS, provider=self._provider)
                )
            usage = payload.get("usage")
            if isinstance(usage, dict):
                self._assembler.set_usage(output_tokens=optional_int(usage.get("output_tokens")))
        elif event_type == "error":
            error = payload.get("error")
            error_type, message = "error", "unknown stream error"
            if isinstance(error, dict):
                error_type = str(error.get("type") or error_type)
                message = str(error.get("message") or message)
            raise self._assembler.fail(error_type, message)
        else:
            # ping, message_stop and future event types carry nothing we need
            self._assembler.start()

    def finish(self) -> AIResponse:
        return self._assembler.finish()

    def _start_block(self, payload: dict[str, Any]) -> None:
        index = self._index(payload)
        block = ensure_mapping(payload.get("content_block"), path="content_block")
        block_type = block.get("type")
        if block_type == "text":
            self._assembler.open_text(index)
            self._assembler.append_text(index, str(block.get("text") or ""))
        elif block_type == "tool_use":
            self._assembler.open_tool(
                index,
                tool_id=str(block.get("id") or ""),
                tool_name=str(block.get("name") or ""),
            )
        else:
            LOGGER.debug("%s: ignoring %s block at index %d", self._provider, block_type, index)
            self._ignored_blocks.add(index)

    def _apply_delta(self, payload: dict[str, Any]) -> None:
        index = self._index(payload)
        if index in self._ignored_blocks:
            return
        delta = ensure_mapping(payload.get("delta"), path="delta")
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            self._assembler.append_text(index, str(delta.get("text") or ""))
        elif delta_type == "input_json_delta":
            self._assembler.append_tool_json(index, str(delta.get("partial_json") or ""))

    def _index(self, payload: dict[str, Any]) -> int:
        index = optional_int(payload.get("index"))
        if index is None:
            msg = f"{payload.get('type')} event is missing an integer index"
            raise DecodeError(msg)
        return index


def messages_to_anthropic(turns: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    """Encode non-system turns, merging consecutive turns of the same role."""

    encoded: list[dict[str, Any]] = []
    for message in turns:
        role = "assistant" if message.role is MessageRole.ASSISTANT else "user"
        blocks = [_block_to_anthropic(block) for block in message.content]
        if not blocks:
            continue
        if encoded and encoded[-1]["role"] == role:
            encoded[-1]["content"].extend(blocks)
        else:
            encoded.append({"role": role, "content": blocks})
    return encoded


def _block_to_anthropic(block: MessageContent) -> dict[str, Any]:
    if isinstance(block, TextContent):
        return {"type": "text", "text": block.text}
    if isinstance(block, ImageContent):
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": block.media_type, "data": block.data},
        }
    if isinstance(block, ToolUseContent):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.plain_input()}
    if isinstance(block, ToolResultContent):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content_text(),
            "is_error": block.is_error,
        }
    msg = f"unsupported content block {type(block).__name__}"
    raise TypeError(msg)


__all__ = ["AnthropicAdapter", "AnthropicStreamNormalizer", "STOP_REASONS", "messages_to_anthropic"]
