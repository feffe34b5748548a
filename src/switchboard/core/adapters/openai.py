"""OpenAI chat-completions adapter with index-keyed tool call streaming."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..config import OpenAIOptions
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
from .toolbridge import ParsedToolArguments, parse_tool_arguments
from .utils import (
    ensure_mapping,
    ensure_sequence,
    map_stop_reason,
    optional_int,
    split_system_messages,
)

LOGGER = logging.getLogger(__name__)

FINISH_REASONS = {
    "stop": StopReason.END_TURN,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "length": StopReason.MAX_TOKENS,
}

_CHAT_MODEL_PATTERN = re.compile(r"^(gpt-|o1|o3)")
_COMPLETION_TOKEN_MODELS = ("o1", "o3", "o4", "gpt-5")


class OpenAIAdapter(ChatProvider):
    """Translate switchboard requests to ``/chat/completions``."""

    provider_id = "openai"
    default_model = "gpt-4o"
    default_base_url = "https://api.openai.com/v1"
    credential_names = ("OPENAI_API_KEY",)
    fallback_models = (
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-4-turbo",
        "gpt-4",
        "gpt-3.5-turbo",
        "o1",
        "o1-mini",
        "o1-preview",
        "o3-mini",
    )

    def capabilities(self) -> AIProviderCapabilities:
        return AIProviderCapabilities(
            tool_use=True,
            streaming=True,
            vision=True,
            system_messages=True,
            max_context_tokens=128000,
            max_output_tokens=4096,
        )

    @property
    def options(self) -> OpenAIOptions:
        return self._config.resolved_options()  # type: ignore[return-value]

    def _headers(self, api_key: str | None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key or ''}",
            "Content-Type": "application/json",
        }
        if self.options.organization:
            headers["OpenAI-Organization"] = self.options.organization
        return headers

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
            "messages": messages_to_openai(turns, system=system),
        }

        max_tokens = request.max_tokens or self.options.default_max_tokens
        if max_tokens is not None:
            payload[_max_tokens_key(model)] = max_tokens
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters_schema(),
                    },
                }
                for tool in request.tools
            ]
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}

        return VendorRequest(
            method="POST",
            url=f"{self.base_url}/chat/completions",
            json=payload,
            headers=self._headers(api_key),
        )

    def _parse_response(self, payload: Any, *, model: str) -> AIResponse:
        body = ensure_mapping(payload, path="response")
        choices = ensure_sequence(body.get("choices"), path="choices")
        if not choices:
            msg = "OpenAI response missing choices"
            raise DecodeError(msg)
        choice = ensure_mapping(choices[0], path="choices[0]")
        message = ensure_mapping(choice.get("message") or {}, path="choices[0].message")

        content: list[MessageContent] = []
        text = message.get("content")
        if isinstance(text, str) and text:
            content.append(TextContent(text=text))

        for index, raw_call in enumerate(ensure_sequence(message.get("tool_calls"), path="tool_calls")):
            tool_use = self._decode_tool_call(raw_call, index=index)
            if tool_use is not None:
                content.append(tool_use)

        usage = None
        usage_payload = body.get("usage")
        if isinstance(usage_payload, dict):
            usage = TokenUsage(
                input_tokens=optional_int(usage_payload.get("prompt_tokens")) or 0,
                output_tokens=optional_int(usage_payload.get("completion_tokens")) or 0,
            )

        stop_reason = map_stop_reason(choice.get("finish_reason"), FINISH_REASONS, provider=self.name)
        assistant = AssistantMessage(id=str(body.get("id") or new_message_id()), content=tuple(content))
        return AIResponse(message=assistant, stop_reason=stop_reason, usage=usage)

    def _decode_tool_call(self, raw_call: Any, *, index: int) -> ToolUseContent | None:
        call = ensure_mapping(raw_call, path=f"tool_calls[{index}]")
        function = ensure_mapping(call.get("function") or {}, path=f"tool_calls[{index}].function")
        call_id = call.get("id")
        name = function.get("name")
        if not isinstance(call_id, str) or not call_id or not isinstance(name, str) or not name:
            msg = f"tool call at index {index} is missing an id or function name"
            raise DecodeError(msg)

        raw_arguments = function.get("arguments") or ""
        if not isinstance(raw_arguments, str):
            raw_arguments = json.dumps(raw_arguments)
        outcome = parse_tool_arguments(raw_arguments, index=index, tool_id=call_id, tool_name=name)
        if isinstance(outcome, ParsedToolArguments):
            return ToolUseContent(id=call_id, name=name, input=outcome.arguments)
        LOGGER.warning("%s: dropping tool call: %s", self.name, outcome)
        return None

    def _stream_normalizer(self, assembler: StreamAssembler, *, model: str) -> "OpenAIStreamNormalizer":
        return OpenAIStreamNormalizer(assembler, provider=self.name)

    async def _fetch_models(self) -> list[str]:
        api_key = await self._require_api_key()
        body = await self._request_json(
            VendorRequest(method="GET", url=f"{self.base_url}/models", headers=self._headers(api_key))
        )
        data = ensure_sequence(ensure_mapping(body, path="models").get("data"), path="data")
        models = sorted(
            str(item["id"])
            for item in data
            if isinstance(item, dict) and isinstance(item.get("id"), str) and _CHAT_MODEL_PATTERN.match(item["id"])
        )
        LOGGER.debug("%s: fetched %d chat models", self.name, len(models))
        return models


@dataclass
class _ToolCallState:
    """Track incremental metadata for a streaming tool call."""

    call_id: str | None = None
    name: str | None = None
    block_index: int | None = None
    pending: list[str] = field(default_factory=list)

    def update_from_payload(self, payload: Mapping[str, Any], *, index: int) -> None:
        call_id = payload.get("id")
        if call_id is not None:
            if not isinstance(call_id, str) or not call_id:
                msg = f"tool call at index {index} is missing a valid id"
                raise DecodeError(msg)
            self.call_id = call_id

        function_payload = payload.get("function")
        if function_payload is not None and not isinstance(function_payload, Mapping):
            msg = f"tool call at index {index} must include a mapping 'function' payload"
            raise DecodeError(msg)

        if isinstance(function_payload, Mapping):
            name_value = function_payload.get("name")
            if name_value:
                if not isinstance(name_value, str):
                    msg = f"tool call at index {index} is missing a valid function name"
                    raise DecodeError(msg)
                self.name = name_value

    def extract_arguments(self, function_payload: Any, *, index: int) -> str | None:
        if not isinstance(function_payload, Mapping):
            return None
        fragment = function_payload.get("arguments")
        if fragment is None:
            return None
        if not isinstance(fragment, str):
            msg = f"tool call at index {index} arguments must be a string fragment"
            raise DecodeError(msg)
        return fragment or None

    @property
    def ready(self) -> bool:
        return self.call_id is not None and self.name is not None


class OpenAIStreamNormalizer:
    """Normalize OpenAI streaming chunks into canonical events.

    Text deltas go to one text block. Each tool call is keyed by the vendor's
    ``index`` and becomes its own block once its id and name are known;
    argument fragments that arrive earlier are held until then.
    """

    def __init__(self, assembler: StreamAssembler, *, provider: str) -> None:
        self._assembler = assembler
        self._provider = provider
        self._text_index: int | None = None
        self._tool_states: dict[int, _ToolCallState] = {}

    def handle(self, record: DecodedRecord) -> None:
        chunk = ensure_mapping(record.payload, path="chunk")

        error = chunk.get("error")
        if isinstance(error, Mapping):
            raise self._assembler.fail(
                str(error.get("type") or error.get("code") or "error"),
                str(error.get("message") or "unknown stream error"),
            )

        chunk_id = chunk.get("id")
        self._assembler.start(chunk_id if isinstance(chunk_id, str) and chunk_id else None)

        usage = chunk.get("usage")
        if isinstance(usage, Mapping):
            self._assembler.set_usage(
                input_tokens=optional_int(usage.get("prompt_tokens")),
                output_tokens=optional_int(usage.get("completion_tokens")),
            )

        choices = ensure_sequence(chunk.get("choices"), path="choices")
        if not choices:
            return
        choice = ensure_mapping(choices[0], path="choices[0]")
        delta = ensure_mapping(choice.get("delta") or {}, path="choices[0].delta")

        content_fragment = delta.get("content")
        if isinstance(content_fragment, str) and content_fragment:
            if self._text_index is None:
                self._text_index = self._assembler.next_index
                self._assembler.open_text(self._text_index)
            self._assembler.append_text(self._text_index, content_fragment)

        for position, item in enumerate(ensure_sequence(delta.get("tool_calls"), path="tool_calls")):
            self._apply_tool_delta(item, position=position)

        finish_reason = choice.get("finish_reason")
        if finish_reason is not None:
            self._assembler.set_stop_reason(
                map_stop_reason(str(finish_reason), FINISH_REASONS, provider=self._provider)
            )

    def finish(self) -> AIResponse:
        for raw_index, state in sorted(self._tool_states.items()):
            if state.block_index is None and state.pending:
                LOGGER.warning(
                    "%s: discarding tool call at index %d without id or name", self._provider, raw_index
                )
        return self._assembler.finish()

    def _apply_tool_delta(self, item: Any, *, position: int) -> None:
        mapping = ensure_mapping(item, path=f"tool_calls[{position}]")
        raw_index = optional_int(mapping.get("index"))
        if raw_index is None:
            raw_index = position

        state = self._tool_states.setdefault(raw_index, _ToolCallState())
        state.update_from_payload(mapping, index=raw_index)
        fragment = state.extract_arguments(mapping.get("function"), index=raw_index)
        if fragment is not None:
            state.pending.append(fragment)

        if state.block_index is None:
            if not state.ready:
                return
            state.block_index = self._assembler.next_index
            self._assembler.open_tool(
                state.block_index,
                tool_id=state.call_id or "",
                tool_name=state.name or "",
            )

        pending, state.pending = state.pending, []
        for piece in pending:
            self._assembler.append_tool_json(state.block_index, piece)


def messages_to_openai(turns: Sequence[ChatMessage], *, system: str | None = None) -> list[dict[str, Any]]:
    """Convert switchboard messages into the Chat Completions format."""

    converted: list[dict[str, Any]] = []
    if system:
        converted.append({"role": "system", "content": system})

    for message in turns:
        if message.role is MessageRole.ASSISTANT:
            converted.append(_assistant_to_openai(message))
            continue

        remaining: list[MessageContent] = []
        for block in message.content:
            if isinstance(block, ToolResultContent):
                converted.append(
                    {"role": "tool", "tool_call_id": block.tool_use_id, "content": block.content_text()}
                )
            else:
                remaining.append(block)
        if remaining:
            converted.append({"role": "user", "content": _user_content(remaining)})

    return converted


def _assistant_to_openai(message: ChatMessage) -> dict[str, Any]:
    text = "".join(block.text for block in message.content if isinstance(block, TextContent))
    tool_calls = [
        {
            "id": block.id,
            "type": "function",
            "function": {"name": block.name, "arguments": json.dumps(block.plain_input())},
        }
        for block in message.content
        if isinstance(block, ToolUseContent)
    ]
    payload: dict[str, Any] = {"role": "assistant", "content": text or None}
    if tool_calls:
        payload["tool_calls"] = tool_calls
    return payload


def _user_content(blocks: Sequence[MessageContent]) -> str | list[dict[str, Any]]:
    if not any(isinstance(block, ImageContent) for block in blocks):
        return "".join(block.text for block in blocks if isinstance(block, TextContent))

    parts: list[dict[str, Any]] = []
    for block in blocks:
        if isinstance(block, TextContent):
            parts.append({"type": "text", "text": block.text})
        elif isinstance(block, ImageContent):
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{block.media_type};base64,{block.data}"},
                }
            )
    return parts


def _max_tokens_key(model: str) -> str:
    if model.startswith(_COMPLETION_TOKEN_MODELS):
        return "max_completion_tokens"
    return "max_tokens"


__all__ = ["FINISH_REASONS", "OpenAIAdapter", "OpenAIStreamNormalizer", "messages_to_openai"]
