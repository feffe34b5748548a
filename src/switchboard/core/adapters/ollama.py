"""Ollama local daemon adapter (newline-delimited JSON streaming)."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from ..cancellation import CancellationToken
from ..config import OllamaOptions
from ..decoders import DecodedRecord, NDJSONDecoder, StreamDecoder
from ..errors import Cancelled, DecodeError, GatewayError
from ..http import RetryPolicy
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
from .utils import ensure_mapping, ensure_sequence, map_stop_reason, optional_int, split_system_messages

LOGGER = logging.getLogger(__name__)

DONE_REASONS = {
    "stop": StopReason.END_TURN,
    "length": StopReason.MAX_TOKENS,
}

_PROBE_POLICY = RetryPolicy(max_attempts=1)


class OllamaAdapter(ChatProvider):
    """Talk to a local ``ollama serve`` over ``/api/chat``; no credential."""

    provider_id = "ollama"
    default_model = "llama2"
    default_base_url = "http://localhost:11434"
    requires_credential = False
    fallback_models = ("llama2",)

    def capabilities(self) -> AIProviderCapabilities:
        # Varies by model; advertise conservative defaults.
        return AIProviderCapabilities(
            tool_use=False,
            streaming=True,
            vision=False,
            system_messages=True,
            max_context_tokens=8192,
            max_output_tokens=4096,
        )

    @property
    def options(self) -> OllamaOptions:
        return self._config.resolved_options()  # type: ignore[return-value]

    async def is_available(self) -> bool:
        """Probe ``/api/tags``; any failure means unavailable."""

        try:
            await self._request_json(
                VendorRequest(
                    method="GET",
                    url=f"{self.base_url}/api/tags",
                    timeout=self.options.availability_timeout,
                ),
                policy=_PROBE_POLICY,
            )
        except Exception as exc:  # availability checks must not fail the caller
            LOGGER.debug("%s: daemon not reachable: %s", self.name, exc)
            return False
        return True

    async def has_model(self, model_name: str) -> bool:
        """Return whether ``model_name`` (with or without a tag) is installed."""

        models = await self.list_models()
        return any(model == model_name or model.startswith(f"{model_name}:") for model in models)

    async def pull_model(
        self,
        model_name: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> bool:
        """Ask the daemon to download ``model_name``; returns ``True`` on success."""

        try:
            await self._request_json(
                VendorRequest(
                    method="POST",
                    url=f"{self.base_url}/api/pull",
                    json={"name": model_name, "stream": False},
                    timeout=httpx.Timeout(None),
                ),
                cancel_token=cancel_token,
            )
        except Cancelled:
            raise
        except GatewayError as exc:
            LOGGER.warning("%s: pulling %s failed: %s", self.name, model_name, exc)
            return False
        LOGGER.info("%s: pulled model %s", self.name, model_name)
        return True

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
            "messages": messages_to_ollama(turns, system=system),
            "stream": stream,
        }

        options: dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        if options:
            payload["options"] = options
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
        if self.options.keep_alive:
            payload["keep_alive"] = self.options.keep_alive

        return VendorRequest(
            method="POST",
            url=f"{self.base_url}/api/chat",
            json=payload,
            headers={"Content-Type": "application/json"},
        )

    def _parse_response(self, payload: Any, *, model: str) -> AIResponse:
        body = ensure_mapping(payload, path="response")
        if isinstance(body.get("error"), str):
            msg = f"{self.name}: {body['error']}"
            raise DecodeError(msg)

        message = ensure_mapping(body.get("message") or {}, path="message")
        content: list[MessageContent] = []
        text = message.get("content")
        if isinstance(text, str) and text:
            content.append(TextContent(text=text))

        tool_calls = ensure_sequence(message.get("tool_calls"), path="message.tool_calls")
        for index, raw_call in enumerate(tool_calls, start=1):
            name, arguments = _decode_tool_call(raw_call)
            content.append(ToolUseContent(id=f"tool-{index}", name=name, input=arguments))

        stop_reason = map_stop_reason(body.get("done_reason"), DONE_REASONS, provider=self.name)
        if tool_calls:
            stop_reason = StopReason.TOOL_USE

        assistant = AssistantMessage(id=new_message_id(), content=tuple(content))
        return AIResponse(message=assistant, stop_reason=stop_reason, usage=_usage(body))

    def _stream_decoder(self) -> StreamDecoder:
        return NDJSONDecoder()

    def _stream_normalizer(self, assembler: StreamAssembler, *, model: str) -> "OllamaStreamNormalizer":
        return OllamaStreamNormalizer(assembler, provider=self.name)

    async def _fetch_models(self) -> list[str]:
        body = await self._request_json(VendorRequest(method="GET", url=f"{self.base_url}/api/tags"))
        entries = ensure_sequence(ensure_mapping(body, path="tags").get("models"), path="models")
        models = [
            str(entry["name"])
            for entry in entries
            if isinstance(entry, Mapping) and isinstance(entry.get("name"), str)
        ]
        LOGGER.debug("%s: found %d local models", self.name, len(models))
        return models


class OllamaStreamNormalizer:
    """Apply ``/api/chat`` NDJSON chunks to a single synthesized text block."""

    def __init__(self, assembler: StreamAssembler, *, provider: str) -> None:
        self._assembler = assembler
        self._provider = provider
        self._tool_counter = 0
        self._done_reason: str | None = None

    def handle(self, record: DecodedRecord) -> None:
        chunk = ensure_mapping(record.payload, path="chunk")

        error = chunk.get("error")
        if error:
            raise self._assembler.fail("ollama_error", str(error))

        if not self._assembler.started:
            self._assembler.start()
            self._assembler.open_text(0)

        message = chunk.get("message")
        if isinstance(message, Mapping):
            text = message.get("content")
            if isinstance(text, str) and text:
                self._assembler.append_text(0, text)
            for raw_call in ensure_sequence(message.get("tool_calls"), path="message.tool_calls"):
                name, arguments = _decode_tool_call(raw_call)
                self._tool_counter += 1
                self._assembler.add_tool_call(
                    self._assembler.next_index,
                    tool_id=f"tool-{self._tool_counter}",
                    tool_name=name,
                    arguments=arguments,
                )

        if chunk.get("done"):
            self._assembler.set_usage(
                input_tokens=optional_int(chunk.get("prompt_eval_count")),
                output_tokens=optional_int(chunk.get("eval_count")),
            )
            done_reason = chunk.get("done_reason")
            if isinstance(done_reason, str):
                self._done_reason = done_reason

    def finish(self) -> AIResponse:
        stop_reason = map_stop_reason(self._done_reason, DONE_REASONS, provider=self._provider)
        if self._tool_counter:
            stop_reason = StopReason.TOOL_USE
        self._assembler.set_stop_reason(stop_reason)
        return self._assembler.finish()


def messages_to_ollama(turns: Sequence[ChatMessage], *, system: str | None = None) -> list[dict[str, Any]]:
    """Encode turns as ``{role, content, images?, tool_calls?}`` messages."""

    encoded: list[dict[str, Any]] = []
    if system:
        encoded.append({"role": "system", "content": system})
    tool_names: dict[str, str] = {}

    for message in turns:
        role = "assistant" if message.role is MessageRole.ASSISTANT else "user"
        text_parts: list[str] = []
        images: list[str] = []
        tool_calls: list[dict[str, Any]] = []
        for block in message.content:
            if isinstance(block, TextContent):
                text_parts.append(block.text)
            elif isinstance(block, ImageContent):
                images.append(block.data)
            elif isinstance(block, ToolUseContent):
                tool_names[block.id] = block.name
                tool_calls.append({"function": {"name": block.name, "arguments": block.plain_input()}})
            elif isinstance(block, ToolResultContent):
                encoded.append(_tool_result_message(block, tool_names.get(block.tool_use_id)))

        if not text_parts and not images and not tool_calls:
            continue
        entry: dict[str, Any] = {"role": role, "content": "".join(text_parts)}
        if images:
            entry["images"] = images
        if tool_calls:
            entry["tool_calls"] = tool_calls
        encoded.append(entry)
    return encoded


def _tool_result_message(block: ToolResultContent, tool_name: str | None) -> dict[str, Any]:
    # Ollama has no call ids; the id and error flag travel in the text.
    marker = " (ERROR)" if block.is_error else ""
    entry: dict[str, Any] = {
        "role": "tool",
        "content": f"[Tool result for {block.tool_use_id}{marker}]\n{block.content_text()}",
    }
    if tool_name:
        entry["tool_name"] = tool_name
    return entry


def _decode_tool_call(raw_call: Any) -> tuple[str, dict[str, Any]]:
    call = ensure_mapping(raw_call, path="tool_call")
    function = ensure_mapping(call.get("function") or {}, path="tool_call.function")
    name = function.get("name")
    if not isinstance(name, str) or not name:
        msg = "tool call has no function name"
        raise DecodeError(msg)
    try:
        return name, coerce_tool_input(function.get("arguments"))
    except ValueError as exc:
        msg = f"tool call '{name}' has non-object arguments"
        raise DecodeError(msg) from exc


def _usage(body: Mapping[str, Any]) -> TokenUsage | None:
    input_tokens = optional_int(body.get("prompt_eval_count"))
    output_tokens = optional_int(body.get("eval_count"))
    if input_tokens is None and output_tokens is None:
        return None
    return TokenUsage(input_tokens=input_tokens or 0, output_tokens=output_tokens or 0)


__all__ = ["DONE_REASONS", "OllamaAdapter", "OllamaStreamNormalizer", "messages_to_ollama"]
