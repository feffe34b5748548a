"""Google Generative Language (Gemini) adapter."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..config import GeminiOptions
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
    thaw_json,
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

FINISH_REASONS = {
    "STOP": StopReason.END_TURN,
    "MAX_TOKENS": StopReason.MAX_TOKENS,
}


class GeminiAdapter(ChatProvider):
    """Talk to ``models/{id}:generateContent`` with the key as a query parameter."""

    provider_id = "google"
    default_model = "gemini-1.5-flash"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    credential_names = ("GEMINI_API_KEY", "GOOGLE_API_KEY")
    fallback_models = (
        "gemini-2.0-flash",
        "gemini-2.0-flash-lite",
        "gemini-1.5-pro",
        "gemini-1.5-flash",
        "gemini-1.0-pro",
    )

    def capabilities(self) -> AIProviderCapabilities:
        return AIProviderCapabilities(
            tool_use=True,
            streaming=True,
            vision=True,
            system_messages=True,
            max_context_tokens=1000000,
            max_output_tokens=8192,
        )

    @property
    def options(self) -> GeminiOptions:
        return self._config.resolved_options()  # type: ignore[return-value]

    def _chat_request(
        self,
        request: ChatRequest,
        *,
        model: str,
        api_key: str | None,
        stream: bool,
    ) -> VendorRequest:
        system, turns = split_system_messages(request.messages, request.system)
        generation_config: dict[str, Any] = {
            "maxOutputTokens": request.max_tokens or self.options.default_max_output_tokens,
        }
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature

        payload: dict[str, Any] = {
            "contents": contents_to_gemini(turns),
            "generationConfig": generation_config,
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if request.tools:
            payload["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": tool.parameters_schema(),
                        }
                        for tool in request.tools
                    ]
                }
            ]

        params = {"key": api_key or ""}
        if stream:
            url = f"{self.base_url}/models/{model}:streamGenerateContent"
            params["alt"] = "sse"
        else:
            url = f"{self.base_url}/models/{model}:generateContent"

        return VendorRequest(
            method="POST",
            url=url,
            json=payload,
            params=params,
            headers={"Content-Type": "application/json"},
        )

    def _parse_response(self, payload: Any, *, model: str) -> AIResponse:
        body = ensure_mapping(payload, path="response")
        candidates = ensure_sequence(body.get("candidates"), path="candidates")
        if not candidates:
            msg = "Gemini response has no candidates"
            raise DecodeError(msg)
        candidate = ensure_mapping(candidates[0], path="candidates[0]")

        content: list[MessageContent] = []
        tool_counter = 0
        for index, raw_part in enumerate(_candidate_parts(candidate)):
            part = ensure_mapping(raw_part, path=f"parts[{index}]")
            if isinstance(part.get("text"), str) and part["text"]:
                if not part.get("thought"):
                    content.append(TextContent(text=part["text"]))
            elif "functionCall" in part:
                tool_counter += 1
                name, arguments = _decode_function_call(part, index=index)
                content.append(
                    ToolUseContent(
                        id=f"tool-{tool_counter}",
                        name=name,
                        input=arguments,
                        signature=_signature(part),
                    )
                )

        stop_reason = map_stop_reason(candidate.get("finishReason"), FINISH_REASONS, provider=self.name)
        if tool_counter and stop_reason is StopReason.END_TURN:
            stop_reason = StopReason.TOOL_USE

        message = AssistantMessage(id=new_message_id(), content=tuple(content))
        return AIResponse(message=message, stop_reason=stop_reason, usage=_usage(body))

    def _stream_normalizer(self, assembler: StreamAssembler, *, model: str) -> "GeminiStreamNormalizer":
        return GeminiStreamNormalizer(assembler, provider=self.name)

    async def _fetch_models(self) -> list[str]:
        api_key = await self._require_api_key()
        body = await self._request_json(
            VendorRequest(
                method="GET",
                url=f"{self.base_url}/models",
                params={"key": api_key or "", "pageSize": "100"},
            )
        )
        entries = ensure_sequence(ensure_mapping(body, path="models").get("models"), path="models")
        names = []
        for entry in entries:
            if not isinstance(entry, Mapping) or not isinstance(entry.get("name"), str):
                continue
            name = entry["name"].removeprefix("models/")
            if name.startswith("gemini"):
                names.append(name)
        return sorted(names, reverse=True)


class GeminiStreamNormalizer:
    """Apply ``alt=sse`` chunks; each ``functionCall`` part is a complete call."""

    def __init__(self, assembler: StreamAssembler, *, provider: str) -> None:
        self._assembler = assembler
        self._provider = provider
        self._tool_counter = 0
        self._finish_reason: str | None = None

    def handle(self, record: DecodedRecord) -> None:
        chunk = ensure_mapping(record.payload, path="chunk")

        error = chunk.get("error")
        if isinstance(error, Mapping):
            raise self._assembler.fail(
                str(error.get("status") or error.get("code") or "error"),
                str(error.get("message") or "unknown stream error"),
            )

        if not self._assembler.started:
            self._assembler.start()
            self._assembler.open_text(0)

        usage = chunk.get("usageMetadata")
        if isinstance(usage, Mapping):
            self._assembler.set_usage(
                input_tokens=optional_int(usage.get("promptTokenCount")),
                output_tokens=optional_int(usage.get("candidatesTokenCount")),
            )

        candidates = ensure_sequence(chunk.get("candidates"), path="candidates")
        if not candidates:
            return
        candidate = ensure_mapping(candidates[0], path="candidates[0]")

        for index, raw_part in enumerate(_candidate_parts(candidate)):
            part = ensure_mapping(raw_part, path=f"parts[{index}]")
            if isinstance(part.get("text"), str) and part["text"]:
                if part.get("thought"):
                    continue
                self._assembler.append_text(0, part["text"])
            elif "functionCall" in part:
                self._tool_counter += 1
                name, arguments = _decode_function_call(part, index=index)
                self._assembler.add_tool_call(
                    self._assembler.next_index,
                    tool_id=f"tool-{self._tool_counter}",
                    tool_name=name,
                    arguments=arguments,
                    signature=_signature(part),
                )

        finish_reason = candidate.get("finishReason")
        if isinstance(finish_reason, str):
            self._finish_reason = finish_reason

    def finish(self) -> AIResponse:
        stop_reason = map_stop_reason(self._finish_reason, FINISH_REASONS, provider=self._provider)
        if self._tool_counter and stop_reason is StopReason.END_TURN:
            stop_reason = StopReason.TOOL_USE
        self._assembler.set_stop_reason(stop_reason)
        return self._assembler.finish()


def contents_to_gemini(turns: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    """Encode non-system turns as Gemini ``contents``."""

    contents: list[dict[str, Any]] = []
    for message in turns:
        role = "model" if message.role is MessageRole.ASSISTANT else "user"
        parts = [_block_to_part(block) for block in message.content]
        if parts:
            contents.append({"role": role, "parts": parts})
    return contents


def _block_to_part(block: MessageContent) -> dict[str, Any]:
    if isinstance(block, TextContent):
        return {"text": block.text}
    if isinstance(block, ImageContent):
        return {"inlineData": {"mimeType": block.media_type, "data": block.data}}
    if isinstance(block, ToolUseContent):
        part: dict[str, Any] = {"functionCall": {"name": block.name, "args": block.plain_input()}}
        if block.signature:
            part["thoughtSignature"] = block.signature
        return part
    if isinstance(block, ToolResultContent):
        # The wire field is the function name, but only the call id is known here.
        response = thaw_json(block.content)
        if not isinstance(response, dict):
            response = {"result": response}
        return {"functionResponse": {"name": block.tool_use_id, "response": response}}
    msg = f"unsupported content block {type(block).__name__}"
    raise TypeError(msg)


def _candidate_parts(candidate: Mapping[str, Any]) -> Sequence[Any]:
    content = candidate.get("content")
    if not isinstance(content, Mapping):
        return ()
    return ensure_sequence(content.get("parts"), path="content.parts")


def _decode_function_call(part: Mapping[str, Any], *, index: int) -> tuple[str, dict[str, Any]]:
    call = ensure_mapping(part.get("functionCall"), path=f"parts[{index}].functionCall")
    name = call.get("name")
    if not isinstance(name, str) or not name:
        msg = f"functionCall at part {index} has no name"
        raise DecodeError(msg)
    try:
        arguments = coerce_tool_input(call.get("args"))
    except ValueError as exc:
        msg = f"functionCall '{name}' has non-object args"
        raise DecodeError(msg) from exc
    return name, arguments


def _signature(part: Mapping[str, Any]) -> str | None:
    signature = part.get("thoughtSignature")
    return signature if isinstance(signature, str) and signature else None


def _usage(body: Mapping[str, Any]) -> TokenUsage | None:
    usage = body.get("usageMetadata")
    if not isinstance(usage, Mapping):
        return None
    return TokenUsage(
        input_tokens=optional_int(usage.get("promptTokenCount")) or 0,
        output_tokens=optional_int(usage.get("candidatesTokenCount")) or 0,
    )


__all__ = ["FINISH_REASONS", "GeminiAdapter", "GeminiStreamNormalizer", "contents_to_gemini"]
