from __future__ import annotations

import asyncio

import httpx
import pytest

from switchboard.core.adapters.base import ChatRequest
from switchboard.core.adapters.ollama import OllamaAdapter, messages_to_ollama
from switchboard.core.cancellation import CancellationToken
from switchboard.core.config import AIProviderConfig, OllamaOptions
from switchboard.core.errors import Cancelled, DecodeError, StreamVendorError
from switchboard.core.events import MessageDelta
from switchboard.core.http import RetryPolicy
from switchboard.core.message import (
    ChatMessage,
    ImageContent,
    MessageRole,
    StopReason,
    TextContent,
    TokenUsage,
    ToolResultContent,
    ToolUseContent,
)
from tests.fixtures.http_fake import FakeTransport, json_response, ndjson_body, streaming_response
from tests.harness import EventRecorder, assert_well_formed, collect_stream

NO_BACKOFF = RetryPolicy(max_attempts=2, backoff_base=0, backoff_max=0)


def _adapter(transport: FakeTransport, **overrides) -> OllamaAdapter:
    config = AIProviderConfig(type="ollama", name="local", **overrides)
    return OllamaAdapter(config, http_client=transport.client(), retry_policy=NO_BACKOFF)


def _request(**kwargs) -> ChatRequest:
    kwargs.setdefault("messages", [ChatMessage.text(MessageRole.USER, "Why is the sky blue?")])
    return ChatRequest(**kwargs)


def _ndjson(*records: dict) -> httpx.Response:
    return streaming_response(ndjson_body(*records), content_type="application/x-ndjson", chunk_size=13)


def test_chat_needs_no_credential_and_sends_options() -> None:
    transport = FakeTransport(
        json_response(
            {
                "message": {"role": "assistant", "content": "Rayleigh scattering."},
                "done": True,
                "done_reason": "stop",
                "prompt_eval_count": 26,
                "eval_count": 5,
            }
        )
    )
    adapter = _adapter(transport, model="llama3", options=OllamaOptions(keep_alive="5m"))

    response = asyncio.run(adapter.chat(_request(system="Answer briefly.", temperature=0.1, max_tokens=50)))

    assert str(transport.last_request.url) == "http://localhost:11434/api/chat"
    assert "authorization" not in transport.last_request.headers
    assert transport.last_json() == {
        "model": "llama3",
        "messages": [
            {"role": "system", "content": "Answer briefly."},
            {"role": "user", "content": "Why is the sky blue?"},
        ],
        "stream": False,
        "options": {"temperature": 0.1, "num_predict": 50},
        "keep_alive": "5m",
    }
    assert response.text == "Rayleigh scattering."
    assert response.stop_reason is StopReason.END_TURN
    assert response.usage == TokenUsage(26, 5)


def test_chat_error_body_is_a_decode_error() -> None:
    transport = FakeTransport(json_response({"error": "model 'nope' not found"}))

    with pytest.raises(DecodeError, match="not found"):
        asyncio.run(_adapter(transport).chat(_request()))


def test_streaming_synthesizes_single_text_block() -> None:
    transport = FakeTransport(
        _ndjson(
            {"message": {"role": "assistant", "content": "The"}, "done": False},
            {"message": {"role": "assistant", "content": " sky"}, "done": False},
            {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "length", "prompt_eval_count": 9, "eval_count": 2},
        )
    )

    recorder, response = asyncio.run(collect_stream(_adapter(transport), _request()))

    assert_well_formed(recorder.events)
    assert recorder.types == [
        "message_start",
        "content_block_start",
        "content_block_delta",
        "content_block_delta",
        "content_block_stop",
        "message_delta",
        "message_stop",
    ]
    assert recorder.events[-2] == MessageDelta(stop_reason=StopReason.MAX_TOKENS, usage=TokenUsage(9, 2))
    assert response.text == "The sky"
    assert transport.last_json()["stream"] is True


def test_streaming_tool_calls_follow_text_block() -> None:
    transport = FakeTransport(
        _ndjson(
            {
                "message": {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [{"function": {"name": "get_weather", "arguments": {"city": "Oslo"}}}],
                },
                "done": False,
            },
            {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "stop"},
        )
    )

    recorder, response = asyncio.run(collect_stream(_adapter(transport), _request()))

    assert_well_formed(recorder.events)
    assert [(start.index, start.kind) for start in recorder.block_starts()] == [(0, "text"), (1, "tool_use")]
    assert response.stop_reason is StopReason.TOOL_USE
    assert response.tool_calls == (ToolUseContent(id="tool-1", name="get_weather", input={"city": "Oslo"}),)


def test_streaming_error_line_raises() -> None:
    transport = FakeTransport(_ndjson({"message": {"content": "Hi"}, "done": False}, {"error": "out of memory"}))
    recorder = EventRecorder()

    with pytest.raises(StreamVendorError) as excinfo:
        asyncio.run(_adapter(transport).chat_stream(_request(), recorder))

    assert excinfo.value.type == "ollama_error"
    assert excinfo.value.message == "out of memory"
    assert_well_formed(recorder.events)


def test_is_available_probes_tags_endpoint() -> None:
    transport = FakeTransport(json_response({"models": []}))

    assert asyncio.run(_adapter(transport).is_available()) is True
    assert transport.last_request.url.path == "/api/tags"


def test_is_available_is_false_when_daemon_is_down() -> None:
    transport = FakeTransport(httpx.ConnectError("connection refused"))

    assert asyncio.run(_adapter(transport).is_available()) is False
    assert len(transport.requests) == 1


def test_list_models_and_has_model() -> None:
    tags = {"models": [{"name": "llama3:latest"}, {"name": "mistral:7b"}]}
    transport = FakeTransport(json_response(tags), json_response(tags), json_response(tags))
    adapter = _adapter(transport)

    assert asyncio.run(adapter.list_models()) == ["llama3:latest", "mistral:7b"]
    assert asyncio.run(adapter.has_model("llama3")) is True
    assert asyncio.run(adapter.has_model("phi3")) is False


def test_list_models_falls_back_when_daemon_is_down() -> None:
    transport = FakeTransport(httpx.ConnectError("refused"), httpx.ConnectError("refused"))

    assert asyncio.run(_adapter(transport).list_models()) == ["llama2"]


def test_pull_model_reports_success_and_failure() -> None:
    transport = FakeTransport(json_response({"status": "success"}), json_response({"error": "not found"}, 404))
    adapter = _adapter(transport)

    assert asyncio.run(adapter.pull_model("llama3")) is True
    assert transport.last_json() == {"name": "llama3", "stream": False}
    assert asyncio.run(adapter.pull_model("missing")) is False


def test_pull_model_propagates_cancellation() -> None:
    transport = FakeTransport(json_response({"status": "success"}))
    token = CancellationToken()
    token.cancel("shutdown")

    with pytest.raises(Cancelled):
        asyncio.run(_adapter(transport).pull_model("llama3", cancel_token=token))
    assert transport.requests == []


def test_messages_include_images_tool_calls_and_results() -> None:
    turns = [
        ChatMessage(
            role=MessageRole.USER,
            content=(TextContent("Describe"), ImageContent(media_type="image/jpeg", data="Zm9v")),
        ),
        ChatMessage(role=MessageRole.ASSISTANT, content=(ToolUseContent(id="tool-1", name="zoom", input={"x": 2}),)),
        ChatMessage(role=MessageRole.TOOL, content=(ToolResultContent(tool_use_id="tool-1", content="zoomed"),)),
    ]

    assert messages_to_ollama(turns) == [
        {"role": "user", "content": "Describe", "images": ["Zm9v"]},
        {"role": "assistant", "content": "", "tool_calls": [{"function": {"name": "zoom", "arguments": {"x": 2}}}]},
        {"role": "tool", "content": "[Tool result for tool-1]\nzoomed", "tool_name": "zoom"},
    ]


def test_streaming_reports_eval_count_as_output_tokens() -> None:
    transport = FakeTransport(
        _ndjson(
            {"message": {"role": "assistant", "content": "Hello"}, "done": False},
            {"message": {"role": "assistant", "content": "!"}, "done": False},
            {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "stop", "eval_count": 5},
        )
    )

    recorder, response = asyncio.run(collect_stream(_adapter(transport), _request()))

    assert_well_formed(recorder.events)
    assert response.text == "Hello!"
    assert response.usage.output_tokens == 5
    assert response.stop_reason is StopReason.END_TURN


def test_tool_results_keep_call_id_and_error_flag() -> None:
    turns = [
        ChatMessage(role=MessageRole.ASSISTANT, content=(ToolUseContent(id="call_9", name="explode", input={}),)),
        ChatMessage(
            role=MessageRole.TOOL,
            content=(ToolResultContent(tool_use_id="call_9", content="boom", is_error=True),),
        ),
        ChatMessage(role=MessageRole.TOOL, content=(ToolResultContent(tool_use_id="call_unknown", content="late"),)),
    ]

    encoded = messages_to_ollama(turns)

    assert encoded[1] == {"role": "tool", "content": "[Tool result for call_9 (ERROR)]\nboom", "tool_name": "explode"}
    assert encoded[2] == {"role": "tool", "content": "[Tool result for call_unknown]\nlate"}
