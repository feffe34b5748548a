from __future__ import annotations

import pytest

from switchboard.core.adapters.stream import StreamAssembler
from switchboard.core.cancellation import CancellationToken
from switchboard.core.errors import Cancelled, DecodeError, StreamVendorError
from switchboard.core.events import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    InputJsonDelta,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamError,
    TextDelta,
)
from switchboard.core.message import StopReason, TextContent, TokenUsage, ToolUseContent
from tests.harness import EventRecorder, assert_well_formed


def test_text_and_tool_blocks_produce_canonical_sequence() -> None:
    recorder = EventRecorder()
    assembler = StreamAssembler(recorder, provider="test")

    assembler.start("msg_1")
    assembler.open_text(0)
    assembler.append_text(0, "Hel")
    assembler.append_text(0, "lo")
    assembler.close(0)
    assembler.open_tool(1, tool_id="call_1", tool_name="lookup")
    assembler.append_tool_json(1, '{"q": ')
    assembler.append_tool_json(1, '"x"}')
    assembler.set_stop_reason(StopReason.TOOL_USE)
    assembler.set_usage(input_tokens=3, output_tokens=5)
    response = assembler.finish()

    assert recorder.events == [
        MessageStart(id="msg_1"),
        ContentBlockStart(index=0, kind="text"),
        ContentBlockDelta(index=0, delta=TextDelta(text="Hel")),
        ContentBlockDelta(index=0, delta=TextDelta(text="lo")),
        ContentBlockStop(index=0),
        ContentBlockStart(index=1, kind="tool_use", tool_id="call_1", tool_name="lookup"),
        ContentBlockDelta(index=1, delta=InputJsonDelta(partial_json='{"q": ')),
        ContentBlockDelta(index=1, delta=InputJsonDelta(partial_json='"x"}')),
        ContentBlockStop(index=1),
        MessageDelta(stop_reason=StopReason.TOOL_USE, usage=TokenUsage(3, 5)),
        MessageStop(),
    ]
    assert response.message.id == "msg_1"
    assert response.message.content == (
        TextContent("Hello"),
        ToolUseContent(id="call_1", name="lookup", input={"q": "x"}),
    )
    assert response.usage == TokenUsage(3, 5)


def test_finish_closes_open_blocks_in_index_order() -> None:
    recorder = EventRecorder()
    assembler = StreamAssembler(recorder, provider="test")
    assembler.open_text(0)
    assembler.append_text(0, "a")
    assembler.open_tool(2, tool_id="t", tool_name="n")

    assembler.finish()

    stops = [event.index for event in recorder.events if isinstance(event, ContentBlockStop)]
    assert stops == [0, 2]
    assert_well_formed(recorder.events)


def test_finish_without_blocks_still_starts_and_stops() -> None:
    recorder = EventRecorder()

    response = StreamAssembler(recorder, provider="test").finish()

    assert recorder.types == ["message_start", "message_delta", "message_stop"]
    assert response.stop_reason is StopReason.END_TURN
    assert response.usage is None
    assert response.message.content == ()


def test_malformed_tool_json_drops_only_that_call(caplog: pytest.LogCaptureFixture) -> None:
    recorder = EventRecorder()
    assembler = StreamAssembler(recorder, provider="test")
    assembler.open_tool(0, tool_id="bad", tool_name="broken")
    assembler.append_tool_json(0, '{"a": ')
    assembler.close(0)
    assembler.open_tool(1, tool_id="good", tool_name="working")
    assembler.append_tool_json(1, '{"a": 1}')

    response = assembler.finish()

    assert [call.id for call in response.tool_calls] == ["good"]
    assert [error.tool_id for error in assembler.dropped_tool_calls] == ["bad"]
    assert "dropping tool call" in caplog.text
    assert_well_formed(recorder.events)


def test_empty_tool_arguments_become_empty_object() -> None:
    assembler = StreamAssembler(EventRecorder(), provider="test")
    assembler.open_tool(0, tool_id="t", tool_name="noop")

    response = assembler.finish()

    assert response.tool_calls[0].plain_input() == {}


def test_aggregate_text_matches_concatenated_deltas() -> None:
    recorder = EventRecorder()
    assembler = StreamAssembler(recorder, provider="test")
    assembler.open_text(0)
    for piece in ["The ", "", "quick ", "fox"]:
        assembler.append_text(0, piece)

    response = assembler.finish()

    assert response.text == recorder.text() == "The quick fox"


def test_empty_text_block_is_omitted_from_response() -> None:
    recorder = EventRecorder()
    assembler = StreamAssembler(recorder, provider="test")
    assembler.open_text(0)

    response = assembler.finish()

    assert response.message.content == ()
    assert "content_block_start" in recorder.types


def test_add_tool_call_is_atomic() -> None:
    recorder = EventRecorder()
    assembler = StreamAssembler(recorder, provider="test")

    assembler.add_tool_call(0, tool_id="tool-1", tool_name="sum", arguments={"a": 1}, signature="sig")

    assert recorder.types == [
        "message_start",
        "content_block_start",
        "content_block_delta",
        "content_block_stop",
    ]
    assert recorder.tool_json(0) == '{"a": 1}'
    assert assembler.finish().tool_calls[0].signature == "sig"


@pytest.mark.parametrize("second_index", [2, 1])
def test_block_indices_must_increase(second_index: int) -> None:
    assembler = StreamAssembler(EventRecorder(), provider="test")
    assembler.open_text(2)

    with pytest.raises(DecodeError):
        assembler.open_text(second_index)


def test_deltas_require_an_open_block_of_the_right_kind() -> None:
    assembler = StreamAssembler(EventRecorder(), provider="test")
    assembler.open_text(0)

    with pytest.raises(DecodeError):
        assembler.append_tool_json(0, "{}")
    with pytest.raises(DecodeError):
        assembler.append_text(1, "x")

    assembler.close(0)
    with pytest.raises(DecodeError):
        assembler.append_text(0, "late")


def test_tool_block_requires_id_and_name() -> None:
    assembler = StreamAssembler(EventRecorder(), provider="test")

    with pytest.raises(DecodeError):
        assembler.open_tool(0, tool_id="", tool_name="n")


def test_fail_emits_single_error_event() -> None:
    recorder = EventRecorder()
    assembler = StreamAssembler(recorder, provider="test")
    assembler.open_text(0)
    assembler.append_text(0, "partial")

    error = assembler.fail("overloaded_error", "try later")

    assert isinstance(error, StreamVendorError)
    assert error.type == "overloaded_error"
    assert error.message == "try later"
    assert recorder.events[-1] == StreamError(error_type="overloaded_error", message="try later")
    assert_well_formed(recorder.events)


def test_cancelled_token_blocks_further_events() -> None:
    token = CancellationToken()
    recorder = EventRecorder()
    assembler = StreamAssembler(recorder, provider="test", token=token)
    assembler.open_text(0)
    token.cancel("caller")

    with pytest.raises(Cancelled):
        assembler.append_text(0, "never delivered")

    assert recorder.types == ["message_start", "content_block_start"]


def test_finish_twice_is_an_error() -> None:
    assembler = StreamAssembler(EventRecorder(), provider="test")
    assembler.finish()

    with pytest.raises(RuntimeError):
        assembler.finish()
