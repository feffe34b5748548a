"""Incremental decoders for server-sent events and newline-delimited JSON.

Both decoders accept raw bytes in arbitrarily sized chunks, buffer partial
records between reads, and hand back one outcome per complete record. A
record that fails to parse becomes a :class:`MalformedRecord` instead of an
exception so the caller can skip it and keep reading.
"""

from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, AsyncIterable, Protocol, Union

from .cancellation import CancellationToken, race

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True, slots=True)
class DecodedRecord:
    """A successfully parsed JSON payload and its SSE event name, if any."""

    payload: Any
    event: str | None = None


@dataclass(frozen=True, slots=True)
class MalformedRecord:
    """A record whose payload was not valid JSON."""

    raw: str
    error: str
    event: str | None = None


RecordOutcome = Union[DecodedRecord, MalformedRecord]


class StreamDecoder(Protocol):
    def feed(self, chunk: bytes) -> list[RecordOutcome]:
        """Consume ``chunk`` and return every record it completed."""

    def flush(self) -> list[RecordOutcome]:
        """Return whatever record remains buffered at end of stream."""


class _LineBuffer:
    """Turns UTF-8 byte chunks into complete lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def push(self, chunk: bytes) -> list[str]:
        self._pending += self._decoder.decode(chunk)
        return self._split()

    def drain(self) -> list[str]:
        self._pending += self._decoder.decode(b"", final=True)
        lines = self._split()
        if self._pending:
            lines.append(self._pending.rstrip("\r"))
            self._pending = ""
        return lines

    def _split(self) -> list[str]:
        # A trailing "\r" may be the first half of "\r\n"; wait for more data.
        lines: list[str] = []
        text = self._pending
        start = 0
        length = len(text)
        index = 0
        while index < length:
            char = text[index]
            if char == "\n":
                lines.append(text[start:index])
                start = index + 1
            elif char == "\r":
                if index + 1 == length:
                    break
                lines.append(text[start:index])
                if text[index + 1] == "\n":
                    index += 1
                start = index + 1
            index += 1
        self._pending = text[start:]
        return lines


class SSEDecoder:
    """Decode a ``text/event-stream`` body into JSON records."""

    def __init__(self) -> None:
        self._lines = _LineBuffer()
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, chunk: bytes) -> list[RecordOutcome]:
        outcomes: list[RecordOutcome] = []
        for line in self._lines.push(chunk):
            outcome = self._process_line(line)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def flush(self) -> list[RecordOutcome]:
        outcomes: list[RecordOutcome] = []
        for line in self._lines.drain():
            outcome = self._process_line(line)
            if outcome is not None:
                outcomes.append(outcome)
        outcome = self._dispatch()
        if outcome is not None:
            outcomes.append(outcome)
        return outcomes

    def _process_line(self, line: str) -> RecordOutcome | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        return None

    def _dispatch(self) -> RecordOutcome | None:
        event, self._event = self._event, None
        if not self._data:
            return None
        data = "\n".join(self._data)
        self._data = []

        if data.strip() == DONE_SENTINEL:
            return None
        return _parse_json(data, event=event)


class NDJSONDecoder:
    """Decode a newline-delimited JSON body, one record per line."""

    def __init__(self) -> None:
        self._lines = _LineBuffer()

    def feed(self, chunk: bytes) -> list[RecordOutcome]:
        return [_parse_json(line) for line in self._lines.push(chunk) if line.strip()]

    def flush(self) -> list[RecordOutcome]:
        return [_parse_json(line) for line in self._lines.drain() if line.strip()]


async def iter_records(
    decoder: StreamDecoder,
    chunks: AsyncIterable[bytes],
    token: CancellationToken,
) -> AsyncIterator[RecordOutcome]:
    """Pull chunks from ``chunks`` and yield decoded records as they complete.

    Every read is raced against ``token`` so a cancelled call stops waiting on
    the network immediately.
    """

    iterator = chunks.__aiter__()
    while True:
        chunk = await race(token, _next_chunk(iterator))
        if chunk is None:
            break
        for outcome in decoder.feed(chunk):
            yield outcome
    for outcome in decoder.flush():
        yield outcome


async def _next_chunk(iterator: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


def _parse_json(raw: str, *, event: str | None = None) -> RecordOutcome:
    try:
        return DecodedRecord(payload=json.loads(raw), event=event)
    except json.JSONDecodeError as exc:
        return MalformedRecord(raw=raw, error=str(exc), event=event)


__all__ = [
    "DONE_SENTINEL",
    "DecodedRecord",
    "MalformedRecord",
    "NDJSONDecoder",
    "RecordOutcome",
    "SSEDecoder",
    "StreamDecoder",
    "iter_records",
]
