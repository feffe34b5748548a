from __future__ import annotations

import logging

import pytest

from switchboard.logging_config import RedactionFilter, configure_logging, redact


@pytest.mark.parametrize(
    ("raw", "secret"),
    [
        ("Authorization: Bearer sk-abc123456789", "sk-abc123456789"),
        ("x-api-key: sk-ant-api03-secretvalue", "sk-ant-api03-secretvalue"),
        ("GET https://example.test/models?key=AIzaSyA1234567890abcdefghij&pageSize=100", "AIzaSyA1234567890abcdefghij"),
        ("OPENAI_API_KEY=sk-proj-0123456789", "sk-proj-0123456789"),
        ("leaked sk-live-0123456789abcdef in text", "sk-live-0123456789abcdef"),
    ],
)
def test_redact_removes_credentials(raw: str, secret: str) -> None:
    cleaned = redact(raw)

    assert secret not in cleaned
    assert "[redacted]" in cleaned


def test_redact_leaves_plain_text_alone() -> None:
    assert redact("streaming chat with model gpt-4o") == "streaming chat with model gpt-4o"


def test_filter_redacts_formatted_arguments() -> None:
    record = logging.LogRecord(
        "switchboard", logging.WARNING, __file__, 1, "request failed: %s", ("Bearer sk-abcdefghijkl",), None
    )

    assert RedactionFilter().filter(record) is True
    assert record.getMessage() == "request failed: Bearer [redacted]"


def test_configure_logging_sets_levels() -> None:
    root = logging.getLogger()
    previous_handlers = root.handlers[:]
    previous_level = root.level
    try:
        configure_logging("DEBUG")

        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
        assert any(isinstance(f, RedactionFilter) for handler in root.handlers for f in handler.filters)
    finally:
        root.handlers[:] = previous_handlers
        root.setLevel(previous_level)
