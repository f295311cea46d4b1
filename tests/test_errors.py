# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Tests for error classification and cancellation helpers."""

import asyncio
from types import SimpleNamespace

import pytest
from heureum_context.services.compaction.errors import (
    ContextLengthInfo,
    ContextTooLargeError,
    OperationCancelledError,
    ToolCallProtocolError,
    extract_error_info,
    extract_token_counts_from_text,
    format_context_error_detail,
    is_cancellation_error,
    is_cancelled,
    is_context_length_error,
    is_tool_call_protocol_error,
    parse_context_length_error,
    throw_if_cancelled,
)

OPENAI_OVERFLOW = (
    "This model's maximum context length is 8192 tokens. However, you requested "
    "9000 tokens (8000 in the messages, 1000 in the completion)."
)


class TestIsContextLengthError:
    """Tests for is_context_length_error."""

    def test_marker_exception(self):
        """Verify the package's own overflow error always matches."""
        assert is_context_length_error(ContextTooLargeError("anything")) is True

    def test_openai_message(self):
        """Verify OpenAI wording is detected."""
        assert is_context_length_error(Exception(OPENAI_OVERFLOW)) is True

    def test_chinese_message(self):
        """Verify Chinese wording is detected."""
        assert is_context_length_error(Exception("上下文长度超出限制")) is True

    def test_code_in_body(self, status_error):
        """Verify a machine-readable code is enough."""
        err = status_error("Bad request", status_code=400, code="context_length_exceeded")
        assert is_context_length_error(err) is True

    def test_status_400_hint(self, status_error):
        """Verify a 400 with a length hint counts, other statuses do not."""
        assert is_context_length_error(status_error("prompt length invalid", status_code=400)) is True
        assert is_context_length_error(status_error("prompt length invalid", status_code=500)) is False

    def test_nested_payload(self):
        """Verify nested response data is inspected."""
        err = {
            "response": {
                "status": 413,
                "data": {"error": {"message": "Payload rejected", "code": "request_too_large"}},
            }
        }
        assert is_context_length_error(err) is True

    def test_unrelated_errors(self, status_error):
        """Verify ordinary failures are not classified as overflows."""
        assert is_context_length_error(status_error("Rate limit reached", status_code=429)) is False
        assert is_context_length_error(RuntimeError("connection reset")) is False

    def test_cancellation_never_matches(self):
        """Verify cancellation errors are never treated as overflows."""
        assert is_context_length_error(OperationCancelledError("context length")) is False
        assert is_context_length_error(asyncio.CancelledError()) is False


class TestExtractErrorInfo:
    """Tests for extract_error_info."""

    def test_status_code_and_type(self, status_error):
        """Verify status, code and type are read from the error body."""
        err = status_error("boom", status_code=400, code="bad_code", type="invalid_request_error")
        info = extract_error_info(err)
        assert info.status == 400
        assert info.code == "bad_code"
        assert info.type == "invalid_request_error"
        assert info.message == "boom"

    def test_plain_exception(self):
        """Verify a bare exception yields only its message."""
        info = extract_error_info(ValueError("plain"))
        assert info.status is None
        assert info.messages == ["plain"]
        assert info.code == ""


class TestParseContextLengthError:
    """Tests for parse_context_length_error and helpers."""

    def test_token_counts_from_openai_text(self):
        """Verify max and requested tokens are parsed from the message."""
        info = parse_context_length_error(Exception(OPENAI_OVERFLOW))
        assert info.max_tokens == 8192
        assert info.requested_tokens == 9000

    def test_comparison_form(self):
        """Verify the "N tokens > M tokens" form."""
        assert extract_token_counts_from_text("prompt is too long: 20000 tokens > 8192 tokens") == (8192, 20000)

    def test_empty_text(self):
        """Verify empty text has no counts."""
        assert extract_token_counts_from_text("  ") == (None, None)

    def test_structured_counts(self, status_error):
        """Verify structured fields take precedence over text."""
        err = status_error("too long", status_code=400)
        err.body = {"error": {"message": "too long", "max_tokens": 4096, "requested_tokens": 5000}}
        info = parse_context_length_error(err)
        assert (info.max_tokens, info.requested_tokens) == (4096, 5000)

    def test_nothing_useful(self):
        """Verify an empty error parses to None."""
        assert parse_context_length_error(Exception()) is None

    def test_format_detail(self):
        """Verify the log suffix lists the known fields."""
        info = ContextLengthInfo(status=400, max_tokens=8192, requested_tokens=9000, message="m")
        assert format_context_error_detail(info) == " (status 400, max 8192, requested 9000, message: m)"
        assert format_context_error_detail(None) == ""


class TestIsToolCallProtocolError:
    """Tests for is_tool_call_protocol_error."""

    def test_openai_wording(self):
        """Verify the OpenAI dangling tool_calls message is detected."""
        err = Exception(
            "An assistant message with 'tool_calls' must be followed by tool messages "
            "responding to each 'tool_call_id'."
        )
        assert is_tool_call_protocol_error(err) is True

    def test_marker_exception(self):
        """Verify the package's own protocol error always matches."""
        assert is_tool_call_protocol_error(ToolCallProtocolError("x")) is True

    def test_unrelated(self):
        """Verify tool_calls alone is not enough."""
        assert is_tool_call_protocol_error(Exception("tool_calls invalid")) is False
        assert is_tool_call_protocol_error(Exception("")) is False


class TestCancellation:
    """Tests for cancellation helpers."""

    def test_signal_shapes(self):
        """Verify events, flags and callables are all understood."""
        event = asyncio.Event()
        assert is_cancelled(None) is False
        assert is_cancelled(event) is False
        event.set()
        assert is_cancelled(event) is True
        assert is_cancelled(SimpleNamespace(aborted=True)) is True
        assert is_cancelled(SimpleNamespace(cancelled=lambda: True)) is True
        assert is_cancelled(SimpleNamespace()) is False

    def test_throw_if_cancelled(self):
        """Verify a set signal raises OperationCancelledError."""
        throw_if_cancelled(None)
        with pytest.raises(OperationCancelledError):
            throw_if_cancelled(SimpleNamespace(aborted=True))

    def test_is_cancellation_error(self):
        """Verify cancellation errors and set signals are recognised."""
        assert is_cancellation_error(OperationCancelledError()) is True
        assert is_cancellation_error(asyncio.CancelledError()) is True
        assert is_cancellation_error(RuntimeError(), SimpleNamespace(aborted=True)) is True
        assert is_cancellation_error(RuntimeError()) is False
