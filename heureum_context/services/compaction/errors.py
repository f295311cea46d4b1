# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Error classification for context recovery.

Provider SDKs surface "request too large" in many shapes: HTTP status on
the exception or its response, machine-readable ``code``/``type`` fields
nested under ``error``/``body``, and free text in several languages.  The
helpers here read all of those without depending on any one SDK.

Classification is heuristic.  False negatives propagate to the caller as
ordinary errors; callers with better knowledge pass their own classifier
to ``run_with_context_recovery``.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Pattern, Sequence, Tuple


class ContextTooLargeError(Exception):
    """The model rejected a request for exceeding its context window."""


class OperationCancelledError(Exception):
    """Cooperative cancellation was observed."""


class ToolCallProtocolError(Exception):
    """The tool-call / tool-result sequence of a request is invalid."""


CancelSignal = Any


def is_cancelled(signal: CancelSignal) -> bool:
    """Whether *signal* reports cancellation.

    Accepts ``asyncio.Event``/``threading.Event`` (``is_set()``), objects
    with an ``aborted`` or ``cancelled`` flag, or ``None``.
    """
    if signal is None:
        return False
    is_set = getattr(signal, "is_set", None)
    if callable(is_set):
        return bool(is_set())
    for attr in ("aborted", "cancelled"):
        flag = getattr(signal, attr, None)
        if isinstance(flag, bool):
            return flag
        if callable(flag):
            return bool(flag())
    return False


def throw_if_cancelled(signal: CancelSignal) -> None:
    """Raise ``OperationCancelledError`` when *signal* is set.

    Args:
        signal (CancelSignal): Caller-supplied cancellation signal.

    Raises:
        OperationCancelledError: If the signal reports cancellation.
    """
    if is_cancelled(signal):
        raise OperationCancelledError("aborted")


def is_cancellation_error(error: BaseException, signal: CancelSignal = None) -> bool:
    """Whether *error* is (or was caused by) cancellation."""
    if isinstance(error, (OperationCancelledError, asyncio.CancelledError)):
        return True
    return is_cancelled(signal)


# ---------------------------------------------------------------------------
# Error info extraction
# ---------------------------------------------------------------------------


def _lookup(obj: Any, *path: str) -> Any:
    """Follow *path* through attributes or mapping keys; ``None`` if missing."""
    current = obj
    for key in path:
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(key)
        else:
            current = getattr(current, key, None)
    return current


def normalize_error_text(value: Any) -> str:
    """Trimmed text form of an error field; ``""`` for unusable values."""
    if isinstance(value, str):
        return value.strip()
    if value is None:
        return ""
    if isinstance(value, (bool, int, float)):
        return str(value)
    if isinstance(value, BaseException):
        return str(value).strip()
    return ""


def _to_positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        num = int(float(value))
    except (TypeError, ValueError):
        return None
    return num if num > 0 else None


def _unique(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


# Containers that may hold a provider error payload.
_PAYLOAD_PATHS = (
    ("error",),
    ("error", "error"),
    ("body",),
    ("body", "error"),
    ("response", "data"),
    ("response", "data", "error"),
    ("data",),
    ("data", "error"),
)


def _payloads(err: Any) -> List[Any]:
    found = []
    for path in _PAYLOAD_PATHS:
        value = _lookup(err, *path)
        if isinstance(value, dict) or (value is not None and not isinstance(value, (str, int, float))):
            found.append(value)
    return found


def get_error_status(err: Any) -> Optional[int]:
    """HTTP status carried by *err* or its response, if any."""
    for path in (
        ("status",),
        ("status_code",),
        ("statusCode",),
        ("response", "status"),
        ("response", "status_code"),
        ("response", "data", "status"),
        ("response", "data", "statusCode"),
    ):
        status = _to_positive_int(_lookup(err, *path))
        if status is not None:
            return status
    return None


def _collect_field(err: Any, key: str) -> List[str]:
    values = [normalize_error_text(_lookup(err, key))]
    values.extend(normalize_error_text(_lookup(p, key)) for p in _payloads(err))
    return _unique(values)


def collect_error_messages(err: Any) -> List[str]:
    """All distinct human-readable messages found on *err*."""
    values = []
    if isinstance(err, BaseException):
        values.append(normalize_error_text(err))
    values.extend(_collect_field(err, "message"))
    for payload in _payloads(err):
        for key in ("error_description", "detail", "details"):
            values.append(normalize_error_text(_lookup(payload, key)))
    for path in (("response", "data"), ("data",), ("error",), ("body",)):
        raw = _lookup(err, *path)
        if isinstance(raw, str):
            values.append(raw.strip())
    return _unique(values)


@dataclass
class ErrorInfo:
    """Normalized view of a provider error.

    Attributes:
        status (Optional[int]): HTTP status, if any.
        messages (List[str]): Distinct messages, most specific first.
        code (str): First machine-readable error code found.
        type (str): First machine-readable error type found.
    """

    status: Optional[int] = None
    messages: List[str] = field(default_factory=list)
    code: str = ""
    type: str = ""

    @property
    def message(self) -> str:
        """The primary message, or ``""``."""
        return self.messages[0] if self.messages else ""


def extract_error_info(err: Any) -> ErrorInfo:
    """Collect status, messages, code and type from *err*.

    Args:
        err (Any): An exception or error payload.

    Returns:
        ErrorInfo: The normalized error view.
    """
    codes = _collect_field(err, "code")
    types = _collect_field(err, "type")
    return ErrorInfo(
        status=get_error_status(err),
        messages=collect_error_messages(err),
        code=codes[0] if codes else "",
        type=types[0] if types else "",
    )


# ---------------------------------------------------------------------------
# Context length classification
# ---------------------------------------------------------------------------

_CODE_PATTERNS: Sequence[Pattern[str]] = tuple(
    re.compile(p)
    for p in (
        r"context[_\s-]?length",
        r"context_length_exceeded",
        r"max[_\s-]?tokens?",
        r"token[_\s-]?limit",
        r"context_window",
        r"length_exceeded",
        r"content_too_large",
        r"request_too_large",
    )
)

_MESSAGE_PATTERNS: Sequence[Pattern[str]] = tuple(
    re.compile(p)
    for p in (
        r"maximum context length",
        r"context length",
        r"context window",
        r"token limit",
        r"max(?:imum)?\s*tokens?",
        r"too many tokens",
        r"exceed(?:ed|s)?\s*(?:the )?(?:maximum )?(?:context|token)",
        r"input.*too long",
        r"prompt.*too long",
        r"request too large",
        r"context_length_exceeded",
        r"content_too_large",
        r"max_tokens",
        r"string too long",
        r"上下文.*(过长|超出|超长|超过|上限|限制)",
        r"上下文长度",
        r"(token|tokens).*(超|超过|上限|限制)",
        r"最大.*(上下文|token)",
        r"输入.*过长",
    )
)

_STATUS_400_HINT = re.compile(r"(context|token|length|window|上下文|长度)", re.IGNORECASE)


def _matches_any(text: str, patterns: Sequence[Pattern[str]]) -> bool:
    return bool(text) and any(p.search(text) for p in patterns)


def is_context_length_error(err: Any) -> bool:
    """Check whether *err* indicates a context window overflow.

    Args:
        err (Any): The exception to inspect.

    Returns:
        bool: True if a code, type, message or status hint matches.
    """
    if isinstance(err, ContextTooLargeError):
        return True
    if isinstance(err, (OperationCancelledError, asyncio.CancelledError)):
        return False
    info = extract_error_info(err)
    message_text = "\n".join(info.messages).lower()
    code_text = " ".join(v for v in (info.code, info.type) if v).lower()
    if _matches_any(code_text, _CODE_PATTERNS) or _matches_any(message_text, _MESSAGE_PATTERNS):
        return True
    if info.status == 400:
        return bool(_STATUS_400_HINT.search(message_text) or _STATUS_400_HINT.search(code_text))
    return False


# ---------------------------------------------------------------------------
# Token counts in overflow errors
# ---------------------------------------------------------------------------

_COMPARE_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"(\d+)\s*tokens?\s*(?:>|>=|exceeds|over|greater than)\s*(\d+)\s*tokens?",
        r"(\d+)\s*token(?:s)?\s*(?:超过|大于|超出|高于)\s*(\d+)\s*token(?:s)?",
    )
)

_MAX_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"maximum context length is (\d+)\s*tokens?",
        r"maximum context length.*?(\d+)\s*tokens?",
        r"context(?:\s*length)?(?:\s*limit| window)?\s*(?:is|:)?\s*(\d+)\s*tokens?",
        r"max(?:imum)?\s*(?:is|:)?\s*(\d+)\s*tokens?",
        r"max(?:imum)?\s*tokens?\s*(?:is|:)?\s*(\d+)",
        r"token(?:s)?\s*limit(?:\s*is|:)?\s*(\d+)",
        r"(?:up to|at most)\s*(\d+)\s*tokens?",
        r"最大[^0-9]{0,6}(\d+)\s*(?:token|tokens)?",
        r"上限[^0-9]{0,6}(\d+)\s*(?:token|tokens)?",
        r"最多[^0-9]{0,6}(\d+)\s*(?:token|tokens)?",
        r"上下文[^0-9]{0,6}(\d+)\s*(?:token|tokens)?",
    )
)

_REQUESTED_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"requested\s*(\d+)\s*tokens?",
        r"request(?:ed)?\s*token(?:s)?\s*(\d+)",
        r"input.*?(\d+)\s*tokens?",
        r"prompt.*?(\d+)\s*tokens?",
        r"请求[^0-9]{0,6}(\d+)\s*(?:token|tokens)?",
        r"输入[^0-9]{0,6}(\d+)\s*(?:token|tokens)?",
        r"已用[^0-9]{0,6}(\d+)\s*(?:token|tokens)?",
        r"使用[^0-9]{0,6}(\d+)\s*(?:token|tokens)?",
    )
)

_STRUCTURED_MAX_KEYS = ("max_tokens", "maxTokens", "context_length", "context_length_max", "context_window", "limit")
_STRUCTURED_REQUESTED_KEYS = ("requested_tokens", "requestedTokens", "total_tokens", "prompt_tokens")


@dataclass
class ContextLengthInfo:
    """Details parsed from a context overflow error.

    Attributes:
        status (Optional[int]): HTTP status, if any.
        code (str): Provider error code.
        type (str): Provider error type.
        message (str): Primary error message.
        max_tokens (Optional[int]): Context limit reported by the provider.
        requested_tokens (Optional[int]): Size of the rejected request.
    """

    status: Optional[int] = None
    code: str = ""
    type: str = ""
    message: str = ""
    max_tokens: Optional[int] = None
    requested_tokens: Optional[int] = None


def _first_match(text: str, patterns: Sequence[Pattern[str]]) -> Optional[int]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            value = _to_positive_int(match.group(1))
            if value is not None:
                return value
    return None


def _structured_count(err: Any, keys: Sequence[str]) -> Optional[int]:
    for payload in _payloads(err):
        for key in keys:
            value = _to_positive_int(_lookup(payload, key))
            if value is not None:
                return value
    return None


def extract_token_counts_from_text(text: str) -> Tuple[Optional[int], Optional[int]]:
    """Parse ``(max_tokens, requested_tokens)`` from an error message."""
    if not text or not text.strip():
        return None, None
    for pattern in _COMPARE_PATTERNS:
        match = pattern.search(text)
        if match:
            return _to_positive_int(match.group(2)), _to_positive_int(match.group(1))
    return _first_match(text, _MAX_PATTERNS), _first_match(text, _REQUESTED_PATTERNS)


def parse_context_length_error(err: Any) -> Optional[ContextLengthInfo]:
    """Extract status, codes and token counts from an overflow error.

    Args:
        err (Any): The exception to inspect.

    Returns:
        Optional[ContextLengthInfo]: Parsed details, or ``None`` when the
            error carries nothing useful.
    """
    info = extract_error_info(err)
    parsed_max, parsed_requested = extract_token_counts_from_text("\n".join(info.messages))
    max_tokens = _structured_count(err, _STRUCTURED_MAX_KEYS) or parsed_max
    requested = _structured_count(err, _STRUCTURED_REQUESTED_KEYS) or parsed_requested
    if not (info.status or info.message or info.code or info.type or max_tokens or requested):
        return None
    return ContextLengthInfo(
        status=info.status,
        code=info.code,
        type=info.type,
        message=info.message,
        max_tokens=max_tokens,
        requested_tokens=requested,
    )


def _truncate_text(text: str, max_length: int = 160) -> str:
    value = text.strip()
    if len(value) <= max_length:
        return value
    return value[: max_length - 1] + "…"


def format_context_error_detail(info: Optional[ContextLengthInfo]) -> str:
    """Short ``" (status 400, max 8192, ...)"`` suffix for log lines."""
    if info is None:
        return ""
    parts = []
    if info.status:
        parts.append(f"status {info.status}")
    if info.code:
        parts.append(f"code {info.code}")
    if info.type:
        parts.append(f"type {info.type}")
    if info.max_tokens:
        parts.append(f"max {info.max_tokens}")
    if info.requested_tokens:
        parts.append(f"requested {info.requested_tokens}")
    if info.message:
        parts.append(f"message: {_truncate_text(info.message, 140)}")
    return f" ({', '.join(parts)})" if parts else ""


# ---------------------------------------------------------------------------
# Tool-call protocol errors
# ---------------------------------------------------------------------------

_PROTOCOL_HINTS = (
    "tool_call_id",
    "tool messages",
    "insufficient tool",
    "role 'tool'",
    'role "tool"',
    "messages with role",
    "must be a response to a preceding message",
)


def is_tool_call_protocol_error(err: Any) -> bool:
    """Check whether *err* reports dangling or mismatched tool calls.

    Matches OpenAI-style wording such as "An assistant message with
    'tool_calls' must be followed by tool messages responding to each
    'tool_call_id'".
    """
    if isinstance(err, ToolCallProtocolError):
        return True
    text = "\n".join(collect_error_messages(err)).lower()
    if not text:
        return False
    return "tool_calls" in text and any(hint in text for hint in _PROTOCOL_HINTS)


ErrorClassifier = Callable[[BaseException], bool]
