# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Summary record helpers.

A summary record is a system message tagged ``name="conversation_summary"``.
Only the latest one (by list order) is treated as the standing digest.
Whether a new summary replaces the old text or is appended to it is up to
the caller's store; ``append_summary_text`` covers the append policy.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from heureum_context.models import Message, MessageRole
from heureum_context.services.compaction.tokens import extract_plain_text
from heureum_context.services.prompts.base import (
    SUMMARY_FAILED_NOTE,
    SUMMARY_HEADER,
    SUMMARY_MESSAGE_NAME,
    SUMMARY_SEPARATOR,
)


def is_summary_message(msg: Optional[Message]) -> bool:
    """Whether *msg* is a summary record."""
    if msg is None or msg.role != MessageRole.SYSTEM:
        return False
    return (msg.name or "").strip() == SUMMARY_MESSAGE_NAME


def pick_latest_summary_message(messages: Optional[List[Message]]) -> Optional[Message]:
    """The last summary record in *messages*, or ``None``."""
    for msg in reversed(messages or []):
        if is_summary_message(msg):
            return msg
    return None


def extract_latest_summary_text(messages: Optional[List[Message]]) -> str:
    """Text of the latest summary record, or ``""``."""
    msg = pick_latest_summary_message(messages)
    if msg is None:
        return ""
    return extract_plain_text(msg.content).strip()


def append_summary_text(
    existing: Optional[str],
    addition: Optional[str],
    separator: str = SUMMARY_SEPARATOR,
) -> str:
    """Join two summary texts with *separator*, skipping empty sides."""
    base = (existing or "").strip()
    extra = (addition or "").strip()
    if not base:
        return extra
    if not extra:
        return base
    return f"{base}{separator}{extra}"


def build_summary_message(
    summary_text: str,
    last_error: Optional[BaseException] = None,
    now: Optional[datetime] = None,
) -> Message:
    """Create the summary record for a finished summary call.

    An empty result still yields a record, noting that the summary failed.

    Args:
        summary_text (str): Raw model output.
        last_error (Optional[BaseException]): Last error seen while
            summarizing, included in the failure note.
        now (Optional[datetime]): Timestamp override.

    Returns:
        Message: System message tagged as the summary record.
    """
    stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    header = SUMMARY_HEADER.format(stamp=stamp)
    trimmed = (summary_text or "").strip()
    if trimmed:
        body = trimmed
    else:
        detail = f": {last_error}" if last_error is not None else ""
        body = SUMMARY_FAILED_NOTE.format(detail=detail)
    return Message(
        role=MessageRole.SYSTEM,
        content=f"{header}\n{body}",
        name=SUMMARY_MESSAGE_NAME,
    )
