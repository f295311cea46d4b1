# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Hard trim: last-resort context reduction.

Discards all history except the system preambles and the latest user
message, and inserts a notice so the model knows truncation happened.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from heureum_context.models import Message, MessageRole
from heureum_context.services.prompts.base import TRIM_NOTICE, TRIM_NOTICE_NAME

logger = logging.getLogger(__name__)


def build_preambles(
    system_prompt: Optional[str],
    extra_system_prompts: Optional[Sequence[Message]] = None,
) -> List[Message]:
    """Fixed system messages that head every conversation.

    Args:
        system_prompt (Optional[str]): Main system prompt.
        extra_system_prompts (Optional[Sequence[Message]]): Caller-registered
            additional system messages.

    Returns:
        List[Message]: ``[system_prompt] + extras`` (system prompt omitted
            when empty).
    """
    preambles: List[Message] = []
    if system_prompt:
        preambles.append(Message(role=MessageRole.SYSTEM, content=system_prompt))
    preambles.extend(extra_system_prompts or [])
    return preambles


def _session_extras(session: Any) -> List[Message]:
    extras_fn = getattr(session, "extra_system_prompts", None)
    return list(extras_fn()) if callable(extras_fn) else []


def session_preambles(session: Any) -> List[Message]:
    """Preambles of a session-like object."""
    return build_preambles(getattr(session, "system_prompt", None), _session_extras(session))


def hard_trim_messages(
    messages: Sequence[Message],
    system_prompt: Optional[str] = None,
    extra_system_prompts: Optional[Sequence[Message]] = None,
) -> List[Message]:
    """Reduce a conversation to preambles, a trim notice and the latest user turn.

    Args:
        messages (Sequence[Message]): Current conversation.
        system_prompt (Optional[str]): Main system prompt.
        extra_system_prompts (Optional[Sequence[Message]]): Additional
            system messages to keep.

    Returns:
        List[Message]: The trimmed conversation.
    """
    last_user: Optional[Message] = None
    for msg in reversed(messages):
        if msg is not None and msg.role == MessageRole.USER:
            last_user = msg.model_copy(deep=True)
            break

    retained = build_preambles(system_prompt, extra_system_prompts)
    retained.append(Message(role=MessageRole.SYSTEM, content=TRIM_NOTICE, name=TRIM_NOTICE_NAME))
    if last_user is not None:
        retained.append(last_user)
    return retained


def hard_trim_session(session: Any) -> None:
    """Replace a session's history with its hard-trimmed form.

    Args:
        session (Any): Object with ``system_prompt``, ``extra_system_prompts()``
            and a mutable ``messages`` list.
    """
    messages = getattr(session, "messages", None)
    if messages is None:
        return
    trimmed = hard_trim_messages(
        messages,
        getattr(session, "system_prompt", None),
        _session_extras(session),
    )
    logger.warning("Hard-trimmed conversation: %d -> %d messages", len(messages), len(trimmed))
    messages[:] = trimmed
