# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Tool call / tool result pairing repair.

Providers reject a request when an assistant message with ``tool_calls``
is not immediately followed by one tool message per call.  Such histories
appear when a run is aborted mid-tool-call, or when compaction drops the
assistant message that issued a call.

``normalize_tool_call_messages`` walks the list once, keeping one
*pending set* of call ids for the latest unanswered assistant message:

  - any non-tool message resolves the pending set first,
  - a tool message without a pending set is an orphan and is dropped,
  - a tool message whose id is not pending, or was already answered, is
    dropped,
  - a pending set closes once every id has been answered.

An unresolved pending set is handled per ``pending_mode``:

  strip  keep the assistant message (and its text) with an empty call list,
         and drop the tool results that answered part of it
  drop   delete the assistant message and everything emitted after it
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Set, Tuple

from heureum_context.models import Message, MessageRole

logger = logging.getLogger(__name__)

PendingMode = Literal["strip", "drop"]


def default_normalize_id(value: Any) -> str:
    """Trimmed string form of a tool call id; ``""`` when missing."""
    if isinstance(value, str):
        return value.strip()
    if value is None:
        return ""
    return str(value).strip()


def default_generate_id() -> str:
    """Random tool call id in the provider's ``call_`` style."""
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass
class RepairOptions:
    """Options for ``normalize_tool_call_messages``.

    Attributes:
        pending_mode (PendingMode): How to resolve an unanswered call set.
        assign_missing_tool_call_id (bool): Generate ids for calls without
            one, and attach tool messages without an id to the next
            unanswered call.
        ensure_unique_tool_call_ids (bool): Regenerate ids that collide
            within one assistant message.
        strip_empty_tool_calls (bool): Remove the ``tool_calls`` field when
            every call of an assistant message turned out invalid.
        generate_id (Callable[[], str]): Id generator.
        normalize_id (Callable[[Any], str]): Id normalizer.
    """

    pending_mode: PendingMode = "drop"
    assign_missing_tool_call_id: bool = False
    ensure_unique_tool_call_ids: bool = False
    strip_empty_tool_calls: bool = False
    generate_id: Callable[[], str] = default_generate_id
    normalize_id: Callable[[Any], str] = default_normalize_id


@dataclass
class RepairResult:
    """Result of a repair pass.

    Attributes:
        messages (List[Message]): The repaired message list.
        changed (bool): Whether anything differs from the input. Callers
            skip persisting when this is ``False``.
    """

    messages: List[Message]
    changed: bool


@dataclass
class _PendingCalls:
    """Open call set of the latest assistant message with tool calls."""

    start_index: int
    expected_ids: List[str]
    expected: Set[str]
    seen: Set[str] = field(default_factory=set)
    next_unassigned: int = 0

    def next_unanswered_id(self) -> Optional[str]:
        while (
            self.next_unassigned < len(self.expected_ids)
            and self.expected_ids[self.next_unassigned] in self.seen
        ):
            self.next_unassigned += 1
        if self.next_unassigned >= len(self.expected_ids):
            return None
        call_id = self.expected_ids[self.next_unassigned]
        self.next_unassigned += 1
        return call_id


def _call_id(call: Any) -> Any:
    if isinstance(call, dict):
        return call.get("id")
    return getattr(call, "id", None)


class _Normalizer:
    """Single-use state machine behind ``normalize_tool_call_messages``."""

    def __init__(self, options: RepairOptions) -> None:
        self.options = options
        self.output: List[Message] = []
        self.changed = False
        self.pending: Optional[_PendingCalls] = None

    def _resolve_id(self, value: Any) -> str:
        try:
            return self.options.normalize_id(value)
        except Exception:
            return default_normalize_id(value)

    def _create_id(self) -> str:
        return self._resolve_id(self.options.generate_id()) or default_generate_id()

    def clear_pending(self) -> None:
        if self.pending is None:
            return
        idx = self.pending.start_index
        if self.options.pending_mode == "strip":
            assistant = self.output[idx]
            if assistant.tool_calls:
                self.output[idx] = assistant.model_copy(update={"tool_calls": []})
                self.changed = True
            if len(self.output) > idx + 1:
                del self.output[idx + 1 :]
                self.changed = True
        else:
            dropped = len(self.output) - idx
            del self.output[idx:]
            self.changed = True
            logger.info("Dropped %d message(s) of an unanswered tool call set", dropped)
        self.pending = None

    def _rewrite_calls(self, raw_calls: List[Any]) -> Tuple[List[Dict[str, Any]], List[str], Set[str]]:
        calls: List[Dict[str, Any]] = []
        expected_ids: List[str] = []
        expected: Set[str] = set()
        for call in raw_calls:
            if not isinstance(call, dict):
                self.changed = True
                continue
            call_id = self._resolve_id(call.get("id"))
            if not call_id and self.options.assign_missing_tool_call_id:
                call_id = self._create_id()
                self.changed = True
            if not call_id:
                self.changed = True
                continue
            if self.options.ensure_unique_tool_call_ids:
                while call_id in expected:
                    call_id = self._create_id()
                    self.changed = True
            if call_id != call.get("id"):
                call = {**call, "id": call_id}
                self.changed = True
            calls.append(call)
            if call_id not in expected:
                expected.add(call_id)
                expected_ids.append(call_id)
        return calls, expected_ids, expected

    def on_assistant(self, msg: Message) -> None:
        original = msg.tool_calls or []
        raw_calls = [c for c in original if c]
        calls = raw_calls
        expected_ids: List[str] = []
        expected: Set[str] = set()

        if raw_calls:
            if self.options.assign_missing_tool_call_id or self.options.ensure_unique_tool_call_ids:
                calls, expected_ids, expected = self._rewrite_calls(raw_calls)
            else:
                for call in raw_calls:
                    call_id = self._resolve_id(_call_id(call))
                    if not call_id or call_id in expected:
                        continue
                    expected.add(call_id)
                    expected_ids.append(call_id)

        start_index = len(self.output)
        assistant = msg
        if original and not calls and self.options.strip_empty_tool_calls:
            assistant = msg.model_copy(update={"tool_calls": None})
            self.changed = True
        elif calls != original:
            assistant = msg.model_copy(update={"tool_calls": calls})
            self.changed = True
        self.output.append(assistant)

        if expected_ids:
            self.pending = _PendingCalls(
                start_index=start_index,
                expected_ids=expected_ids,
                expected=expected,
            )

    def on_tool(self, msg: Message) -> None:
        pending = self.pending
        if pending is None:
            logger.info("Dropped orphaned tool result: tool_call_id=%s", msg.tool_call_id)
            self.changed = True
            return

        call_id = self._resolve_id(msg.tool_call_id)
        if not call_id:
            if not self.options.assign_missing_tool_call_id:
                self.changed = True
                return
            assigned = pending.next_unanswered_id()
            if assigned is None:
                self.changed = True
                return
            call_id = assigned
            self.changed = True

        if call_id not in pending.expected:
            logger.info("Dropped tool result for unknown call: tool_call_id=%s", call_id)
            self.changed = True
            return

        if call_id in pending.seen:
            logger.info("Dropped duplicate tool result: tool_call_id=%s", call_id)
            self.changed = True
            return

        if call_id != msg.tool_call_id:
            msg = msg.model_copy(update={"tool_call_id": call_id})
            self.changed = True
        self.output.append(msg)
        pending.seen.add(call_id)
        if len(pending.seen) >= len(pending.expected):
            self.pending = None

    def run(self, messages: List[Message]) -> RepairResult:
        for msg in messages:
            if msg is None:
                self.changed = True
                continue
            if msg.role != MessageRole.TOOL:
                self.clear_pending()
            if msg.role == MessageRole.ASSISTANT:
                self.on_assistant(msg)
            elif msg.role == MessageRole.TOOL:
                self.on_tool(msg)
            else:
                self.output.append(msg)
        self.clear_pending()
        return RepairResult(messages=self.output, changed=self.changed)


def normalize_tool_call_messages(
    messages: Optional[List[Message]],
    options: Optional[RepairOptions] = None,
) -> RepairResult:
    """Enforce tool call / tool result pairing.

    Args:
        messages (Optional[List[Message]]): Conversation to check. Never
            mutated.
        options (Optional[RepairOptions]): Repair behaviour. Defaults to
            ``RepairOptions()`` (drop mode, no id rewriting).

    Returns:
        RepairResult: A new message list and whether anything changed.
    """
    return _Normalizer(options or RepairOptions()).run(list(messages or []))


# ---------------------------------------------------------------------------
# Session-level helpers
# ---------------------------------------------------------------------------


def _latest_user_text(messages: List[Message]) -> str:
    for msg in reversed(messages):
        if msg.role == MessageRole.USER and isinstance(msg.content, str) and msg.content.strip():
            return msg.content
    return ""


def repair_dangling_tool_calls(session: Any, preserve_latest_user: bool = False) -> bool:
    """Repair a session's history in place.

    Runs ``normalize_tool_call_messages`` in drop mode with id assignment
    and de-duplication enabled.  The session is only rewritten when the
    pass changed something.

    Args:
        session (Any): Object with a mutable ``messages`` list.
        preserve_latest_user (bool): Re-append the latest user text if the
            repair removed every user message.

    Returns:
        bool: ``True`` if the session history was rewritten.
    """
    messages = getattr(session, "messages", None)
    if not messages:
        return False

    before = len(messages)
    latest_user = _latest_user_text(messages) if preserve_latest_user else ""
    result = normalize_tool_call_messages(
        messages,
        RepairOptions(
            pending_mode="drop",
            assign_missing_tool_call_id=True,
            ensure_unique_tool_call_ids=True,
            strip_empty_tool_calls=True,
        ),
    )
    if not result.changed:
        return False

    messages[:] = result.messages
    if latest_user and not _latest_user_text(messages):
        messages.append(Message(role=MessageRole.USER, content=latest_user))
    logger.info("Repaired dangling tool calls: %d -> %d messages", before, len(messages))
    return True


def discard_latest_turn(session: Any) -> None:
    """Remove the latest user turn and everything produced after it.

    Used after an aborted run so that no dangling tool calls remain.

    Args:
        session (Any): Object with a mutable ``messages`` list.
    """
    messages = getattr(session, "messages", None)
    if not messages:
        return
    while messages:
        last = messages.pop()
        if last is not None and last.role == MessageRole.USER:
            break
    repair_dangling_tool_calls(session)
