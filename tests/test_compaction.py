# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Tests for the compaction module: size estimation, tail selection, repair, records and trim."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from heureum_context.models import Message, MessageRole
from heureum_context.services.compaction.repair import (
    RepairOptions,
    discard_latest_turn,
    normalize_tool_call_messages,
    repair_dangling_tool_calls,
)
from heureum_context.services.compaction.summary_record import (
    append_summary_text,
    build_summary_message,
    extract_latest_summary_text,
    is_summary_message,
    pick_latest_summary_message,
)
from heureum_context.services.compaction.tail import NO_SPLIT, compute_tail_start_index, split_for_summary
from heureum_context.services.compaction.tokens import (
    estimate_message_tokens,
    estimate_token_count,
    extract_plain_text,
)
from heureum_context.services.compaction.trim import hard_trim_messages, hard_trim_session
from heureum_context.services.prompts.base import SUMMARY_MESSAGE_NAME, TRIM_NOTICE, TRIM_NOTICE_NAME
from heureum_context.services.session import ChatSession

# ---------------------------------------------------------------------------
# Common helpers
# ---------------------------------------------------------------------------


def _msg(role: MessageRole, content: Any = "x" * 99) -> Message:
    """Create a test Message with the given role and content."""
    return Message(role=role, content=content)


def _assistant_calls(*ids: Optional[str], content: str = "") -> Message:
    """Assistant message issuing one tool call per id."""
    calls: List[Dict[str, Any]] = []
    for call_id in ids:
        call: Dict[str, Any] = {"name": "search", "args": {"q": "x"}}
        if call_id is not None:
            call["id"] = call_id
        calls.append(call)
    return Message(role=MessageRole.ASSISTANT, content=content, tool_calls=calls)


def _tool(call_id: Optional[str], content: str = "result") -> Message:
    return Message(role=MessageRole.TOOL, content=content, tool_call_id=call_id)


def _roles(messages: List[Message]) -> List[str]:
    return [m.role.value for m in messages]


# ===========================================================================
# Size estimation
# ===========================================================================


class TestEstimateMessageTokens:
    """Tests for estimate_message_tokens."""

    def test_ascii_rounds_up(self):
        """Verify weight is ceil(bytes / 3)."""
        assert estimate_message_tokens(_msg(MessageRole.USER, "abc")) == 1
        assert estimate_message_tokens(_msg(MessageRole.USER, "abcd")) == 2

    def test_multibyte_text(self):
        """Verify multi-byte characters count by UTF-8 length."""
        # 2 chars * 3 bytes = 6 bytes
        assert estimate_message_tokens(_msg(MessageRole.USER, "你好")) == 2

    def test_empty_content_is_zero(self):
        """Verify empty content has no weight."""
        assert estimate_message_tokens(_msg(MessageRole.ASSISTANT, "")) == 0
        assert estimate_message_tokens(None) == 0

    def test_image_parts_count_url_bytes(self):
        """Verify image URLs count once as a placeholder and once as raw bytes."""
        content = [
            {"type": "text", "text": "hello"},
            {"type": "image_url", "image_url": {"url": "data:xxx"}},
        ]
        # "hello [image_url bytes=8]" = 25 bytes, plus 8 image bytes
        assert estimate_message_tokens(_msg(MessageRole.USER, content)) == 11

    def test_tool_calls_not_counted(self):
        """Verify the tool_calls field adds no weight."""
        msg = _assistant_calls("c1", content="abc")
        assert estimate_message_tokens(msg) == 1


class TestEstimateTokenCount:
    """Tests for estimate_token_count."""

    def test_sum_of_messages(self):
        """Verify the total is the sum of per-message weights."""
        messages = [_msg(MessageRole.USER, "a" * 30), _msg(MessageRole.ASSISTANT, "b" * 31)]
        assert estimate_token_count(messages) == 10 + 11

    def test_empty_or_none(self):
        """Verify empty input weighs nothing."""
        assert estimate_token_count([]) == 0
        assert estimate_token_count(None) == 0

    def test_lone_surrogate(self):
        """Verify a lone surrogate (e.g. from JSON) counts three bytes instead of failing."""
        text = json.loads('"abc \\ud83d def"')
        # 8 ASCII bytes + 3 for the surrogate
        assert estimate_token_count([_msg(MessageRole.USER, text)]) == 4

    def test_non_decreasing_in_length(self):
        """Verify longer content never weighs less."""
        weights = [estimate_token_count([_msg(MessageRole.USER, "a" * n)]) for n in range(0, 40)]
        assert all(w >= 0 for w in weights)
        assert weights == sorted(weights)


class TestExtractPlainText:
    """Tests for extract_plain_text."""

    def test_parts_joined_with_space(self):
        """Verify text parts are joined by single spaces."""
        content = [{"type": "text", "text": "a"}, "b", {"type": "text", "text": "c"}]
        assert extract_plain_text(content) == "a b c"

    def test_string_image_url(self):
        """Verify the string form of image_url is recognised."""
        content = [{"type": "image_url", "image_url": "http://x"}]
        assert extract_plain_text(content) == "[image_url bytes=8]"

    def test_none(self):
        """Verify None renders as empty text."""
        assert extract_plain_text(None) == ""


# ===========================================================================
# Tail selection
# ===========================================================================


class TestComputeTailStartIndex:
    """Tests for compute_tail_start_index."""

    def test_single_message_no_split(self):
        """Verify a single message is never split."""
        assert compute_tail_start_index([_msg(MessageRole.USER)]) == NO_SPLIT

    def test_zero_weight_no_split(self):
        """Verify a weightless list is never split."""
        messages = [_msg(MessageRole.USER, ""), _msg(MessageRole.ASSISTANT, "")]
        assert compute_tail_start_index(messages) == NO_SPLIT

    def test_keeps_ratio_of_weight(self, long_session):
        """Verify the tail holds the newest 30% of the weight."""
        body = long_session(pairs=10).body
        # 20 messages of 250 -> target 1500 -> last 6 messages
        assert compute_tail_start_index(body, 0.3) == 14

    def test_clamped_to_last_user(self):
        """Verify the split never lands after the latest user message."""
        messages = [
            _msg(MessageRole.USER, "x" * 300),
            _msg(MessageRole.ASSISTANT, "y" * 300),
            _msg(MessageRole.USER, "q" * 3),
            _msg(MessageRole.ASSISTANT, "z" * 3000),
        ]
        assert compute_tail_start_index(messages, 0.3) == 2

    def test_split_at_zero_is_no_split(self):
        """Verify a tail that would swallow everything is reported as no split."""
        messages = [_msg(MessageRole.USER, "x" * 3000), _msg(MessageRole.ASSISTANT, "y")]
        assert compute_tail_start_index(messages, 0.3) == NO_SPLIT

    def test_invalid_ratio_falls_back(self, long_session):
        """Verify ratios outside (0, 1) behave like 0.3."""
        body = long_session(pairs=10).body
        assert compute_tail_start_index(body, 1.5) == compute_tail_start_index(body, 0.3)
        assert compute_tail_start_index(body, 0) == compute_tail_start_index(body, 0.3)

    def test_custom_estimator(self, long_session):
        """Verify a caller-supplied estimator drives the split."""
        body = long_session(pairs=5).body
        # Each message weighs 1 -> target ceil(10 * 0.25) = 3 -> index 7
        assert compute_tail_start_index(body, 0.25, estimator=len) == 7

    def test_never_after_last_user(self, long_session):
        """Verify the property across several ratios."""
        body = long_session(pairs=6).body
        last_user = max(i for i, m in enumerate(body) if m.role == MessageRole.USER)
        for ratio in (0.05, 0.1, 0.3, 0.5, 0.9):
            idx = compute_tail_start_index(body, ratio)
            assert idx == NO_SPLIT or idx <= last_user


class TestSplitForSummary:
    """Tests for split_for_summary."""

    def test_returns_prefix_and_tail(self, long_session):
        """Verify the split partitions the list."""
        body = long_session(pairs=10).body
        prefix, tail = split_for_summary(body, 0.3)
        assert len(prefix) == 14
        assert len(tail) == 6
        assert prefix + tail == body

    def test_none_without_split(self):
        """Verify None is returned when nothing can be split."""
        assert split_for_summary([_msg(MessageRole.USER)]) is None


# ===========================================================================
# Tool-call repair
# ===========================================================================


class TestNormalizeToolCallMessagesDrop:
    """Tests for normalize_tool_call_messages in drop mode."""

    def test_partial_answer_then_user_is_dropped(self):
        """Verify a half-answered call set is removed up to the next user turn."""
        messages = [
            _msg(MessageRole.USER, "first"),
            _assistant_calls("c1", "c2"),
            _tool("c1"),
            _msg(MessageRole.USER, "second"),
        ]
        result = normalize_tool_call_messages(messages, RepairOptions(pending_mode="drop"))
        assert result.changed is True
        assert _roles(result.messages) == ["user", "user"]
        assert result.messages[1].content == "second"

    def test_unanswered_at_end_is_dropped(self):
        """Verify an unanswered trailing call set is removed."""
        messages = [_msg(MessageRole.USER), _assistant_calls("c1")]
        result = normalize_tool_call_messages(messages)
        assert result.changed is True
        assert _roles(result.messages) == ["user"]

    def test_orphan_tool_result_dropped(self):
        """Verify a tool result with no open call set is removed."""
        messages = [_msg(MessageRole.USER), _tool("c9"), _msg(MessageRole.ASSISTANT, "ok")]
        result = normalize_tool_call_messages(messages)
        assert result.changed is True
        assert _roles(result.messages) == ["user", "assistant"]

    def test_unknown_id_dropped(self):
        """Verify a tool result for an id outside the open set is removed."""
        messages = [
            _msg(MessageRole.USER),
            _assistant_calls("c1"),
            _tool("c2"),
            _tool("c1"),
            _msg(MessageRole.ASSISTANT, "done"),
        ]
        result = normalize_tool_call_messages(messages)
        assert result.changed is True
        assert _roles(result.messages) == ["user", "assistant", "tool", "assistant"]
        assert result.messages[2].tool_call_id == "c1"

    def test_repeated_result_for_answered_call_dropped(self):
        """Verify only the first tool result per call id is kept."""
        messages = [
            _msg(MessageRole.USER),
            _assistant_calls("c1", "c2"),
            _tool("c1", "first"),
            _tool("c1", "second"),
            _tool("c2"),
            _msg(MessageRole.USER, "next"),
        ]
        result = normalize_tool_call_messages(messages)
        assert result.changed is True
        assert _roles(result.messages) == ["user", "assistant", "tool", "tool", "user"]
        assert [m.tool_call_id for m in result.messages[2:4]] == ["c1", "c2"]
        assert result.messages[2].content == "first"

    def test_no_dangling_tool_results_survive(self):
        """Verify every kept tool result matches a preceding open call."""
        messages = [
            _tool("x0"),
            _msg(MessageRole.USER),
            _assistant_calls("c1", "c2"),
            _tool("c2"),
            _tool("zz"),
            _tool("c1"),
            _assistant_calls("c3"),
            _msg(MessageRole.USER, "again"),
            _tool("c3"),
        ]
        result = normalize_tool_call_messages(messages)
        open_ids: set = set()
        for msg in result.messages:
            if msg.role == MessageRole.ASSISTANT and msg.tool_calls:
                open_ids = {c["id"] for c in msg.tool_calls}
            elif msg.role == MessageRole.TOOL:
                assert msg.tool_call_id in open_ids
                open_ids.discard(msg.tool_call_id)
            else:
                assert not open_ids
        assert not open_ids

    def test_input_not_mutated(self):
        """Verify the input list is left untouched."""
        messages = [_msg(MessageRole.USER), _assistant_calls("c1")]
        snapshot = [m.model_copy(deep=True) for m in messages]
        normalize_tool_call_messages(messages)
        assert messages == snapshot


class TestNormalizeToolCallMessagesStrip:
    """Tests for normalize_tool_call_messages in strip mode."""

    def test_interrupted_call_set_stripped(self):
        """Verify the assistant keeps its text but loses its calls."""
        messages = [
            _msg(MessageRole.USER),
            _assistant_calls("c1", content="let me look"),
            _msg(MessageRole.USER, "never mind"),
        ]
        result = normalize_tool_call_messages(messages, RepairOptions(pending_mode="strip"))
        assert result.changed is True
        assert _roles(result.messages) == ["user", "assistant", "user"]
        assert result.messages[1].content == "let me look"
        assert result.messages[1].tool_calls == []

    def test_partial_answers_removed_with_calls(self):
        """Verify results of a stripped call set go too, so a second pass is a no-op."""
        messages = [
            _msg(MessageRole.USER),
            _assistant_calls("c1", "c2", content="checking"),
            _tool("c1"),
            _msg(MessageRole.USER, "next"),
        ]
        options = RepairOptions(pending_mode="strip")
        result = normalize_tool_call_messages(messages, options)
        assert result.changed is True
        assert _roles(result.messages) == ["user", "assistant", "user"]
        assert result.messages[1].content == "checking"

        again = normalize_tool_call_messages(result.messages, options)
        assert again.changed is False
        assert again.messages == result.messages

    def test_fully_answered_is_idempotent(self):
        """Verify a valid sequence passes through unchanged."""
        messages = [
            _msg(MessageRole.USER),
            _assistant_calls("c1", "c2"),
            _tool("c1"),
            _tool("c2"),
            _msg(MessageRole.ASSISTANT, "done"),
        ]
        result = normalize_tool_call_messages(messages, RepairOptions(pending_mode="strip"))
        assert result.changed is False
        assert result.messages == messages

    def test_idempotent_with_id_rewriting_enabled(self):
        """Verify id assignment and de-duplication do not flag a valid sequence."""
        messages = [_msg(MessageRole.USER), _assistant_calls("c1"), _tool("c1")]
        options = RepairOptions(
            assign_missing_tool_call_id=True,
            ensure_unique_tool_call_ids=True,
            strip_empty_tool_calls=True,
        )
        first = normalize_tool_call_messages(messages, options)
        second = normalize_tool_call_messages(first.messages, options)
        assert first.changed is False
        assert second.changed is False
        assert second.messages == messages


class TestNormalizeToolCallIds:
    """Tests for id assignment and de-duplication."""

    def test_missing_ids_assigned(self):
        """Verify missing call ids are generated and tool results attached."""
        messages = [_msg(MessageRole.USER), _assistant_calls(None), _tool(None)]
        options = RepairOptions(assign_missing_tool_call_id=True, generate_id=lambda: "gen_1")
        result = normalize_tool_call_messages(messages, options)
        assert result.changed is True
        assert result.messages[1].tool_calls[0]["id"] == "gen_1"
        assert result.messages[2].tool_call_id == "gen_1"

    def test_duplicate_ids_made_unique(self):
        """Verify colliding ids within one assistant message are regenerated."""
        messages = [_msg(MessageRole.USER), _assistant_calls("c1", "c1"), _tool("c1"), _tool("c_new")]
        options = RepairOptions(ensure_unique_tool_call_ids=True, generate_id=lambda: "c_new")
        result = normalize_tool_call_messages(messages, options)
        assert [c["id"] for c in result.messages[1].tool_calls] == ["c1", "c_new"]
        assert _roles(result.messages) == ["user", "assistant", "tool", "tool"]

    def test_strip_empty_tool_calls(self):
        """Verify an assistant whose calls are all invalid loses the field."""
        messages = [
            _msg(MessageRole.USER),
            Message(role=MessageRole.ASSISTANT, content="hi", tool_calls=[{"name": "x", "id": " "}]),
        ]
        options = RepairOptions(ensure_unique_tool_call_ids=True, strip_empty_tool_calls=True)
        result = normalize_tool_call_messages(messages, options)
        assert result.changed is True
        assert result.messages[1].tool_calls is None
        assert result.messages[1].content == "hi"


class TestRepairDanglingToolCalls:
    """Tests for the session-level repair helpers."""

    def test_clean_session_untouched(self):
        """Verify a valid session is reported unchanged."""
        session = ChatSession(system_prompt="sys")
        session.add_user("hi")
        session.add_assistant("hello")
        before = list(session.messages)
        assert repair_dangling_tool_calls(session, preserve_latest_user=True) is False
        assert session.messages == before

    def test_dangling_call_removed_in_place(self):
        """Verify the session list is rewritten in place."""
        session = ChatSession(system_prompt="sys")
        session.add_user("run it")
        session.add_assistant("", tool_calls=[{"id": "c1", "name": "run", "args": {}}])
        messages = session.messages
        assert repair_dangling_tool_calls(session, preserve_latest_user=True) is True
        assert session.messages is messages
        assert _roles(session.messages) == ["system", "user"]

    def test_empty_session(self):
        """Verify a session without messages is a no-op."""
        session = ChatSession()
        assert repair_dangling_tool_calls(session) is False

    def test_discard_latest_turn(self):
        """Verify the latest user turn and its replies are removed."""
        session = ChatSession()
        session.add_user("one")
        session.add_assistant("reply")
        session.add_user("two")
        session.add_assistant("", tool_calls=[{"id": "c1", "name": "run", "args": {}}])
        session.add_tool_result("c1", "out")
        discard_latest_turn(session)
        assert [m.content for m in session.messages] == ["one", "reply"]


# ===========================================================================
# Summary records
# ===========================================================================


class TestSummaryRecord:
    """Tests for summary record helpers."""

    def test_build_summary_message(self):
        """Verify the record is a tagged system message with a timestamp header."""
        msg = build_summary_message("  key points  ", now=datetime(2026, 1, 2, 3, 4, 5))
        assert msg.role == MessageRole.SYSTEM
        assert msg.name == SUMMARY_MESSAGE_NAME
        assert msg.content == "[Conversation summary 2026-01-02 03:04:05]\nkey points"

    def test_empty_summary_notes_failure(self):
        """Verify an empty result still yields a record noting the failure."""
        msg = build_summary_message("", RuntimeError("boom"), now=datetime(2026, 1, 2))
        assert msg.content.endswith("(automatic summary failed: boom)")
        assert is_summary_message(msg)

    def test_pick_latest(self):
        """Verify the last record in list order wins."""
        old = build_summary_message("old")
        new = build_summary_message("new")
        messages = [old, _msg(MessageRole.USER), new, _msg(MessageRole.ASSISTANT)]
        assert pick_latest_summary_message(messages) is new
        assert extract_latest_summary_text(messages).endswith("new")
        assert extract_latest_summary_text([_msg(MessageRole.USER)]) == ""

    def test_plain_system_message_is_not_a_record(self):
        """Verify untagged system messages are ignored."""
        assert is_summary_message(_msg(MessageRole.SYSTEM, "rules")) is False

    def test_append_summary_text(self):
        """Verify the append policy joins non-empty sides with the separator."""
        assert append_summary_text("a", "b") == "a\n\n---\n\nb"
        assert append_summary_text("", "b") == "b"
        assert append_summary_text("a", "  ") == "a"


# ===========================================================================
# Hard trim
# ===========================================================================


class TestHardTrim:
    """Tests for hard_trim_messages and hard_trim_session."""

    def test_keeps_preambles_notice_and_last_user(self):
        """Verify only preambles, the notice and the latest user turn remain."""
        extra = Message(role=MessageRole.SYSTEM, content="extra rules")
        messages = [
            _msg(MessageRole.SYSTEM, "sys"),
            extra,
            _msg(MessageRole.USER, "old question"),
            _msg(MessageRole.ASSISTANT, "old answer"),
            _msg(MessageRole.USER, "latest question"),
            _msg(MessageRole.ASSISTANT, "partial"),
        ]
        trimmed = hard_trim_messages(messages, "sys", [extra])
        assert _roles(trimmed) == ["system", "system", "system", "user"]
        assert trimmed[2].name == TRIM_NOTICE_NAME
        assert trimmed[2].content == TRIM_NOTICE
        assert trimmed[3].content == "latest question"
        assert trimmed[3] is not messages[4]

    def test_no_user_message(self):
        """Verify nothing follows the notice when there is no user turn."""
        trimmed = hard_trim_messages([_msg(MessageRole.ASSISTANT, "hi")], "sys")
        assert _roles(trimmed) == ["system", "system"]

    def test_hard_trim_session(self, long_session):
        """Verify the session is trimmed in place."""
        session = long_session(pairs=4, system_prompt="sys")
        hard_trim_session(session)
        assert _roles(session.messages) == ["system", "system", "user"]
        assert session.messages[2].content.startswith("u03")
