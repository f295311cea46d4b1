# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Tests for ChatSession."""

from heureum_context.models import Message, MessageRole
from heureum_context.services.session import ChatSession, SessionLike


class TestChatSession:
    """Tests for the in-memory session."""

    def test_preambles_head_the_messages(self):
        """Verify the system prompt and extras start the list."""
        extra = Message(role=MessageRole.SYSTEM, content="extra")
        session = ChatSession(system_prompt="sys", extra_system_prompts=[extra])
        session.add_user("hi")
        assert [m.content for m in session.messages] == ["sys", "extra", "hi"]
        assert [m.content for m in session.body] == ["hi"]

    def test_generated_session_id(self):
        """Verify a session id is generated when none is given."""
        assert ChatSession().session_id.startswith("sess_")
        assert ChatSession(session_id="abc").session_id == "abc"

    def test_extra_prompts_are_copies(self):
        """Verify callers cannot mutate the registered extras."""
        session = ChatSession(extra_system_prompts=[Message(role=MessageRole.SYSTEM, content="e")])
        session.extra_system_prompts()[0].content = "changed"
        assert session.extra_system_prompts()[0].content == "e"

    def test_set_extra_system_prompts_keeps_body(self):
        """Verify replacing extras keeps the conversation."""
        session = ChatSession(system_prompt="sys")
        session.add_user("hi")
        session.set_extra_system_prompts([Message(role=MessageRole.SYSTEM, content="new")])
        assert [m.content for m in session.messages] == ["sys", "new", "hi"]

    def test_tool_result_and_reset(self):
        """Verify tool results are recorded and reset clears the body."""
        session = ChatSession(system_prompt="sys")
        session.add_user("run")
        session.add_assistant("", tool_calls=[{"id": "c1", "name": "run", "args": {}}])
        result = session.add_tool_result("c1", "out", tool_name="run")
        assert result.role == MessageRole.TOOL
        assert result.tool_call_id == "c1"
        session.reset()
        assert [m.content for m in session.messages] == ["sys"]

    def test_protocol(self):
        """Verify ChatSession satisfies SessionLike."""
        assert isinstance(ChatSession(), SessionLike)
