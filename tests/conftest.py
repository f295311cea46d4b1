# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Shared test fixtures for heureum-context test suite."""

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from heureum_context.models import Message, MessageRole
from heureum_context.services.compaction.settings import CompactionSettings
from heureum_context.services.session import ChatSession

# ---------------------------------------------------------------------------
# Message / session factories
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_message():
    """Factory fixture for creating Message instances."""

    def _factory(
        role: MessageRole = MessageRole.USER,
        content: Any = "hello",
        tool_call_id: Optional[str] = None,
        tool_calls: Optional[List[Dict[str, Any]]] = None,
        name: Optional[str] = None,
    ) -> Message:
        return Message(
            role=role,
            content=content,
            tool_call_id=tool_call_id,
            tool_calls=tool_calls,
            name=name,
        )

    return _factory


@pytest.fixture
def long_session():
    """Factory fixture for a session of user/assistant pairs.

    Each message carries 750 ASCII bytes, i.e. a weight of 250.
    """

    def _factory(
        pairs: int = 10,
        system_prompt: str = "",
        session_id: str = "sess_test",
        size: int = 750,
    ) -> ChatSession:
        session = ChatSession(system_prompt=system_prompt, session_id=session_id)
        for i in range(pairs):
            session.add_user(f"u{i:02d}" + "a" * (size - 3))
            session.add_assistant(f"a{i:02d}" + "b" * (size - 3))
        return session

    return _factory


@pytest.fixture
def compaction_settings():
    """Factory fixture for CompactionSettings with test-friendly defaults."""

    def _factory(**overrides: Any) -> CompactionSettings:
        values: Dict[str, Any] = {"summary_threshold": 2000, "keep_ratio": 0.3}
        values.update(overrides)
        return CompactionSettings(**values)

    return _factory


# ---------------------------------------------------------------------------
# Model caller mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_caller():
    """Factory fixture for a ModelCaller whose chat() is an AsyncMock."""

    def _factory(
        response: str = "Short summary.",
        side_effect: Any = None,
        default_model: str = "gpt-4o-mini",
    ) -> MagicMock:
        caller = MagicMock()
        caller.default_model = default_model
        caller.chat = AsyncMock(return_value=response, side_effect=side_effect)
        return caller

    return _factory


class FakeStatusError(Exception):
    """Provider-style error carrying an HTTP status and an error body."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@pytest.fixture
def status_error():
    """Factory fixture for provider-style errors."""

    def _factory(
        message: str = "This model's maximum context length is 8192 tokens.",
        status_code: Optional[int] = 400,
        code: Optional[str] = None,
        type: Optional[str] = None,
    ) -> FakeStatusError:
        body = None
        if code or type:
            body = {"error": {"message": message, "code": code, "type": type}}
        return FakeStatusError(message, status_code=status_code, body=body)

    return _factory
