# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Chat session accessor.

Context management reads and writes ``session.messages`` directly.  The
list always starts with the system prompt (when set) followed by the
extra system prompts; everything after them is the conversation body.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from heureum_context.models import Message, MessageContent, MessageRole
from heureum_context.services.compaction.trim import build_preambles


@runtime_checkable
class SessionLike(Protocol):
    """What context management needs from a session object."""

    system_prompt: str
    messages: List[Message]

    def extra_system_prompts(self) -> List[Message]:
        ...


class ChatSession:
    """In-memory conversation with fixed system preambles.

    Attributes:
        system_prompt (str): Main system prompt.
        session_id (str): Identifier used as the single-flight scope and in
            telemetry payloads.
        messages (List[Message]): Preambles followed by the conversation.
    """

    def __init__(
        self,
        system_prompt: str = "",
        session_id: Optional[str] = None,
        extra_system_prompts: Optional[List[Message]] = None,
    ) -> None:
        self.system_prompt = system_prompt
        self.session_id = session_id or f"sess_{uuid.uuid4().hex[:12]}"
        self._extra_system_prompts: List[Message] = list(extra_system_prompts or [])
        self.messages: List[Message] = build_preambles(system_prompt, self._extra_system_prompts)

    def extra_system_prompts(self) -> List[Message]:
        """Copies of the extra system prompts registered on this session."""
        return [m.model_copy(deep=True) for m in self._extra_system_prompts]

    def set_extra_system_prompts(self, prompts: Optional[List[Message]]) -> None:
        """Replace the extra system prompts, keeping the conversation body."""
        body = self.body
        self._extra_system_prompts = list(prompts or [])
        self.messages[:] = build_preambles(self.system_prompt, self._extra_system_prompts) + body

    def reset(self) -> None:
        """Drop the conversation body, keeping only the preambles."""
        self.messages[:] = build_preambles(self.system_prompt, self._extra_system_prompts)

    def add_user(self, content: MessageContent) -> Message:
        msg = Message(role=MessageRole.USER, content=content)
        self.messages.append(msg)
        return msg

    def add_assistant(
        self,
        content: MessageContent = "",
        tool_calls: Optional[List[Dict[str, Any]]] = None,
    ) -> Message:
        msg = Message(role=MessageRole.ASSISTANT, content=content, tool_calls=tool_calls)
        self.messages.append(msg)
        return msg

    def add_tool_result(
        self,
        tool_call_id: str,
        content: MessageContent,
        tool_name: Optional[str] = None,
    ) -> Message:
        msg = Message(
            role=MessageRole.TOOL,
            content=content,
            tool_call_id=tool_call_id,
            tool_name=tool_name,
        )
        self.messages.append(msg)
        return msg

    @property
    def body(self) -> List[Message]:
        """Messages after the preambles."""
        head = len(build_preambles(self.system_prompt, self._extra_system_prompts))
        return self.messages[head:]
