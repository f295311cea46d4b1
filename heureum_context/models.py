# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Shared models for the application."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

MessageContent = Union[str, List[Dict[str, Any]]]


class MessageRole(str, Enum):
    """Message role enumeration.

    Attributes:
        USER (str): User role.
        ASSISTANT (str): Assistant role.
        SYSTEM (str): System role.
        TOOL (str): Tool result role.
    """

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class Message(BaseModel):
    """One conversation turn.

    Attributes:
        role (MessageRole): The role of the message sender.
        content (MessageContent): Plain text, or an ordered list of typed
            parts such as ``{"type": "text", "text": ...}`` and
            ``{"type": "image_url", "image_url": {"url": ...}}``.
        name (Optional[str]): Optional tag, e.g. the summary marker.
        tool_call_id (Optional[str]): Identifier of the tool call this
            message answers (tool-role messages only).
        tool_calls (Optional[List[Dict[str, Any]]]): Tool call descriptors
            (``id``, ``name``, ``args``) emitted by the assistant.
        tool_name (Optional[str]): Name of the tool that produced this
            result (tool-role messages only).
    """

    role: MessageRole
    content: MessageContent = ""
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_name: Optional[str] = None


@dataclass
class PassResult:
    """Outcome of a single summary pass.

    Attributes:
        changed (bool): Whether the pass replaced the conversation.
        before_weight (int): Estimated weight before the pass.
        after_weight (int): Estimated weight after the pass.
        summary_text (str): Text of the latest summary record after the pass.
    """

    changed: bool
    before_weight: int
    after_weight: int
    summary_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict form for event payloads."""
        return asdict(self)
