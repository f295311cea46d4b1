# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Model caller used by context management.

``ModelCaller`` is the only contract the compaction layer needs from the
model client.  ``LangChainModelCaller`` implements it on top of a LangChain
chat model so the same ``ChatOpenAI`` / ``ChatGoogleGenerativeAI`` instances
used by the agent can produce summaries.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from heureum_context.config import settings
from heureum_context.models import Message, MessageRole
from heureum_context.services.compaction.errors import CancelSignal, throw_if_cancelled
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

logger = logging.getLogger(__name__)


class ModelCaller(Protocol):
    """Minimal chat interface consumed by the summarizer and recovery loop."""

    default_model: Optional[str]

    async def chat(
        self,
        model: Optional[str],
        messages: Sequence[Message],
        *,
        stream: bool = False,
        disable_tools: bool = False,
        max_tool_passes: Optional[int] = None,
        signal: CancelSignal = None,
    ) -> str:
        ...


def create_llm(model: Optional[str] = None) -> BaseChatModel:
    """Create a LangChain chat model for *model* (defaults to AGENT_MODEL).

    Gemini routing:
      - GOOGLE_API_KEY set → Google AI Studio (simple API key auth)
      - Otherwise → Vertex AI (GCP service account / ADC)
    """
    model = model or settings.AGENT_MODEL
    if model.startswith("gemini"):
        if settings.GOOGLE_API_KEY:
            return ChatGoogleGenerativeAI(
                model=model,
                google_api_key=settings.GOOGLE_API_KEY,
                temperature=settings.AGENT_TEMPERATURE,
                max_output_tokens=settings.AGENT_MAX_TOKENS,
            )
        # pydantic-settings does not export .env values to os.environ
        if settings.GOOGLE_APPLICATION_CREDENTIALS:
            os.environ.setdefault(
                "GOOGLE_APPLICATION_CREDENTIALS",
                settings.GOOGLE_APPLICATION_CREDENTIALS,
            )
        return ChatGoogleGenerativeAI(
            model=model,
            vertexai=True,
            project=settings.GOOGLE_CLOUD_PROJECT,
            location=settings.GOOGLE_CLOUD_LOCATION,
            temperature=settings.AGENT_TEMPERATURE,
            max_output_tokens=settings.AGENT_MAX_TOKENS,
        )
    return ChatOpenAI(
        api_key=SecretStr(settings.OPENAI_API_KEY),
        model=model,
        temperature=settings.AGENT_TEMPERATURE,
        max_completion_tokens=settings.AGENT_MAX_TOKENS,
    )


def to_lc_message(msg: Message) -> BaseMessage:
    """Convert an app Message to a LangChain message.

    Args:
        msg (Message): The application-level message to convert.

    Returns:
        BaseMessage: The corresponding LangChain message instance.
    """
    if msg.role == MessageRole.USER:
        return HumanMessage(content=msg.content)
    if msg.role == MessageRole.ASSISTANT:
        return AIMessage(content=msg.content, tool_calls=msg.tool_calls or [])
    if msg.role == MessageRole.SYSTEM:
        return SystemMessage(content=msg.content)
    if msg.role == MessageRole.TOOL:
        return ToolMessage(content=msg.content, tool_call_id=msg.tool_call_id or "unknown")
    return HumanMessage(content=msg.content)


def extract_text(content: Any) -> str:
    """Extract plain text from LLM response content.

    Args:
        content (Any): Raw content from an LLM response (str, list, or
            other type).

    Returns:
        str: The concatenated text representation.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return " ".join(
            item if isinstance(item, str) else item.get("text", "")
            for item in content
            if isinstance(item, (str, dict))
        )
    return str(content)


class LangChainModelCaller:
    """``ModelCaller`` backed by LangChain chat models.

    Args:
        llm (Optional[BaseChatModel]): Model used for the default model id.
            Created with ``create_llm`` when omitted.
        default_model (Optional[str]): Model id ``llm`` serves.
        llm_factory (Optional[Callable[[str], BaseChatModel]]): Builds models
            for other ids. Defaults to ``create_llm``.
        tools (Optional[List[Any]]): Tool schemas bound unless the call
            disables tools.
    """

    def __init__(
        self,
        llm: Optional[BaseChatModel] = None,
        default_model: Optional[str] = None,
        llm_factory: Optional[Callable[[str], BaseChatModel]] = None,
        tools: Optional[List[Any]] = None,
    ) -> None:
        self.default_model = default_model or settings.AGENT_MODEL
        self.llm_factory = llm_factory or create_llm
        self.tools = tools or []
        self._models: Dict[str, BaseChatModel] = {}
        if llm is not None:
            self._models[self.default_model] = llm

    def get_llm(self, model: Optional[str] = None) -> BaseChatModel:
        """Return (and cache) the chat model serving *model*."""
        key = model or self.default_model
        if key not in self._models:
            self._models[key] = self.llm_factory(key)
        return self._models[key]

    async def chat(
        self,
        model: Optional[str],
        messages: Sequence[Message],
        *,
        stream: bool = False,
        disable_tools: bool = False,
        max_tool_passes: Optional[int] = None,
        signal: CancelSignal = None,
    ) -> str:
        """Send *messages* and return the assistant text.

        ``max_tool_passes`` is accepted for interface compatibility; this
        caller never executes tools itself.

        Raises:
            OperationCancelledError: If *signal* is set before the call.
        """
        throw_if_cancelled(signal)
        llm: Any = self.get_llm(model)
        if self.tools and not disable_tools:
            llm = llm.bind_tools(self.tools)
        lc_messages = [to_lc_message(m) for m in messages]
        logger.debug("Calling %s with %d messages (stream=%s)", model or self.default_model, len(lc_messages), stream)

        if stream:
            parts: List[str] = []
            async for chunk in llm.astream(lc_messages):
                throw_if_cancelled(signal)
                parts.append(extract_text(chunk.content))
            return "".join(parts)

        response = await llm.ainvoke(lc_messages)
        return extract_text(response.content)
