# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Chat call wrapped with tool-call repair and context recovery.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from heureum_context.services.compaction.errors import (
    CancelSignal,
    format_context_error_detail,
    is_cancellation_error,
    is_tool_call_protocol_error,
    normalize_error_text,
    parse_context_length_error,
    throw_if_cancelled,
)
from heureum_context.services.compaction.passes import SummaryManager
from heureum_context.services.compaction.recovery import (
    REASON_SUMMARY_EXCEEDED,
    REASON_SUMMARY_FAILED,
    run_with_context_recovery,
)
from heureum_context.services.compaction.repair import repair_dangling_tool_calls
from heureum_context.services.compaction.summarizer import summarize_session
from heureum_context.services.compaction.trim import hard_trim_session

logger = logging.getLogger(__name__)


async def chat_with_context_recovery(
    caller: Any,
    model: Optional[str],
    session: Any,
    *,
    signal: CancelSignal = None,
    summary_manager: Optional[SummaryManager] = None,
    **chat_options: Any,
) -> str:
    """Send the session to the model, recovering from known failure modes.

    * Dangling tool calls left by an aborted run are repaired up front.
    * A tool-call protocol error triggers one repair-and-retry.
    * A context-length error triggers a forced summary, then a hard trim.

    Args:
        caller (Any): ``ModelCaller`` used for the chat and summary calls.
        model (Optional[str]): Model id.
        session (Any): Session whose ``messages`` are sent and compacted.
        signal (CancelSignal): Cancellation signal.
        summary_manager (Optional[SummaryManager]): Shared manager for
            forced summaries. Falls back to a single ``summarize_session``.
        **chat_options: Extra keyword arguments for ``caller.chat``.

    Returns:
        str: The assistant text.
    """
    repair_dangling_tool_calls(session, preserve_latest_user=True)

    async def run_chat() -> str:
        try:
            return await caller.chat(model, session.messages, signal=signal, **chat_options)
        except Exception as err:
            if not is_tool_call_protocol_error(err):
                raise
            throw_if_cancelled(signal)
            if repair_dangling_tool_calls(session, preserve_latest_user=True):
                logger.warning("Dangling tool_calls detected, repaired history and retrying")
                throw_if_cancelled(signal)
                return await caller.chat(model, session.messages, signal=signal, **chat_options)
            logger.warning("tool_calls protocol error could not be repaired")
            raise

    summary_error: Optional[BaseException] = None

    async def summarize_for_context() -> bool:
        nonlocal summary_error
        summary_error = None
        try:
            if summary_manager is not None:
                return await summary_manager.force_summarize(session, caller, model, signal=signal)
            return await summarize_session(session, caller, model, signal=signal)
        except Exception as e:
            if is_cancellation_error(e, signal):
                raise
            summary_error = e
            logger.warning("Automatic summary failed: %s", normalize_error_text(e))
            return False

    def hard_trim_for_context(reason: str = "", error: Optional[BaseException] = None, **_: Any) -> None:
        if reason == REASON_SUMMARY_FAILED:
            if summary_error is not None:
                logger.warning("Automatic summary failed, trimming to minimal context and retrying")
            else:
                logger.warning("Automatic summary did not shorten the context, trimming and retrying")
        elif reason == REASON_SUMMARY_EXCEEDED:
            detail = format_context_error_detail(parse_context_length_error(error))
            logger.warning("Still too long after summary, trimming to minimal context%s", detail)
        hard_trim_session(session)

    def on_context_error(err: BaseException) -> None:
        detail = format_context_error_detail(parse_context_length_error(err))
        logger.warning("Context too long, summarizing before retry%s", detail)

    return await run_with_context_recovery(
        run_chat,
        summarize=summarize_for_context,
        hard_trim=hard_trim_for_context,
        signal=signal,
        on_context_error=on_context_error,
        retry_if_summarize_failed=False,
    )
