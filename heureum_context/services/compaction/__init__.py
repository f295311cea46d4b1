# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Context compaction module.

Keeps a conversation within the model's context window:

  Size estimation  (tokens.py)
      Cheap UTF-8 based weight, ceil(bytes / 3) per message.

  Tail selection  (tail.py)
      Split point between the summarized prefix and the verbatim tail.

  Tool-call repair  (repair.py)
      Drop or strip dangling tool calls and orphaned tool results.

  Summarization  (summarizer.py, passes.py)
      Byte-budgeted digest, summary model call, up to 3 passes (6 when
      forced), one in-flight run per session.

  Recovery  (recovery.py, trim.py)
      On "context too large": summarize and retry, then hard trim and
      retry once more.

Usage:

    manager = SummaryManager()
    await manager.maybe_summarize(session, caller, model)

    result = await run_with_context_recovery(
        run,
        summarize=lambda: manager.force_summarize(session, caller, model),
        hard_trim=lambda **_: hard_trim_session(session),
    )
"""

from heureum_context.services.compaction.errors import (
    ContextLengthInfo,
    ContextTooLargeError,
    ErrorInfo,
    OperationCancelledError,
    ToolCallProtocolError,
    extract_error_info,
    format_context_error_detail,
    is_cancelled,
    is_context_length_error,
    is_tool_call_protocol_error,
    parse_context_length_error,
    throw_if_cancelled,
)
from heureum_context.services.compaction.passes import (
    EventLogger,
    PassPolicy,
    SummaryManager,
    run_summary_passes,
)
from heureum_context.services.compaction.recovery import run_with_context_recovery
from heureum_context.services.compaction.repair import (
    RepairOptions,
    RepairResult,
    discard_latest_turn,
    normalize_tool_call_messages,
    repair_dangling_tool_calls,
)
from heureum_context.services.compaction.settings import CompactionSettings, SummaryPromptConfig
from heureum_context.services.compaction.summarizer import (
    build_summary_prompt,
    load_summary_prompt_config,
    render_history_for_summary,
    summarize_session,
)
from heureum_context.services.compaction.summary_record import (
    build_summary_message,
    extract_latest_summary_text,
    is_summary_message,
)
from heureum_context.services.compaction.tail import NO_SPLIT, compute_tail_start_index
from heureum_context.services.compaction.tokens import (
    estimate_message_tokens,
    estimate_token_count,
    extract_plain_text,
)
from heureum_context.services.compaction.trim import hard_trim_messages, hard_trim_session

__all__ = [
    "CompactionSettings",
    "SummaryPromptConfig",
    "estimate_token_count",
    "estimate_message_tokens",
    "extract_plain_text",
    "NO_SPLIT",
    "compute_tail_start_index",
    "RepairOptions",
    "RepairResult",
    "normalize_tool_call_messages",
    "repair_dangling_tool_calls",
    "discard_latest_turn",
    "render_history_for_summary",
    "build_summary_prompt",
    "load_summary_prompt_config",
    "summarize_session",
    "build_summary_message",
    "extract_latest_summary_text",
    "is_summary_message",
    "EventLogger",
    "PassPolicy",
    "SummaryManager",
    "run_summary_passes",
    "run_with_context_recovery",
    "hard_trim_messages",
    "hard_trim_session",
    "ContextTooLargeError",
    "OperationCancelledError",
    "ToolCallProtocolError",
    "ErrorInfo",
    "ContextLengthInfo",
    "extract_error_info",
    "is_cancelled",
    "throw_if_cancelled",
    "is_context_length_error",
    "is_tool_call_protocol_error",
    "parse_context_length_error",
    "format_context_error_detail",
]
