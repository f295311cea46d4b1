# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
LLM-based summarization of older conversation turns.

One call to ``summarize_session``:

  1. Splits the fixed system preambles off the head of the session.
  2. Picks the verbatim tail with ``compute_tail_start_index``.
  3. Renders the older prefix into a byte-budgeted digest, newest first so
     the most recent context survives the budget.
  4. Asks the model for a summary (tools disabled).  On context overflow
     the byte budget is halved, down to a floor, and the call retried.
  5. Replaces the session with ``preambles + [summary record] + tail``.

The session is only touched once the model call succeeded.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from heureum_context.config import DEFAULT_KEEP_RATIO
from heureum_context.models import Message, MessageRole
from heureum_context.services.compaction.errors import (
    CancelSignal,
    is_cancellation_error,
    is_context_length_error,
    throw_if_cancelled,
)
from heureum_context.services.compaction.settings import CompactionSettings, SummaryPromptConfig
from heureum_context.services.compaction.summary_record import build_summary_message
from heureum_context.services.compaction.tail import split_for_summary
from heureum_context.services.compaction.tokens import extract_plain_text, utf8_len
from heureum_context.services.compaction.trim import session_preambles
from heureum_context.services.prompts.base import (
    DIGEST_ELLIPSIS,
    EMPTY_HISTORY_TEXT,
    ENGLISH_PROMPT_SUFFIX,
    HISTORY_PLACEHOLDER,
    SUMMARY_PROMPT_NAME,
    SUMMARY_SYSTEM_PROMPT,
    SUMMARY_USER_PROMPT_NAME,
    SUMMARY_USER_TEMPLATE,
)

logger = logging.getLogger(__name__)

_ENTRY_SEPARATOR = "\n\n"


# ---------------------------------------------------------------------------
# Digest rendering
# ---------------------------------------------------------------------------


def truncate_utf8(text: str, max_bytes: int) -> Tuple[str, int, bool]:
    """Cut *text* to at most *max_bytes* UTF-8 bytes on a character boundary.

    Args:
        text (str): Text to cut.
        max_bytes (int): Byte budget.

    Returns:
        Tuple[str, int, bool]: The kept text, its byte length, and whether
            anything was cut.
    """
    if max_bytes <= 0:
        return "", 0, bool(text)
    encoded = text.encode("utf-8", errors="surrogatepass")
    if len(encoded) <= max_bytes:
        return text, len(encoded), False
    kept = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return kept, utf8_len(kept), True


def _role_label(msg: Message) -> str:
    if msg.role == MessageRole.USER:
        return "User"
    if msg.role == MessageRole.ASSISTANT:
        return "Assistant"
    if msg.role == MessageRole.TOOL:
        return f"Tool({msg.tool_call_id or msg.name or msg.tool_name or 'tool'})"
    return "System"


def render_history_for_summary(messages: List[Message], max_bytes: int = 60_000) -> str:
    """Render messages into a digest of at most *max_bytes* UTF-8 bytes.

    Entries are ``"<Role>: <text>"`` separated by blank lines.  Messages are
    taken newest first; the oldest included entry is cut with an ellipsis
    to fill the budget exactly, then the entries are put back in
    chronological order.

    Args:
        messages (List[Message]): Messages to render.
        max_bytes (int): Byte budget. Non-positive values use 60000.

    Returns:
        str: The digest, or ``EMPTY_HISTORY_TEXT`` for an empty list.
    """
    if not messages:
        return EMPTY_HISTORY_TEXT

    budget = max_bytes if max_bytes > 0 else 60_000
    ellipsis_bytes = utf8_len(DIGEST_ELLIPSIS)
    collected: List[str] = []
    used = 0

    for msg in reversed(messages):
        if msg is None:
            continue
        prefix = f"{_role_label(msg)}: "
        separator = _ENTRY_SEPARATOR if collected else ""
        header_bytes = utf8_len(separator + prefix)
        remaining = budget - used - header_bytes
        if remaining <= 0:
            break

        raw = extract_plain_text(msg.content)
        text, body_bytes, truncated = truncate_utf8(raw, remaining)
        if truncated and remaining > ellipsis_bytes:
            cut, cut_bytes, _ = truncate_utf8(raw, remaining - ellipsis_bytes)
            text = cut + DIGEST_ELLIPSIS
            body_bytes = cut_bytes + ellipsis_bytes

        collected.append(prefix + text)
        used += header_bytes + body_bytes
        if used >= budget:
            break

    return _ENTRY_SEPARATOR.join(reversed(collected))


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------


def render_summary_user_template(template: str, history: str) -> str:
    """Insert *history* into the user template.

    ``{{history}}`` is substituted when present; otherwise the history is
    placed before the template.
    """
    if not template or not template.strip():
        template = SUMMARY_USER_TEMPLATE
    if HISTORY_PLACEHOLDER in template:
        return template.replace(HISTORY_PLACEHOLDER, history).strip()
    return f"{history}\n\n{template}".strip()


def build_summary_prompt(
    messages: List[Message],
    max_bytes: int,
    prompt_config: Optional[SummaryPromptConfig] = None,
) -> List[Message]:
    """Build the summary request: one system instruction and one user turn.

    Args:
        messages (List[Message]): Messages to summarize.
        max_bytes (int): Digest byte budget.
        prompt_config (Optional[SummaryPromptConfig]): Prompt overrides.

    Returns:
        List[Message]: ``[system, user]`` request messages.
    """
    history = render_history_for_summary(messages, max_bytes)
    config = prompt_config or SummaryPromptConfig()
    system = config.system.strip() if config.system and config.system.strip() else SUMMARY_SYSTEM_PROMPT
    user = render_summary_user_template(config.user, history)
    return [
        Message(role=MessageRole.SYSTEM, content=system),
        Message(role=MessageRole.USER, content=user),
    ]


def _prompt_key(name: Any) -> str:
    return str(name or "").strip().lower()


def _resolve_prompt(prompts: Dict[str, str], base_name: str, language: str) -> Tuple[str, str]:
    english = (language or "").strip().lower().startswith("en")
    preferred = f"{base_name}{ENGLISH_PROMPT_SUFFIX}" if english else base_name
    fallback = base_name if english else f"{base_name}{ENGLISH_PROMPT_SUFFIX}"
    for name in (preferred, fallback):
        content = prompts.get(_prompt_key(name))
        if content:
            return name, content
    return preferred, ""


def load_summary_prompt_config(
    prompt_records: Optional[Iterable[Any]] = None,
    language: str = "",
) -> SummaryPromptConfig:
    """Resolve summary prompts from stored prompt records.

    Looks up ``summary_prompt`` (system) and ``summary_prompt_user`` (user
    template), preferring the ``__en`` variant for English.  Records may be
    dicts or objects with ``name`` and ``content``.

    Args:
        prompt_records (Optional[Iterable[Any]]): Stored prompt records.
        language (str): Preferred prompt language code.

    Returns:
        SummaryPromptConfig: Resolved prompts, falling back to built-ins.
    """
    prompts: Dict[str, str] = {}
    for record in prompt_records or []:
        if record is None:
            continue
        name = record.get("name") if isinstance(record, dict) else getattr(record, "name", None)
        content = record.get("content") if isinstance(record, dict) else getattr(record, "content", None)
        key = _prompt_key(name)
        if key and isinstance(content, str) and content.strip():
            prompts[key] = content.strip()

    system_name, system = _resolve_prompt(prompts, SUMMARY_PROMPT_NAME, language)
    user_name, user = _resolve_prompt(prompts, SUMMARY_USER_PROMPT_NAME, language)
    return SummaryPromptConfig(
        system=system or SUMMARY_SYSTEM_PROMPT,
        user=user or SUMMARY_USER_TEMPLATE,
        system_name=system_name,
        user_name=user_name,
    )


# ---------------------------------------------------------------------------
# Summarization
# ---------------------------------------------------------------------------


async def _request_summary(
    to_summarize: List[Message],
    caller: Any,
    model: Optional[str],
    settings: CompactionSettings,
    prompt_config: Optional[SummaryPromptConfig],
    signal: CancelSignal,
) -> Tuple[str, Optional[BaseException]]:
    """Call the model, halving the digest budget on context overflow."""
    max_bytes = settings.max_digest_bytes
    last_error: Optional[BaseException] = None

    for attempt in range(settings.max_summary_attempts):
        throw_if_cancelled(signal)
        request = build_summary_prompt(to_summarize, max_bytes, prompt_config)
        try:
            text = await caller.chat(
                model,
                request,
                stream=False,
                disable_tools=True,
                max_tool_passes=1,
                signal=signal,
            )
            return text or "", last_error
        except Exception as e:
            last_error = e
            if is_cancellation_error(e, signal):
                raise
            if is_context_length_error(e) and max_bytes > settings.min_digest_bytes:
                max_bytes = max(settings.min_digest_bytes, max_bytes // 2)
                logger.warning(
                    "Summary request too large (attempt %d/%d), retrying with %d bytes",
                    attempt + 1,
                    settings.max_summary_attempts,
                    max_bytes,
                )
                continue
            raise

    return "", last_error


async def summarize_session(
    session: Any,
    caller: Any,
    model: Optional[str] = None,
    *,
    keep_ratio: float = DEFAULT_KEEP_RATIO,
    signal: CancelSignal = None,
    prompt_config: Optional[SummaryPromptConfig] = None,
    settings: Optional[CompactionSettings] = None,
) -> bool:
    """Summarize the older part of a session in place.

    Args:
        session (Any): Session with ``system_prompt``,
            ``extra_system_prompts()`` and a mutable ``messages`` list.
        caller (Any): ``ModelCaller`` used for the summary request.
        model (Optional[str]): Model id. Defaults to the caller's default.
        keep_ratio (float): Share of the body weight kept verbatim. Values
            outside ``(0, 1)`` fall back to ``0.3``.
        signal (CancelSignal): Cancellation signal.
        prompt_config (Optional[SummaryPromptConfig]): Prompt overrides.
            Defaults to ``settings.prompt``.
        settings (Optional[CompactionSettings]): Byte budget and attempts.

    Returns:
        bool: ``True`` only if the session was replaced.

    Raises:
        OperationCancelledError: If cancellation was observed.
        Exception: Any non-overflow model failure, or an overflow once the
            byte budget is at its floor.
    """
    if session is None or caller is None:
        return False
    s = settings or CompactionSettings()
    if not (isinstance(keep_ratio, (int, float)) and 0 < keep_ratio < 1):
        keep_ratio = DEFAULT_KEEP_RATIO

    preambles = session_preambles(session)
    body = list(session.messages[len(preambles):])
    if len(body) < 2:
        return False

    split = split_for_summary(body, keep_ratio)
    if split is None:
        return False
    to_summarize, tail = split

    target_model = model or getattr(caller, "default_model", None)
    summary_text, last_error = await _request_summary(
        to_summarize,
        caller,
        target_model,
        s,
        prompt_config or s.prompt,
        signal,
    )

    summary_message = build_summary_message(summary_text, last_error)
    compacted = preambles + [summary_message] + [m.model_copy(deep=True) for m in tail]
    logger.info(
        "Summarized %d messages -> %d (kept tail: %d)",
        len(session.messages),
        len(compacted),
        len(tail),
    )
    session.messages[:] = compacted
    return True
