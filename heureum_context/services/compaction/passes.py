# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Multi-pass summary driver and per-session single-flight manager.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol

from heureum_context.config import DEFAULT_KEEP_RATIO
from heureum_context.models import PassResult
from heureum_context.services.compaction.errors import (
    CancelSignal,
    is_cancellation_error,
    throw_if_cancelled,
)
from heureum_context.services.compaction.settings import CompactionSettings, SummaryPromptConfig
from heureum_context.services.compaction.summarizer import (
    load_summary_prompt_config,
    summarize_session,
)
from heureum_context.services.compaction.summary_record import extract_latest_summary_text
from heureum_context.services.compaction.tokens import estimate_token_count

logger = logging.getLogger(__name__)

SUMMARY_EVENT = "summary"
DEFAULT_SUMMARY_THRESHOLD = 60_000


class EventLogger(Protocol):
    """Fire-and-forget telemetry sink."""

    def log(self, event_name: str, payload: Dict[str, Any]) -> None:
        ...


@dataclass
class PassPolicy:
    """How one summary run behaves.

    Attributes:
        force (bool): Summarize even under the threshold, with more passes.
        threshold (int): Target weight.
        keep_ratio (float): Share of the weight kept verbatim per pass.
    """

    force: bool = False
    threshold: int = DEFAULT_SUMMARY_THRESHOLD
    keep_ratio: float = DEFAULT_KEEP_RATIO


def _emit_event(event_logger: Optional[EventLogger], name: str, payload: Dict[str, Any]) -> None:
    if event_logger is None:
        return
    try:
        event_logger.log(name, payload)
    except Exception:
        logger.debug("Event logger failed for %s", name, exc_info=True)


def _session_id(session: Any) -> Optional[str]:
    value = getattr(session, "session_id", None)
    return value if isinstance(value, str) else None


async def run_summary_passes(
    session: Any,
    caller: Any,
    model: Optional[str],
    policy: PassPolicy,
    *,
    signal: CancelSignal = None,
    event_logger: Optional[EventLogger] = None,
    settings: Optional[CompactionSettings] = None,
    prompt_config: Optional[SummaryPromptConfig] = None,
) -> bool:
    """Summarize until the session weight drops under the target.

    Runs up to ``max_passes`` (``force_max_passes`` when forced).  A pass
    that changes nothing, or does not strictly reduce the weight, ends the
    run.  Exactly one ``summary`` event is emitted per run.

    Args:
        session (Any): Session to compact in place.
        caller (Any): ``ModelCaller`` for the summary requests.
        model (Optional[str]): Model id.
        policy (PassPolicy): Force flag, threshold and keep ratio.
        signal (CancelSignal): Cancellation signal, checked before each pass.
        event_logger (Optional[EventLogger]): Telemetry sink.
        settings (Optional[CompactionSettings]): Engine tunables.
        prompt_config (Optional[SummaryPromptConfig]): Prompt overrides.

    Returns:
        bool: Whether any pass replaced the conversation.
    """
    if session is None or caller is None:
        return False
    s = settings or CompactionSettings()
    force = bool(policy.force)
    threshold = policy.threshold
    target = (threshold if threshold > 0 else DEFAULT_SUMMARY_THRESHOLD) if force else threshold
    max_passes = s.force_max_passes if force else s.max_passes

    passes: List[PassResult] = []
    did_summarize = False
    summary_text = ""

    try:
        for pass_index in range(max_passes):
            throw_if_cancelled(signal)
            before = estimate_token_count(session.messages)
            if not force and before <= threshold:
                break
            if force and before <= target and pass_index > 0:
                break

            changed = await summarize_session(
                session,
                caller,
                model,
                keep_ratio=policy.keep_ratio,
                signal=signal,
                prompt_config=prompt_config,
                settings=s,
            )
            after = estimate_token_count(session.messages)
            latest = extract_latest_summary_text(session.messages) if changed else ""
            passes.append(PassResult(changed=changed, before_weight=before, after_weight=after, summary_text=latest))
            if not changed or after >= before:
                logger.info("Summary pass %d made no progress (~%d -> ~%d)", pass_index + 1, before, after)
                break

            did_summarize = True
            if latest:
                summary_text = latest
            logger.info(
                "%s summary: ~%d -> ~%d tokens (threshold ~%d)",
                "Force" if force else "Auto",
                before,
                after,
                target,
            )
            if after <= target:
                break
    finally:
        last = passes[-1] if passes else None
        _emit_event(
            event_logger,
            SUMMARY_EVENT,
            {
                "summarized": did_summarize,
                "text": summary_text,
                "forced": force,
                "threshold": target,
                "keep_ratio": policy.keep_ratio,
                "before_tokens": last.before_weight if last else None,
                "after_tokens": last.after_weight if last else None,
                "passes": [p.to_dict() for p in passes],
                "session_id": _session_id(session),
            },
        )

    return did_summarize


class SummaryManager:
    """Runs summary passes with one in-flight run per session.

    Args:
        settings (Optional[CompactionSettings]): Tunables. Defaults to a
            snapshot of the application settings.
        event_logger (Optional[EventLogger]): Telemetry sink.
        prompt_records (Optional[Iterable[Any]]): Stored prompt records
            that may override the summary prompts.
        prompt_language (str): Preferred prompt language.
    """

    def __init__(
        self,
        settings: Optional[CompactionSettings] = None,
        event_logger: Optional[EventLogger] = None,
        prompt_records: Optional[Iterable[Any]] = None,
        prompt_language: str = "",
    ) -> None:
        self.settings = settings or CompactionSettings.from_settings()
        self.event_logger = event_logger
        if prompt_records is not None:
            self.prompt_config = load_summary_prompt_config(prompt_records, prompt_language)
        else:
            self.prompt_config = self.settings.prompt
        self._inflight: Dict[Any, asyncio.Task] = {}

    @property
    def threshold(self) -> int:
        return self.settings.summary_threshold

    @property
    def keep_ratio(self) -> float:
        return self.settings.keep_ratio

    def is_running(self, session: Any) -> bool:
        """Whether a run is in flight for *session*."""
        return self._scope_key(session) in self._inflight

    async def maybe_summarize(
        self,
        session: Any,
        caller: Any,
        model: Optional[str] = None,
        signal: CancelSignal = None,
    ) -> bool:
        """Summarize if the session is over the threshold."""
        if not self.settings.enabled:
            return False
        return await self._single_flight(session, caller, model, False, signal)

    async def force_summarize(
        self,
        session: Any,
        caller: Any,
        model: Optional[str] = None,
        signal: CancelSignal = None,
    ) -> bool:
        """Summarize regardless of the threshold, e.g. after a context overflow."""
        return await self._single_flight(session, caller, model, True, signal)

    @staticmethod
    def _scope_key(session: Any) -> Any:
        return _session_id(session) or id(session)

    async def _single_flight(
        self,
        session: Any,
        caller: Any,
        model: Optional[str],
        force: bool,
        signal: CancelSignal,
    ) -> bool:
        if session is None or caller is None:
            return False
        key = self._scope_key(session)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, session, caller, model, force, signal))
            self._inflight[key] = task
        else:
            logger.debug("Joining in-flight summary for %s", key)
        return await asyncio.shield(task)

    async def _run(
        self,
        key: Any,
        session: Any,
        caller: Any,
        model: Optional[str],
        force: bool,
        signal: CancelSignal,
    ) -> bool:
        policy = PassPolicy(force=force, threshold=self.threshold, keep_ratio=self.keep_ratio)
        try:
            return await run_summary_passes(
                session,
                caller,
                model,
                policy,
                signal=signal,
                event_logger=self.event_logger,
                settings=self.settings,
                prompt_config=self.prompt_config,
            )
        except Exception as e:
            if is_cancellation_error(e, signal):
                raise
            logger.error("Failed to summarize conversation: %s", e)
            return False
        finally:
            self._inflight.pop(key, None)
