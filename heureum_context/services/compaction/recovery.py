# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Context-length recovery around a single model call.

Escalation on "context too large":
  1. Summarize, then retry.
  2. Still too large: hard trim, then retry once more and return whatever
     that attempt produces.

When summarizing made no change and ``retry_if_summarize_failed`` is off,
step 1's retry is skipped and the hard trim runs straight away.  Errors
that are not context-length errors propagate without any recovery, and
cancellation is checked between every step.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from heureum_context.services.compaction.errors import (
    CancelSignal,
    ErrorClassifier,
    is_cancellation_error,
    is_context_length_error,
    throw_if_cancelled,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MaybeAwaitable = Union[T, Awaitable[T]]

REASON_SUMMARY_FAILED = "summary_failed"
REASON_SUMMARY_EXCEEDED = "summary_exceeded"


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def run_with_context_recovery(
    run: Optional[Callable[[], Awaitable[T]]],
    *,
    summarize: Optional[Callable[[], MaybeAwaitable[bool]]] = None,
    hard_trim: Optional[Callable[..., MaybeAwaitable[None]]] = None,
    is_context_error: Optional[ErrorClassifier] = None,
    check_cancelled: Optional[Callable[[CancelSignal], Any]] = None,
    signal: CancelSignal = None,
    on_context_error: Optional[Callable[[BaseException], MaybeAwaitable[None]]] = None,
    retry_if_summarize_failed: bool = True,
) -> T:
    """Run *run*, recovering from context-length failures.

    Args:
        run (Callable[[], Awaitable[T]]): The model call to attempt.
        summarize (Optional[Callable[[], bool]]): Compacts the conversation
            and reports whether it changed. May be sync or async.
        hard_trim (Optional[Callable[..., None]]): Last-resort reduction,
            called with ``reason``, ``summary_error`` and ``error`` keywords.
            May be sync or async.
        is_context_error (Optional[ErrorClassifier]): Classifier for
            context-length failures. Defaults to ``is_context_length_error``.
        check_cancelled (Optional[Callable[[CancelSignal], Any]]): Raises when
            *signal* is cancelled. Defaults to ``throw_if_cancelled``.
        signal (CancelSignal): Cancellation signal.
        on_context_error (Optional[Callable[[BaseException], None]]): Notified
            once when the first context-length failure is seen.
        retry_if_summarize_failed (bool): Retry after a summarize that made
            no change instead of going straight to the hard trim.

    Returns:
        T: The result of the first successful attempt.

    Raises:
        ValueError: If *run* is missing.
        OperationCancelledError: If cancellation is observed between steps.
        Exception: The original failure when it is not a context-length
            error, or whatever the final attempt raises.
    """
    if run is None or not callable(run):
        raise ValueError("run_with_context_recovery requires a run callable")

    classify = is_context_error or is_context_length_error
    check = check_cancelled or throw_if_cancelled

    async def ensure_not_cancelled() -> None:
        await _resolve(check(signal))

    try:
        return await run()
    except Exception as err:
        if is_cancellation_error(err) or not classify(err):
            raise
        first_error = err

    if on_context_error is not None:
        await _resolve(on_context_error(first_error))

    await ensure_not_cancelled()
    summarized = False
    summary_error: Optional[BaseException] = None
    if summarize is not None:
        try:
            summarized = bool(await _resolve(summarize()))
        except Exception as e:
            if is_cancellation_error(e, signal):
                raise
            summary_error = e
            logger.warning("Summary before retry failed: %s", e)
    await ensure_not_cancelled()

    if not summarized and not retry_if_summarize_failed and hard_trim is not None:
        logger.warning("Summary did not shrink the context, hard-trimming before retry")
        await _resolve(
            hard_trim(reason=REASON_SUMMARY_FAILED, summary_error=summary_error, error=first_error)
        )
        await ensure_not_cancelled()
        return await run()

    try:
        return await run()
    except Exception as err:
        if is_cancellation_error(err) or not classify(err):
            raise
        second_error = err

    await ensure_not_cancelled()
    if hard_trim is not None:
        logger.warning("Context still too large after summary, hard-trimming before final retry")
        await _resolve(
            hard_trim(reason=REASON_SUMMARY_EXCEEDED, summary_error=summary_error, error=second_error)
        )
    else:
        logger.error("Context still too large after summary and no hard trim is available")
    await ensure_not_cancelled()
    return await run()
