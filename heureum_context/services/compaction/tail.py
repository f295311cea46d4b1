# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Tail selection for summarization.

Finds the index that splits a conversation into an older prefix (to be
summarized) and a recent tail (kept verbatim).  The latest user message is
always on the tail side.
"""

from __future__ import annotations

import math
from typing import Callable, List, Optional, Sequence, Tuple

from heureum_context.config import DEFAULT_KEEP_RATIO
from heureum_context.models import Message, MessageRole
from heureum_context.services.compaction.tokens import (
    estimate_message_tokens,
    estimate_token_count,
)

NO_SPLIT = -1

Estimator = Callable[[Sequence[Message]], int]


def _find_last_user_index(messages: Sequence[Message]) -> int:
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].role == MessageRole.USER:
            return i
    return NO_SPLIT


def compute_tail_start_index(
    messages: Sequence[Message],
    keep_ratio: float = DEFAULT_KEEP_RATIO,
    estimator: Optional[Estimator] = None,
    message_estimator: Optional[Callable[[Message], int]] = None,
) -> int:
    """Index where the verbatim tail starts.

    Walks backwards accumulating weight until ``ceil(total * keep_ratio)``
    is reached, then clamps the split back to the latest user message if
    the walk stopped after it.

    Args:
        messages (Sequence[Message]): Conversation body (no preambles).
        keep_ratio (float): Share of the weight to keep. Values outside
            ``(0, 1)`` fall back to ``0.3``.
        estimator (Optional[Estimator]): Weight function for a list of
            messages. Defaults to ``estimate_token_count``.
        message_estimator (Optional[Callable[[Message], int]]): Weight
            function for one message. Defaults to ``estimator([msg])`` when
            a custom estimator is given, else ``estimate_message_tokens``.

    Returns:
        int: Tail start index, or ``NO_SPLIT`` (-1) when the list has fewer
            than two messages, weighs nothing, or the split would be at or
            before index 0.
    """
    if len(messages) < 2:
        return NO_SPLIT

    if estimator is None:
        estimator = estimate_token_count
        per_message = message_estimator or estimate_message_tokens
    else:
        per_message = message_estimator or (lambda m: estimator([m]))

    total = estimator(messages)
    if not total or total <= 0:
        return NO_SPLIT

    ratio = keep_ratio if isinstance(keep_ratio, (int, float)) and 0 < keep_ratio < 1 else DEFAULT_KEEP_RATIO
    target = max(1, math.ceil(total * ratio))

    kept = 0
    tail_start = len(messages) - 1
    for i in range(len(messages) - 1, -1, -1):
        kept += per_message(messages[i])
        tail_start = i
        if kept >= target:
            break

    last_user = _find_last_user_index(messages)
    if last_user >= 0 and tail_start > last_user:
        tail_start = last_user

    if tail_start <= 0:
        return NO_SPLIT
    return tail_start


def split_for_summary(
    messages: List[Message],
    keep_ratio: float = DEFAULT_KEEP_RATIO,
) -> Optional[Tuple[List[Message], List[Message]]]:
    """Split *messages* into ``(to_summarize, tail)``, or ``None`` if no split."""
    idx = compute_tail_start_index(messages, keep_ratio)
    if idx == NO_SPLIT:
        return None
    return messages[:idx], messages[idx:]
