# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Context weight estimation.

The weight is a token proxy, not an exact count:

    weight = ceil((utf8_bytes(text) + image_bytes) / 3)

UTF-8 byte length is used instead of character length so CJK text is not
massively undercounted.  Image parts are rendered into the text as a
``[image_url bytes=N]`` placeholder and their URL bytes (usually a data
URL) are added on top.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Optional

from heureum_context.models import Message

BYTES_PER_TOKEN = 3


def utf8_len(text: str) -> int:
    """UTF-8 byte length of *text*.

    Lone surrogates count as three bytes each instead of failing to encode.
    """
    return len(text.encode("utf-8", errors="surrogatepass"))


def _extract_image_url(part: Any) -> str:
    """Return the URL of an ``image_url`` part, or ``""``.

    Accepts both ``{"image_url": {"url": ...}}`` and ``{"image_url": "..."}``.
    """
    if not isinstance(part, dict) or part.get("type") != "image_url":
        return ""
    image_url = part.get("image_url")
    if isinstance(image_url, dict) and isinstance(image_url.get("url"), str):
        return image_url["url"]
    if isinstance(image_url, str):
        return image_url
    return ""


def _image_placeholder(url: str) -> str:
    return f"[image_url bytes={utf8_len(url)}]"


def extract_plain_text(content: Any) -> str:
    """Flatten message content into plain text.

    Multi-part content is joined with single spaces; image parts become a
    placeholder tag carrying their byte length.

    Args:
        content (Any): A string, a list of parts, or a single part.

    Returns:
        str: The plain-text rendering of *content*.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        pieces = []
        for item in content:
            if isinstance(item, str):
                pieces.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                pieces.append(item["text"])
            else:
                url = _extract_image_url(item)
                pieces.append(_image_placeholder(url) if url else "")
        return " ".join(pieces)
    if isinstance(content, dict):
        if isinstance(content.get("text"), str):
            return content["text"]
        url = _extract_image_url(content)
        if url:
            return _image_placeholder(url)
    if content is None:
        return ""
    return str(content)


def count_image_bytes(content: Any) -> int:
    """Total UTF-8 byte length of the image URLs embedded in *content*."""
    if not content:
        return 0
    if isinstance(content, list):
        return sum(utf8_len(_extract_image_url(item)) for item in content)
    if isinstance(content, dict):
        return utf8_len(_extract_image_url(content))
    return 0


def estimate_message_tokens(msg: Optional[Message]) -> int:
    """Estimate the weight of a single message.

    Args:
        msg (Optional[Message]): Message to weigh.

    Returns:
        int: Estimated weight, ``0`` for missing or empty content.
    """
    if msg is None or not msg.content:
        return 0
    text = extract_plain_text(msg.content)
    image_bytes = count_image_bytes(msg.content)
    return math.ceil((utf8_len(text) + image_bytes) / BYTES_PER_TOKEN)


def estimate_token_count(messages: Optional[Iterable[Message]]) -> int:
    """Estimate the total weight of a list of messages.

    Args:
        messages (Optional[Iterable[Message]]): Messages to weigh.

    Returns:
        int: Sum of per-message weights.
    """
    if not messages:
        return 0
    return sum(estimate_message_tokens(m) for m in messages)
