# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Compaction settings.

Snapshot of the summary tunables read from the environment at
construction time.  All weights are estimated tokens (see tokens.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from heureum_context.config import (
    DEFAULT_KEEP_RATIO,
    MAX_KEEP_RATIO,
    MIN_KEEP_RATIO,
    Settings,
)
from heureum_context.config import settings as _app_settings


@dataclass(frozen=True)
class SummaryPromptConfig:
    """System instruction and user template for the summary call.

    Attributes:
        system (str): System instruction for the summarizer model.
        user (str): User template. ``{{history}}`` is replaced by the
            rendered digest; without it, the digest is prepended.
        system_name (str): Name of the prompt record the system text came
            from, for logging.
        user_name (str): Name of the prompt record the user template came
            from, for logging.
    """

    system: str = ""
    user: str = ""
    system_name: str = ""
    user_name: str = ""


@dataclass
class CompactionSettings:
    """All summary-related configuration in one place.

    Attributes:
        summary_threshold (int): Weight above which a conversation is
            summarized. ``0`` or less disables automatic summaries.
        keep_ratio (float): Share of the conversation weight kept verbatim.
        max_digest_bytes (int): Initial byte budget of the history digest.
        min_digest_bytes (int): Floor of the byte budget after halving.
        max_summary_attempts (int): Summary model calls per pass.
        max_passes (int): Passes for automatic summaries.
        force_max_passes (int): Passes for forced summaries.
        prompt (SummaryPromptConfig): Summary prompt texts. Empty fields fall
            back to the built-in prompts.
    """

    summary_threshold: int = 60_000
    keep_ratio: float = DEFAULT_KEEP_RATIO
    max_digest_bytes: int = 60_000
    min_digest_bytes: int = 4_000
    max_summary_attempts: int = 4
    max_passes: int = 3
    force_max_passes: int = 6
    prompt: SummaryPromptConfig = field(default_factory=SummaryPromptConfig)

    def __post_init__(self) -> None:
        self.keep_ratio = min(MAX_KEEP_RATIO, max(MIN_KEEP_RATIO, float(self.keep_ratio)))

    @property
    def enabled(self) -> bool:
        """Whether automatic (non-forced) summaries run at all."""
        return self.summary_threshold > 0

    @classmethod
    def from_settings(
        cls,
        app_settings: Optional[Settings] = None,
        prompt: Optional[SummaryPromptConfig] = None,
    ) -> "CompactionSettings":
        """Build compaction settings from application settings.

        Args:
            app_settings (Optional[Settings]): Settings to read. Defaults to
                the module-level ``settings`` instance.
            prompt (Optional[SummaryPromptConfig]): Summary prompt override.

        Returns:
            CompactionSettings: A snapshot of the summary tunables.
        """
        s = app_settings or _app_settings
        return cls(
            summary_threshold=s.SUMMARY_TOKENS,
            keep_ratio=s.SUMMARY_KEEP_RATIO,
            max_digest_bytes=s.SUMMARY_MAX_BYTES,
            min_digest_bytes=s.SUMMARY_MIN_BYTES,
            max_summary_attempts=s.SUMMARY_MAX_ATTEMPTS,
            max_passes=s.SUMMARY_MAX_PASSES,
            force_max_passes=s.SUMMARY_FORCE_MAX_PASSES,
            prompt=prompt or SummaryPromptConfig(),
        )
