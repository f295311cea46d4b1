# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Application configuration using pydantic-settings.
"""

from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_KEEP_RATIO = 0.3
MIN_KEEP_RATIO = 0.05
MAX_KEEP_RATIO = 0.95


class Settings(BaseSettings):
    """Application settings.

    Attributes:
        APP_NAME (str): Display name of the application.
        OPENAI_API_KEY (str): OpenAI API key for LLM calls.
        GOOGLE_API_KEY (str): Google AI Studio key for Gemini models.
        GOOGLE_CLOUD_PROJECT (str): GCP project for Gemini on Vertex AI.
        GOOGLE_CLOUD_LOCATION (str): GCP region for Gemini on Vertex AI.
        GOOGLE_APPLICATION_CREDENTIALS (str): Service account file for
            Vertex AI, exported for google.auth.default().
        AGENT_MODEL (str): Model identifier used for chat and summaries.
        AGENT_TEMPERATURE (float): Sampling temperature.
        AGENT_MAX_TOKENS (int): Maximum token limit for responses.
        SUMMARY_TOKENS (int): Estimated weight above which a conversation
            is summarized. ``0`` disables automatic summaries.
        SUMMARY_KEEP_RATIO (float): Share of the conversation weight kept
            verbatim after a summary, clamped to ``[0.05, 0.95]``.
        SUMMARY_MAX_BYTES (int): Initial byte budget of the history digest.
        SUMMARY_MIN_BYTES (int): Floor of the digest byte budget when it is
            halved after a context overflow.
        SUMMARY_MAX_ATTEMPTS (int): Summary model calls per pass.
        SUMMARY_MAX_PASSES (int): Passes for automatic summaries.
        SUMMARY_FORCE_MAX_PASSES (int): Passes for forced summaries.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Heureum Context"
    OPENAI_API_KEY: str = ""
    GOOGLE_API_KEY: str = ""
    GOOGLE_CLOUD_PROJECT: str = ""
    GOOGLE_CLOUD_LOCATION: str = ""
    GOOGLE_APPLICATION_CREDENTIALS: str = ""
    AGENT_MODEL: str = "gpt-4o-mini"
    AGENT_TEMPERATURE: float = 0.7
    AGENT_MAX_TOKENS: int = 2000

    # Summaries
    SUMMARY_TOKENS: int = 60_000
    SUMMARY_KEEP_RATIO: float = DEFAULT_KEEP_RATIO
    SUMMARY_MAX_BYTES: int = 60_000
    SUMMARY_MIN_BYTES: int = 4_000
    SUMMARY_MAX_ATTEMPTS: int = 4
    SUMMARY_MAX_PASSES: int = 3
    SUMMARY_FORCE_MAX_PASSES: int = 6

    @field_validator("SUMMARY_KEEP_RATIO", mode="before")
    @classmethod
    def _clamp_keep_ratio(cls, value: Any) -> float:
        """Clamp the keep ratio, falling back to the default when unparsable.

        Args:
            value (Any): Raw value from the environment or constructor.

        Returns:
            float: Ratio within ``[MIN_KEEP_RATIO, MAX_KEEP_RATIO]``.
        """
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_KEEP_RATIO
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            return DEFAULT_KEEP_RATIO
        if parsed != parsed or parsed in (float("inf"), float("-inf")):
            return DEFAULT_KEEP_RATIO
        return min(MAX_KEEP_RATIO, max(MIN_KEEP_RATIO, parsed))


settings = Settings()
