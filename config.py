"""
Configuration management for the application.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field


# Load .env from project root, falling back to the current directory
env_path = Path(__file__).parent / ".env"
if env_path.exists():
    load_dotenv(env_path, override=True)
else:
    load_dotenv(override=True)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


# =============================================================================
# TUNING VALUES
# =============================================================================
# Heuristic thresholds observed in production conversations. They are tuning
# knobs, not contracts: every value can be overridden from the environment.

class RubricThresholds(BaseModel):
    """Bands used by the RubricScorer."""

    turn_window: int = Field(default=12, description="Turns considered per snapshot")
    recent_window: int = Field(default=4, description="Turns used for engagement banding")
    leaning_in_chars: int = 280
    hesitant_chars: int = 120
    high_energy_chars: int = 320
    medium_energy_chars: int = 160
    depth_volume_bands: tuple[int, int, int] = (120, 220, 400)
    depth_coverage_bands: tuple[int, int, int] = (2, 4, 5)
    ready_min_depth: int = 2
    engagement_lift_score: float = 0.6
    negative_signal_limit: int = 2


class GateThresholds(BaseModel):
    """Pre-gates, escalation windows and backlog limits for the SuggestionGate."""

    min_insights: int = 3
    min_distinct_kinds: int = 2
    min_user_turns: int = 3
    min_context_depth: int = 1
    min_career_signals: int = 1
    backlog_limit: int = 3
    backlog_idle_seconds: float = 90.0
    blocked_streak_limit: int = 6
    turns_between_batches: int = 4
    card_limit: int = 3
    focus_text_chars: int = 280


class RevealSettings(BaseModel):
    """Timing for the CardRevealController."""

    text_reveal_delay_seconds: float = 0.6
    ack_timeout_seconds: float = 3.0


class Config:
    """Application configuration."""

    # Model configuration
    MODEL_ID: str = os.getenv("MODEL_ID", "gpt-4.1-mini")
    SUGGESTION_MODEL_ID: str = os.getenv("SUGGESTION_MODEL_ID", os.getenv("MODEL_ID", "gpt-4.1-mini"))

    # OpenAI API Key (required for agents)
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # API configuration
    CORS_ORIGINS: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Engine tuning
    RUBRIC_TURN_WINDOW: int = _env_int("RUBRIC_TURN_WINDOW", 12)
    RUBRIC_RECENT_WINDOW: int = _env_int("RUBRIC_RECENT_WINDOW", 4)
    BACKLOG_LIMIT: int = _env_int("BACKLOG_LIMIT", 3)
    BACKLOG_IDLE_SECONDS: float = _env_float("BACKLOG_IDLE_SECONDS", 90.0)
    BLOCKED_STREAK_LIMIT: int = _env_int("BLOCKED_STREAK_LIMIT", 6)
    TURNS_BETWEEN_BATCHES: int = _env_int("TURNS_BETWEEN_BATCHES", 4)
    CARD_LIMIT: int = _env_int("CARD_LIMIT", 3)
    TEXT_REVEAL_DELAY_SECONDS: float = _env_float("TEXT_REVEAL_DELAY_SECONDS", 0.6)
    ACK_TIMEOUT_SECONDS: float = _env_float("ACK_TIMEOUT_SECONDS", 3.0)

    @classmethod
    def rubric_thresholds(cls) -> RubricThresholds:
        """Rubric bands with environment overrides applied."""
        return RubricThresholds(
            turn_window=cls.RUBRIC_TURN_WINDOW,
            recent_window=cls.RUBRIC_RECENT_WINDOW,
        )

    @classmethod
    def gate_thresholds(cls) -> GateThresholds:
        """Gate thresholds with environment overrides applied."""
        return GateThresholds(
            backlog_limit=cls.BACKLOG_LIMIT,
            backlog_idle_seconds=cls.BACKLOG_IDLE_SECONDS,
            blocked_streak_limit=cls.BLOCKED_STREAK_LIMIT,
            turns_between_batches=cls.TURNS_BETWEEN_BATCHES,
            card_limit=cls.CARD_LIMIT,
        )

    @classmethod
    def reveal_settings(cls) -> RevealSettings:
        return RevealSettings(
            text_reveal_delay_seconds=cls.TEXT_REVEAL_DELAY_SECONDS,
            ack_timeout_seconds=cls.ACK_TIMEOUT_SECONDS,
        )

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration."""
        if not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY not set. Please set it in .env file or environment variable.\n"
                "Create a .env file in the project root with: OPENAI_API_KEY=your_key_here"
            )
        if cls.BACKLOG_LIMIT < 1:
            raise ValueError("BACKLOG_LIMIT must be at least 1")
        if cls.CARD_LIMIT < 1:
            raise ValueError("CARD_LIMIT must be at least 1")
