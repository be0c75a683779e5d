"""
Configuration management for CHAPAL.

Handles environment variables, API key pools and pipeline tuning knobs.
"""

from __future__ import annotations

import os
from enum import Enum
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _split_keys(raw: str | None) -> list[str]:
    """Parse a comma-separated key list, dropping blanks."""
    return [key.strip() for key in (raw or "").split(",") if key.strip()]


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


class Settings(BaseModel):
    """
    Application settings loaded from environment variables.

    These settings control API key pools, logging, and pipeline behavior.
    """

    # API Keys
    generation_api_keys: list[str] = Field(
        default_factory=lambda: _split_keys(os.getenv("GEMINI_API_KEY")),
        description="Ordered Gemini API keys for the primary model",
    )
    auditor_api_keys: list[str] = Field(
        default_factory=lambda: _split_keys(os.getenv("GROQ_API_KEY")),
        description="Ordered API keys for the semantic auditor",
    )

    # Runtime settings
    environment: Environment = Field(
        default_factory=lambda: Environment(os.getenv("ENVIRONMENT", "development")),
        description="Application environment",
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"),
        description="Logging level",
    )
    admin_api_token: str = Field(
        default_factory=lambda: os.getenv("ADMIN_API_TOKEN", ""),
        description="Bearer token for admin review endpoints",
    )

    # Generation settings
    generation_model: str = Field(
        default_factory=lambda: os.getenv("GENERATION_MODEL", "gemini-2.0-flash"),
        description="Primary Gemini model",
    )
    max_generation_attempts: int = Field(
        default=3, ge=1, description="Attempts per request before failing"
    )
    retry_backoff_ms: int = Field(
        default_factory=lambda: _env_int("RETRY_BACKOFF_MS", 1000),
        ge=0,
        description="Linear backoff unit; attempt n waits n * this",
    )
    generation_timeout_seconds: float = Field(
        default=120.0, gt=0, description="Upper bound for a single attempt"
    )
    thinking_stage_delay_ms: dict[str, int] = Field(
        default_factory=lambda: {
            "analyzing_safety": 300,
            "checking_injection": 200,
            "detecting_emotion": 200,
        },
        description="UI pacing pause after each thinking stage",
    )
    max_input_length: int = Field(
        default=8000, description="Maximum user characters sent to the models"
    )

    # Semantic auditor settings
    auditor_model: str = Field(
        default_factory=lambda: os.getenv("AUDITOR_MODEL", "llama-3.1-70b-versatile"),
        description="Model used for the semantic audit",
    )
    auditor_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "AUDITOR_BASE_URL", "https://api.groq.com/openai/v1"
        ),
        description="OpenAI-compatible endpoint of the auditor",
    )
    auditor_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Upper bound for one audit call"
    )

    # Spike detection
    spike_window_seconds: float = Field(
        default=10.0, gt=0, description="Sliding window for flood detection"
    )
    spike_max_messages: int = Field(
        default=8, ge=1, description="Messages allowed per window per user"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    def has_generation_keys(self) -> bool:
        return bool(self.generation_api_keys)

    def has_auditor_keys(self) -> bool:
        return bool(self.auditor_api_keys)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
