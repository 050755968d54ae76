"""
Configuration settings for the neuro learning-session core.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path
from typing import Literal

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NEURO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Evaluation Gateway
    # ========================================
    evaluation_api_url: str = Field(
        default="http://127.0.0.1:9002",
        description="Base URL of the natural-language evaluation service",
    )
    evaluation_timeout_ms: int = Field(
        default=30000,
        description="Per-request timeout for evaluation calls",
    )
    evaluation_retry_attempts: int = Field(
        default=3,
        description="Attempts before an evaluation call is reported as unavailable",
    )
    evaluation_backoff_seconds: float = Field(
        default=1.0,
        description="Base delay for exponential backoff between retries",
    )

    # ========================================
    # Review Scheduling
    # ========================================
    review_session_size: int = Field(
        default=10,
        description="Maximum nodes pulled into one review session",
    )
    review_weak_strength_threshold: float = Field(
        default=50.0,
        description="Effective strength below which a node joins a standard review",
    )

    # ========================================
    # Diagnostics
    # ========================================
    diagnostic_timeout_seconds: float | None = Field(
        default=60.0,
        description="Upper bound on one diagnostic evaluation (None disables)",
    )

    # ========================================
    # Storage
    # ========================================
    data_dir: Path = Field(
        default=Path.home() / ".neuro",
        description="Directory for persisted progress snapshots",
    )
    content_path: Path | None = Field(
        default=None,
        description="JSON file with the module catalog",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    @property
    def progress_path(self) -> Path:
        """Location of the progress snapshot file."""
        return self.data_dir / "progress.json"

    def get_evaluation_config(self) -> dict[str, any]:
        """Get evaluation client configuration as a dictionary."""
        return {
            "api_url": self.evaluation_api_url,
            "timeout_ms": self.evaluation_timeout_ms,
            "retry_attempts": self.evaluation_retry_attempts,
            "backoff_seconds": self.evaluation_backoff_seconds,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Install loguru sinks for the configured level."""
    settings = settings or get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB")
