from __future__ import annotations
"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Avatar Forge job client settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    DEBUG: bool = False

    # --- Kling credentials (required at first use) ---
    KLING_ACCESS_KEY: str = ""
    KLING_SECRET_KEY: str = ""

    # --- Kling API ---
    KLING_API_BASE: str = "https://api-singapore.klingai.com"
    KLING_HTTP_TIMEOUT: float = 30.0
    KLING_DEFAULT_VIDEO_MODEL: str = "kling-v1-5"
    KLING_DEFAULT_IMAGE_MODEL: str = "kling-v1"

    # --- Signed credential ---
    KLING_TOKEN_TTL: int = 1800  # seconds
    KLING_CLOCK_SKEW: int = 5  # seconds nbf is backdated

    # --- Polling overrides (video kinds / image kinds); unset uses the per-kind table ---
    KLING_VIDEO_POLL_ATTEMPTS: Optional[int] = None
    KLING_VIDEO_POLL_INTERVAL: Optional[float] = None
    KLING_IMAGE_POLL_ATTEMPTS: Optional[int] = None
    KLING_IMAGE_POLL_INTERVAL: Optional[float] = None

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
