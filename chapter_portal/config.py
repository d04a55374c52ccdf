# chapter_portal/config.py
"""
Centralized application configuration using pydantic-settings.

All settings are read from environment variables or .env file.
Spreadsheet ids, buckets and cache windows can be changed per deployment
without touching code.
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Priority: environment variables > .env file > defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
    )

    # --- Spreadsheets ---
    SPREADSHEET_ID: str = Field(
        default="",
        description="Spreadsheet holding roster, buttons and polls"
    )
    RUSH_SPREADSHEET_ID: str = Field(
        default="",
        description="Spreadsheet holding the rush index and recruit/comment tabs"
    )
    GOOGLE_SERVICE_ACCOUNT_JSON: Optional[str] = Field(
        default=None,
        description="Raw service-account JSON (takes precedence over the key file)"
    )
    GOOGLE_APPLICATION_CREDENTIALS: str = Field(
        default="service-account.json",
        description="Path to the service-account key file"
    )
    BACKEND_TIMEOUT: float = Field(
        default=30.0,
        description="Seconds before a single spreadsheet call is abandoned"
    )

    # --- Blob storage ---
    RUSH_IMAGES_BUCKET: str = Field(default="rush-images")
    BUTTON_HTML_BUCKET: str = Field(default="button-htmls")
    BUTTON_INLINE_LIMIT: int = Field(
        default=1000,
        description="HTML button content longer than this is stored as a blob"
    )

    # --- Cache ---
    SHEET_TTL: int = Field(
        default=60,
        description="Seconds a cached table read may lag the spreadsheet"
    )
    EMAIL_VALIDATION_TTL: int = Field(default=3600)
    BUTTON_CACHE_TTL: int = Field(default=300)

    # --- Locks ---
    LOCK_ACQUIRE_TIMEOUT: Optional[float] = Field(
        default=None,
        description="Max seconds to wait for a named lock; unset waits forever"
    )

    # --- Live updates ---
    SSE_PING_INTERVAL: float = Field(default=15.0)
    SSE_STALE_AFTER: float = Field(
        default=60.0,
        description="Subscribers without a successful write for this long are dropped"
    )
    SSE_QUEUE_SIZE: int = Field(default=100)

    # --- Server ---
    HOST: str = Field(
        default="127.0.0.1",
        description="Server bind host"
    )
    PORT: int = Field(
        default=3000,
        description="Server bind port"
    )
    DEV_MODE: bool = Field(
        default=False,
        description="Relax creator/ownership checks for local development"
    )
    AUTH_EMAIL_HEADER: str = Field(
        default="X-Authenticated-Email",
        description="Header set by the sign-in proxy with the caller's email"
    )
    REFRESH_TOKEN: Optional[str] = Field(
        default=None,
        description="Shared secret letting a spreadsheet trigger call /api/events/refresh"
    )
    RATE_LIMIT_API: int = Field(default=120, description="API requests per minute per caller")
    RATE_LIMIT_GENERAL: int = Field(default=300)

    # --- Debug / Logging ---
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    OTEL_ENABLED: bool = Field(default=False)

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v_upper

    @field_validator("SHEET_TTL", "EMAIL_VALIDATION_TTL", "BUTTON_CACHE_TTL")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        if v < 0:
            raise ValueError("TTL values must be >= 0")
        return v


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance (singleton pattern)."""
    return Settings()


# --- Singleton instance for easy import ---
settings = get_settings()


# --- Module-level exports ---
HOST: str = settings.HOST
PORT: int = settings.PORT
DEBUG: bool = settings.DEBUG
LOG_LEVEL: str = settings.LOG_LEVEL

# --- Paths (computed, not from env) ---
PROJECT_ROOT: str = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
LOGS_PATH: str = os.path.join(PROJECT_ROOT, "logs")
