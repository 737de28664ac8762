"""
Central configuration for the Pitchside live-feed services.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Root settings shared across the feed session, prediction poller and API."""

    model_config = SettingsConfigDict(
        env_prefix="PS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Unique pod/container ID bound to every log line")

    # ── API ──────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["*"]

    # ── Live feed ────────────────────────────────────────────
    feed_hub_url: str = "https://fredapi-5da7cd50ded2.herokuapp.com/livematchhub"
    feed_reconnect_delays_s: list[float] = Field(
        default=[0.0, 2.0, 5.0, 10.0, 20.0],
        description="Transport retry schedule after a drop; the last value repeats.",
    )
    feed_restart_delay_s: float = Field(
        default=5.0,
        description="Delay before the whole session retries after the initial connect fails.",
    )
    feed_handshake_timeout_s: float = 10.0
    feed_debounce_s: float = 0.08
    feed_drain_interval_s: float = 0.5

    # ── Predictions ──────────────────────────────────────────
    prediction_api_url: str = "https://fredapi-5da7cd50ded2.herokuapp.com/api/prediction-data"
    prediction_page_size: int = 50
    prediction_max_pages: int = 20
    prediction_refresh_interval_s: float = 4 * 60 * 60
    prediction_load_retries: int = 3
    prediction_retry_delay_s: float = 2.0
    prediction_request_timeout_s: float = 10.0

    # ── Matching ─────────────────────────────────────────────
    matcher_max_edit_distance: int = Field(
        default=2,
        description="Per-side Levenshtein tolerance for the last-resort name match.",
    )

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @field_validator("feed_reconnect_delays_s")
    @classmethod
    def reconnect_schedule_not_empty(cls, value: list[float]) -> list[float]:
        if not value:
            raise ValueError("feed_reconnect_delays_s needs at least one delay")
        if any(d < 0 for d in value):
            raise ValueError("feed_reconnect_delays_s cannot contain negative delays")
        return value

    @property
    def feed_negotiate_url(self) -> str:
        return f"{self.feed_hub_url.rstrip('/')}/negotiate"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
