"""Validation settings with Pydantic validation and environment loading."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Validation engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["text", "json"] = Field(
        default="text", description="Log output format: text or json"
    )
    debug: bool = Field(default=False, description="Include source location in logs")

    # Polling
    default_timeout: float = Field(
        default=30.0, gt=0, description="Seconds to wait for a terminal status"
    )
    poll_interval: float = Field(
        default=2.0, gt=0, description="Seconds between status polls"
    )

    # Debugger lookback windows
    alert_lookback_seconds: int = Field(
        default=120, ge=1, description="Alert window for resource validators"
    )
    debugger_lookback_seconds: int = Field(
        default=300, ge=1, description="Alert window for standalone debugger validation"
    )

    # Media and intelligence
    recording_timeout: float = Field(default=60.0, gt=0)
    transcript_timeout: float = Field(default=120.0, gt=0)
    transcript_poll_interval: float = Field(default=5.0, gt=0)

    # Flows
    message_flow_timeout: float = Field(
        default=300.0, gt=0, description="Delivery wait used by messaging flows"
    )

    # Vendor REST API
    twilio_account_sid: Optional[str] = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    http_timeout: float = Field(default=15.0, gt=0)
    http_max_retries: int = Field(default=3, ge=1, le=10)
    http_retry_delay: float = Field(default=0.5, ge=0)
    http_retry_max_delay: float = Field(default=5.0, ge=0)

    # Learning capture
    learnings_dir_meta: str = Field(
        default=".meta", description="Preferred learnings directory when present"
    )
    learnings_dir_default: str = Field(
        default=".validation", description="Fallback learnings directory"
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Cached settings factory."""
    return Settings()
