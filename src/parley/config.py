"""Configuration management for parley."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for adapters and background workers."""

    model_config = SettingsConfigDict(
        env_prefix="PARLEY_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Identity
    app_id: str = Field(default="", description="Bot application id; empty runs the bot anonymously")
    app_password: str = Field(default="", description="Bot application secret")

    # Turn processing
    default_locale: str = Field(default="en-US", description="Locale used when an activity carries none")

    # Background workers
    typing_delay_seconds: float = Field(default=0.5, ge=0, description="Delay before the first typing activity")
    typing_period_seconds: float = Field(default=2.0, gt=0, description="Period between typing activities")
    token_polling_interval_seconds: float = Field(default=1.0, gt=0, description="Token exchange polling interval")
    token_polling_timeout_seconds: float = Field(default=900.0, gt=0, description="Token exchange polling timeout")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    @property
    def auth_disabled(self) -> bool:
        return not self.app_id.strip()


def get_settings() -> Settings:
    """Load settings from the environment and an optional ``.env`` file."""

    return Settings()
