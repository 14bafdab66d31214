"""Runtime settings, read from VISIBILITY_* environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="VISIBILITY_",
        extra="ignore",
        case_sensitive=False,
    )

    access_token: str = ""
    request_timeout: float = 30.0
    connect_timeout: float = 10.0
    max_attempts: int = 3
    backoff_base: float = 1.0  # seconds
    backoff_cap: float = 5.0
    backoff_jitter: float = 0.25
    user_agent: str = "VisibilityInsights/0.1"
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
