from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # TrueNAS SCALE API (empty string means not configured)
    truenas_url: str = ""
    truenas_api_key: str = ""
    truenas_verify_ssl: bool = True
    truenas_ca_cert: str = ""

    # Websocket timeouts
    truenas_connect_timeout_seconds: float = 10.0
    truenas_call_timeout_seconds: float = 30.0

    # Job polling for stop/start (fixed interval, not exponential)
    truenas_job_timeout_seconds: float = 30.0
    truenas_job_poll_interval_seconds: float = 2.0

    log_level: str = "WARNING"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
