"""Relay configuration — environment-driven, with an optional .env file."""

from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-driven settings for the webhook relay."""

    # Plain PORT is honoured so container platforms can inject it.
    port: int = Field(default=8080, validation_alias=AliasChoices("PORT", "RELAY_PORT"))
    host: str = "0.0.0.0"

    endpoints_file: str = "endpoints.json"
    static_dir: str = "static"
    cors_origins: list[str] = ["*"]

    # Outbound delivery
    delivery_timeout: float = 30.0
    verify_tls: bool = True

    log_level: str = "INFO"

    model_config = {
        "env_prefix": "RELAY_",
        "env_file": ".env",
        "extra": "ignore",
        "populate_by_name": True,
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
