"""Application configuration and settings helpers."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized configuration loaded from environment variables."""

    app_name: str = Field(default="2FA Retry Guard")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Failure counter store
    store_backend: Literal["redis", "memory"] = Field(default="redis")
    redis_url: str = Field(default="redis://localhost:6379/0")
    kv_namespace: str = Field(default="twofa")
    kv_group: str = Field(default="aic2fa")
    kv_timeout_ms: int = Field(default=500, ge=1, le=1000)
    kv_num_retries_on_timeout: int = Field(default=2, ge=0)

    # Attempt policy
    default_max_attempts: int = Field(default=3, ge=1)
    max_attempts_overrides: dict[str, int | str] = Field(default_factory=dict)

    # Client identity
    client_ip_header: str = Field(default="X-Client-Real-IP")
    missing_client_ip_policy: Literal["sentinel", "passthrough", "reject"] = Field(default="sentinel")
    missing_client_ip_key: str = Field(default="unknown")
    ipv6_key_policy: Literal["keep", "substitute"] = Field(default="keep")

    # Authentication origin
    protected_paths: list[str] = Field(default_factory=lambda: ["/"])
    origin_url: str = Field(default="http://localhost:9000")
    origin_timeout_seconds: float = Field(default=10.0, gt=0)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return a cached settings instance for the application."""

    return Settings()
