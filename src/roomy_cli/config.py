"""Configuration management for the Roomy CLI."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RoomySettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    config_dir: Path = Field(
        default=Path("~/.roomy-cli"), validation_alias="ROOMY_CLI_DIR"
    )
    state_ttl_seconds: float = Field(default=3600.0, validation_alias="ROOMY_STATE_TTL_SECONDS")
    lock_stale_seconds: float = Field(default=45.0, validation_alias="ROOMY_LOCK_STALE_SECONDS")
    keyserver_url: str = Field(
        default="https://jazz.keyserver.roomy.chat", validation_alias="ROOMY_KEYSERVER_URL"
    )
    keyserver_proxy: str = Field(
        default="did:web:jazz.keyserver.roomy.chat#roomy_keyserver",
        validation_alias="ROOMY_KEYSERVER_PROXY",
    )
    keyserver_timeout: float = Field(default=30.0, validation_alias="ROOMY_KEYSERVER_TIMEOUT")
    secret_service: str = Field(default="roomy-cli", validation_alias="ROOMY_SECRET_SERVICE")
    use_keyring: bool = Field(default=True, validation_alias="ROOMY_USE_KEYRING")
    log_level: str = Field(default="WARNING", validation_alias="ROOMY_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "ROOMY_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("state_ttl_seconds", "lock_stale_seconds", "keyserver_timeout")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("durations must be > 0 seconds")
        return value

    @field_validator("keyserver_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("secret_service")
    @classmethod
    def _validate_secret_service(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("ROOMY_SECRET_SERVICE must not be empty")
        return normalized


@lru_cache(maxsize=1)
def get_settings() -> RoomySettings:
    """Return cached settings instance."""

    settings = RoomySettings()
    settings.config_dir = settings.config_dir.expanduser().resolve()
    return settings


__all__ = ["RoomySettings", "get_settings"]
