"""Application configuration objects."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SECRET_KEY = "stockroom-secret-key"


class Settings(BaseSettings):
    """Pydantic settings used to configure the stockroom core and its host."""

    model_config = SettingsConfigDict(
        env_prefix="STOCKROOM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="Stockroom",
        description="Human friendly name written into backups and the API.",
    )
    environment: Literal["development", "test", "production"] = Field(
        default="development",
        description="Deployment environment flag used for logging.",
    )
    data_dir: Path = Field(
        default=Path("./stockroom_data"),
        description="Directory holding one file per storage key.",
    )
    movement_capacity: int = Field(
        default=500,
        description="Maximum number of movements kept in the ledger.",
    )
    movement_display_limit: int = Field(
        default=30,
        description="Maximum number of movements returned for a single item.",
    )
    notification_cooldown_hours: float = Field(
        default=12.0,
        description="Minimum time between two low-stock notifications.",
    )
    secret_key: str = Field(
        default=DEFAULT_SECRET_KEY,
        description="Key used to sign unlock tokens.",
    )
    unlock_token_max_age: int = Field(
        default=60 * 60 * 12,
        description="Lifetime of an unlock token in seconds.",
    )
    log_level: str = Field(default="INFO", description="Root logging level.")

    @field_validator("movement_capacity", "movement_display_limit", "unlock_token_max_age")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("notification_cooldown_hours")
    @classmethod
    def _validate_cooldown(cls, value: float) -> float:
        if value < 0:
            raise ValueError("cooldown cannot be negative")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"unknown log level {value!r}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of :class:`Settings`."""

    return Settings()


__all__ = ["Settings", "get_settings"]
