"""
Configuration management using pydantic-settings.

Hierarchical configuration with environment variable support.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_PRE_DRAIN_MESSAGE = (
    "The server is about to be resized. It will stop once nobody is online "
    "and be back in a few minutes. If it is not empty within 5 minutes the "
    "resize is cancelled."
)


class PrometheusSettings(BaseSettings):
    """Prometheus connection settings."""

    model_config = SettingsConfigDict(env_prefix="PROMETHEUS_")

    url: str = Field(default="http://localhost:9090")
    username: str | None = Field(default=None)
    password: str | None = Field(default=None)
    query_timeout: float = Field(default=30.0, gt=0)


class RconSettings(BaseSettings):
    """Remote console connection to the managed game server."""

    model_config = SettingsConfigDict(env_prefix="RCON_")

    address: str = Field(default="localhost:25575", description="host:port")
    password: str = Field(default="")
    timeout: float = Field(default=10.0, gt=0, description="Per-command timeout (seconds)")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        host, sep, port = v.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"RCON address must be host:port, got {v!r}")
        return v


class HetznerSettings(BaseSettings):
    """Hetzner Cloud settings."""

    model_config = SettingsConfigDict(env_prefix="HETZNER_")

    api_url: str = Field(default="https://api.hetzner.cloud/v1")
    api_token: str = Field(default="")
    server_name: str = Field(default="")
    server_types_cache_seconds: float = Field(default=600.0, ge=0)
    request_timeout: float = Field(default=30.0, gt=0)


class ScalingSettings(BaseSettings):
    """Scaling loop settings."""

    model_config = SettingsConfigDict(env_prefix="SCALING_")

    allowed_sizes: Annotated[list[str], NoDecode] = Field(default_factory=list)
    interval_seconds: float = Field(default=60.0, gt=0, description="Rule evaluation interval")
    min_interval_seconds: float = Field(
        default=3600.0, ge=0, description="Minimum time between scaling actions"
    )

    # Drain
    drain_poll_seconds: float = Field(default=5.0, gt=0)
    drain_timeout_seconds: float = Field(default=300.0, gt=0)
    pre_drain_message: str = Field(
        default=DEFAULT_PRE_DRAIN_MESSAGE,
        description="Plain text, or a JSON text component when it starts with '{'",
    )

    # Cloud actions
    action_poll_seconds: float = Field(default=5.0, gt=0)
    action_max_attempts: int = Field(default=24, ge=1)
    stop_timeout_seconds: float = Field(default=300.0, gt=0)

    schedule_timezone: str = Field(default="UTC")

    @field_validator("allowed_sizes", mode="before")
    @classmethod
    def split_sizes(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v


class AppSettings(BaseSettings):
    """Application-level settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: Literal["development", "staging", "production"] = Field(default="development")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    rules_file: Path = Field(default=Path("rules.toml"))
    metrics_port: int | None = Field(
        default=None, ge=1, le=65535, description="Expose Prometheus metrics on this port"
    )

    # Nested settings
    prometheus: PrometheusSettings = Field(default_factory=PrometheusSettings)
    rcon: RconSettings = Field(default_factory=RconSettings)
    hetzner: HetznerSettings = Field(default_factory=HetznerSettings)
    scaling: ScalingSettings = Field(default_factory=ScalingSettings)

    @field_validator("rules_file", mode="before")
    @classmethod
    def validate_rules_file(cls, v: str | Path) -> Path:
        return Path(v)


@lru_cache
def get_settings() -> AppSettings:
    """Get cached application settings."""
    return AppSettings()
