"""Configuration settings for build_handoff.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_store_root() -> Path:
    """Return the default root directory for the filesystem object store."""
    return Path.home() / ".local" / "share" / "build-handoff" / "store"


def _default_log_dir() -> Path:
    """Return the default directory for the file log sink."""
    return Path.home() / ".local" / "share" / "build-handoff" / "logs"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the HANDOFF_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="HANDOFF_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Object store
    bucket: str = Field(
        default="build-handoff",
        description="Shared bucket (namespace) for one pipeline run",
    )
    store_backend: Literal["filesystem", "http"] = Field(
        default="filesystem",
        description="Object store binding",
    )
    store_root: Path = Field(
        default_factory=_default_store_root,
        description="Root directory for the filesystem object store",
    )
    store_endpoint: str | None = Field(
        default=None,
        description="Base URL of the HTTP object gateway",
    )

    # Log sink
    log_group: str = Field(
        default="build-handoff",
        description="Log group holding the build and target streams",
    )
    build_stream: str = Field(
        default="build",
        description="Stream name for builder progress events",
    )
    target_stream: str = Field(
        default="target",
        description="Stream name for consumer progress events",
    )
    log_backend: Literal["file", "http"] = Field(
        default="file",
        description="Log sink binding",
    )
    log_dir: Path = Field(
        default_factory=_default_log_dir,
        description="Directory for the file log sink",
    )
    log_endpoint: str | None = Field(
        default=None,
        description="Base URL of the HTTP log ingestion service",
    )

    # Fleet manager and instance metadata
    fleet_endpoint: str | None = Field(
        default=None,
        description="Base URL of the fleet manager API",
    )
    metadata_endpoint: str = Field(
        default="http://169.254.169.254",
        description="Instance metadata service base URL",
    )

    # Pipeline profile
    profile_path: Path | None = Field(
        default=None,
        description="Pipeline profile (YAML/JSON); built-in profile if not set",
    )
    boot_log_path: Path = Field(
        default=Path("/var/log/cloud-init-output.log"),
        description="Boot/init log uploaded as a diagnostic object",
    )

    # Artifact wait
    poll_interval: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between artifact existence checks",
    )
    wait_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Give up waiting for artifacts after this many seconds",
    )
    wait_max_attempts: int | None = Field(
        default=None,
        ge=1,
        description="Give up waiting for artifacts after this many polls",
    )

    # Timeouts and delays (in seconds)
    build_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Timeout for the build process (unbounded if not set)",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for store, log sink and fleet requests",
    )
    halt_grace_delay: float = Field(
        default=30.0,
        ge=0,
        description="Delay before the builder halts its instance",
    )
    reboot_delay: float = Field(
        default=5.0,
        ge=0,
        description="Delay before the consumer reboots its instance",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
