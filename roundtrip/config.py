"""Configuration loading for the Roundtrip test harness.

This module provides centralized configuration management:
- Load settings from environment variables and .env files
- Validate configuration using pydantic
- Provide typed access to all settings

Credentials and the target room come from the command line; everything
else about a run is configured here.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment.

    Uses pydantic-settings for environment variable handling with
    .env file support via python-dotenv.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Deadlines
    watchdog_timeout_seconds: float = Field(
        default=180.0,
        description="Global deadline for setup and all tests",
    )
    teardown_timeout_seconds: float = Field(
        default=30.0,
        description="Bound on posting the report, leaving and logging out",
    )

    # Protocol client configuration
    client_backend: Literal["loopback"] = Field(
        default="loopback",
        description="Protocol client backend type",
    )
    loopback_latency_ms: int = Field(
        default=50,
        description="Simulated server response latency in milliseconds",
    )
    loopback_sync_interval_ms: int = Field(
        default=200,
        description="Interval between simulated sync batches in milliseconds",
    )
    loopback_fail_uploads: bool = Field(
        default=False,
        description="Make every simulated file upload fail",
    )
    lazy_loading: bool = Field(
        default=True,
        description="Enable lazy loading of room members",
    )

    # Suite configuration
    members_room_alias: str = Field(
        default="#quotient:matrix.org",
        description="Alias of a larger joined room used to test member loading",
    )
    test_tag: str = Field(
        default="im.quotient.test",
        description="Room tag added and removed by the tagging test",
    )

    # Notification configuration
    notification_backend: Literal["none", "stdout", "webhook"] = Field(
        default="none",
        description="Additional channel receiving the final summary",
    )
    notification_webhook_url: str = Field(
        default="",
        description="Endpoint receiving the summary as JSON",
    )
    notification_webhook_token: str = Field(
        default="",
        description="Bearer token for the summary webhook",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    # Development
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging",
    )

    @field_validator("watchdog_timeout_seconds", "teardown_timeout_seconds")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        """Ensure deadlines are positive."""
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("loopback_latency_ms")
    @classmethod
    def validate_latency(cls, v: int) -> int:
        """Ensure latency is non-negative."""
        if v < 0:
            raise ValueError("loopback_latency_ms must be non-negative")
        return v

    @field_validator("loopback_sync_interval_ms")
    @classmethod
    def validate_sync_interval(cls, v: int) -> int:
        """Ensure sync interval is positive."""
        if v <= 0:
            raise ValueError("loopback_sync_interval_ms must be positive")
        return v

    @field_validator("members_room_alias")
    @classmethod
    def validate_members_room_alias(cls, v: str) -> str:
        """Ensure the members room is referenced by alias."""
        if not v.startswith("#"):
            raise ValueError("members_room_alias must be a room alias (#...)")
        return v

    @field_validator("test_tag")
    @classmethod
    def validate_test_tag(cls, v: str) -> str:
        """Ensure the test tag is non-empty."""
        if not v.strip():
            raise ValueError("test_tag must be non-empty")
        return v


def load_settings(env_file: str | None = None) -> Settings:
    """Load application settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]
