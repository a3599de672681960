"""
Configuration Settings.

This module defines the SDK's environment configuration using Pydantic's BaseSettings.
Values are read from environment variables and an optional .env file; explicit
`ClientOptions` always take precedence over them.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SdkSettings(BaseSettings):
    """
    Environment-backed defaults for the Copilot SDK.

    All properties are bound from environment variables (see each field's alias)
    and from a .env file in the current working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
        populate_by_name=True,
    )

    # =====================================================================
    # Runtime Location
    # =====================================================================
    cli_path: Optional[str] = Field(
        default=None,
        description="Path to the Copilot runtime executable",
        alias="COPILOT_CLI_PATH",
    )
    cli_url: Optional[str] = Field(
        default=None,
        description="Endpoint of an already running runtime ('port', 'host:port', 'http(s)://host:port')",
        alias="COPILOT_CLI_URL",
    )

    # =====================================================================
    # Authentication
    # =====================================================================
    github_token: Optional[str] = Field(
        default=None,
        description="Credential handed to a spawned runtime",
        alias="COPILOT_GITHUB_TOKEN",
    )

    # =====================================================================
    # Logging
    # =====================================================================
    log_level: str = Field(
        default="INFO",
        description="SDK logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="COPILOT_SDK_LOG_LEVEL",
    )
    log_format: str = Field(
        default="detailed",
        description="Log format: simple, detailed or json",
        alias="COPILOT_SDK_LOG_FORMAT",
    )
    log_file_dir: str = Field(
        default="logs",
        description="Directory for the SDK log file",
        alias="COPILOT_SDK_LOG_FILE_DIR",
    )
    enable_file_logging: bool = Field(
        default=False,
        description="Also write logs to <log_file_dir>/copilot_sdk.log",
        alias="COPILOT_SDK_ENABLE_FILE_LOGGING",
    )


def get_settings() -> SdkSettings:
    """Read settings from the current environment."""
    return SdkSettings()
