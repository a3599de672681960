"""
Logging Configuration Module.

This module provides opt-in logging configuration for applications using the
Copilot SDK. The SDK itself only creates module loggers; nothing is configured
at import time.

Features:
- Configurable log levels per module
- Console and file logging
- Simple, detailed and JSON-like formats
"""

import logging
from pathlib import Path
from typing import Optional

from copilot_sdk.core.config import get_settings

# Define log formats
SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"module": "%(filename)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)

LOG_FILE_NAME = "copilot_sdk.log"

# Module-specific log levels
MODULE_LOG_LEVELS = {
    "copilot_sdk": "INFO",
    "copilot_sdk.transport": "INFO",
    "copilot_sdk.transport.connection": "INFO",
    "copilot_sdk.transport.stdio": "INFO",
    "copilot_sdk.transport.supervisor": "INFO",
    "copilot_sdk.client": "INFO",
    "copilot_sdk.session": "INFO",
    # Third-party libraries (reduce noise)
    "asyncio": "WARNING",
}


def _format_string(fmt: str) -> str:
    if fmt == "json":
        return JSON_FORMAT
    if fmt == "simple":
        return SIMPLE_FORMAT
    return DETAILED_FORMAT


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_file: Optional[bool] = None,
) -> None:
    """
    Configure logging for an application embedding the SDK.

    Args:
        log_level: Override the configured level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Override the configured format (simple, detailed, json)
        enable_file: Override whether a log file is written
    """
    settings = get_settings()
    level = (log_level or settings.log_level).upper()
    fmt = log_format or settings.log_format
    to_file = settings.enable_file_logging if enable_file is None else enable_file

    formatter = logging.Formatter(_format_string(fmt), datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all levels, filter at handler level

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if to_file:
        log_dir = Path(settings.log_file_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME)
        file_handler.setLevel(logging.DEBUG)  # Always log DEBUG to file
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        # an explicit DEBUG request opens up the SDK's own loggers too
        effective = "DEBUG" if level == "DEBUG" and module_name.startswith("copilot_sdk") else module_level
        logging.getLogger(module_name).setLevel(effective)

    root_logger.info("Logging configured: level=%s, format=%s, file_logging=%s", level, fmt, to_file)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)
