"""
Shared utilities for the Copilot SDK: environment settings and logging setup.
"""

from copilot_sdk.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
