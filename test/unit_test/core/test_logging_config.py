"""Unit tests for logging configuration module.

Tests verify that setup_logging honours explicit arguments, falls back to the
environment settings and applies the per-module levels.
"""

import logging
from pathlib import Path

import pytest

from copilot_sdk.core.logging_config import (
    DETAILED_FORMAT,
    JSON_FORMAT,
    LOG_FILE_NAME,
    MODULE_LOG_LEVELS,
    SIMPLE_FORMAT,
    get_logger,
    setup_logging,
)


def _console_handler() -> logging.Handler:
    root_logger = logging.getLogger()
    handler = next(
        (h for h in root_logger.handlers if type(h) is logging.StreamHandler),
        None,
    )
    assert handler is not None
    return handler


def _file_handler():
    return next((h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)), None)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root_logger = logging.getLogger()
    saved_handlers = root_logger.handlers[:]
    saved_level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        if handler not in saved_handlers:
            handler.close()
    root_logger.handlers[:] = saved_handlers
    root_logger.setLevel(saved_level)


class TestSetupLoggingLogLevels:
    """Test setup_logging with different log levels."""

    @pytest.mark.parametrize(
        "log_level,expected_level",
        [
            ("DEBUG", logging.DEBUG),
            ("INFO", logging.INFO),
            ("WARNING", logging.WARNING),
            ("error", logging.ERROR),
            ("critical", logging.CRITICAL),
        ],
    )
    def test_setup_logging_with_different_levels(self, log_level, expected_level):
        setup_logging(log_level=log_level, enable_file=False)

        assert _console_handler().level == expected_level

    def test_setup_logging_level_from_environment(self, monkeypatch):
        """COPILOT_SDK_LOG_LEVEL is used when no level is passed."""
        monkeypatch.setenv("COPILOT_SDK_LOG_LEVEL", "WARNING")
        setup_logging(enable_file=False)

        assert _console_handler().level == logging.WARNING

    def test_root_logger_level_is_debug(self):
        setup_logging(log_level="WARNING", enable_file=False)

        # filtering happens at handler level
        assert logging.getLogger().level == logging.DEBUG


class TestSetupLoggingFormats:
    @pytest.mark.parametrize(
        "log_format,expected_format",
        [
            ("simple", SIMPLE_FORMAT),
            ("detailed", DETAILED_FORMAT),
            ("json", JSON_FORMAT),
            ("something-else", DETAILED_FORMAT),
        ],
    )
    def test_setup_logging_with_different_formats(self, log_format, expected_format):
        setup_logging(log_format=log_format, enable_file=False)

        handler = _console_handler()
        assert handler.formatter._fmt == expected_format
        assert handler.formatter.datefmt == "%Y-%m-%d %H:%M:%S"


class TestSetupLoggingFileHandling:
    """Test setup_logging file logging functionality."""

    def test_setup_logging_with_file_enabled(self, tmp_path, monkeypatch):
        log_dir = tmp_path / "new_logs"
        monkeypatch.setenv("COPILOT_SDK_LOG_FILE_DIR", str(log_dir))

        setup_logging(log_level="ERROR", enable_file=True)

        file_handler = _file_handler()
        assert file_handler is not None
        # file handler always records DEBUG
        assert file_handler.level == logging.DEBUG
        assert Path(file_handler.baseFilename) == log_dir / LOG_FILE_NAME
        assert log_dir.exists()

    def test_setup_logging_with_file_disabled(self):
        setup_logging(enable_file=False)

        assert _file_handler() is None

    def test_setup_logging_does_not_duplicate_handlers(self):
        setup_logging(enable_file=False)
        setup_logging(enable_file=False)

        assert sum(type(h) is logging.StreamHandler for h in logging.getLogger().handlers) == 1


class TestSetupLoggingModuleSpecificLevels:
    def test_all_module_log_levels_configured(self):
        setup_logging(log_level="INFO", enable_file=False)

        for module_name, expected_level_str in MODULE_LOG_LEVELS.items():
            assert logging.getLogger(module_name).level == getattr(logging, expected_level_str)

    def test_debug_request_opens_sdk_loggers_only(self):
        setup_logging(log_level="DEBUG", enable_file=False)

        assert logging.getLogger("copilot_sdk.transport.connection").level == logging.DEBUG
        assert logging.getLogger("asyncio").level == logging.WARNING


class TestGetLogger:
    def test_get_logger_same_name_returns_same_instance(self):
        assert get_logger("copilot_sdk.client") is logging.getLogger("copilot_sdk.client")

    @pytest.mark.parametrize("module_name", ["copilot_sdk.session", "custom_module", "test.nested.module.name"])
    def test_get_logger_with_various_names(self, module_name):
        logger = get_logger(module_name)

        assert isinstance(logger, logging.Logger)
        assert logger.name == module_name
