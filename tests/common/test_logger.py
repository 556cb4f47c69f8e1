# tests/common/test_logger.py
"""
Тесты для модуля логирования.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from ridetrack.common import logger as logger_module
from ridetrack.common.constants import TypeMsg
from ridetrack.common.logger import (
    DEFAULT_LOGGER_NAME,
    ColoredFormatter,
    DateBasedRotatingFileHandler,
    JsonFormatter,
    _get_caller_info,
    _loggers,
    get_logger,
    log_debug,
    log_error,
    log_info,
    log_warning,
    setup_logging,
)


def make_record(level: int = logging.INFO, msg: str = "Test message", exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    record.module = "test_module"
    record.funcName = "test_function"
    return record


class TestJsonFormatter:
    """Тесты для JsonFormatter."""

    def test_format_basic_record(self) -> None:
        result = json.loads(JsonFormatter().format(make_record()))

        assert result["level"] == "INFO"
        assert result["message"] == "Test message"
        assert result["module"] == "test_module"
        assert result["function"] == "test_function"
        assert result["line"] == 10
        assert result["timestamp"].endswith("Z")

    def test_format_with_extra_data(self) -> None:
        record = make_record(logging.WARNING)
        record.extra_data = {"session_id": "s1", "action": "end"}

        result = json.loads(JsonFormatter().format(record))

        assert result["extra"] == {"session_id": "s1", "action": "end"}

    def test_format_with_exception(self) -> None:
        try:
            raise ValueError("Test exception")
        except ValueError:
            exc_info = sys.exc_info()

        result = json.loads(JsonFormatter().format(make_record(logging.ERROR, exc_info=exc_info)))

        assert "ValueError" in result["exception"]
        assert "Test exception" in result["exception"]


class TestColoredFormatter:
    """Тесты для ColoredFormatter."""

    def test_format_basic_record(self) -> None:
        result = ColoredFormatter().format(make_record())

        assert "INFO" in result
        assert "Test message" in result
        assert "\033[" in result

    def test_format_with_caller_info(self) -> None:
        record = make_record(logging.DEBUG)
        record.extra_data = {
            "caller_function": "update_position",
            "caller_module": "ridetrack.core.rides.service",
            "caller_file": "service.py",
            "caller_line": 42,
        }

        result = ColoredFormatter().format(record)

        assert "ridetrack.core.rides.service.update_position()" in result
        assert "service.py:42" in result


class TestRotatingHandler:
    """Тесты для DateBasedRotatingFileHandler."""

    def test_rollover_archives_file(self, tmp_path: Path) -> None:
        """При превышении размера файл переименовывается в архив."""
        handler = DateBasedRotatingFileHandler(log_dir=str(tmp_path), max_bytes=50, logger_name="rt")
        handler.setFormatter(logging.Formatter("%(message)s"))

        handler.emit(make_record(msg="x" * 60))
        handler.emit(make_record(msg="second"))
        handler.close()

        archives = [p for p in tmp_path.iterdir() if p.name.startswith("rt_")]
        assert len(archives) == 1
        assert (tmp_path / "rt.log").read_text(encoding="utf-8").strip() == "second"

    def test_no_rollover_without_limit(self, tmp_path: Path) -> None:
        handler = DateBasedRotatingFileHandler(log_dir=str(tmp_path), max_bytes=0, logger_name="rt")
        assert handler.shouldRollover(make_record()) is False
        handler.close()


class TestGetLogger:
    """Тесты для get_logger."""

    def setup_method(self) -> None:
        _loggers.clear()
        for name in ("test_logger", "test_with_settings", "test_no_settings"):
            logging.getLogger(name).handlers.clear()

    def test_creates_logger_with_console_handler(self) -> None:
        logger = get_logger("test_logger")

        assert logger.name == "test_logger"
        assert len(logger.handlers) >= 1
        assert logger.propagate is False

    def test_returns_cached_logger(self) -> None:
        assert get_logger("test_logger") is get_logger("test_logger")

    def test_uses_settings(self) -> None:
        """Уровень и формат берутся из конфигурации."""
        mock_settings = Mock()
        mock_settings.logging.LOG_LEVEL = "WARNING"
        mock_settings.logging.LOG_FORMAT = "json"
        mock_settings.logging.LOG_TO_FILE = False
        mock_settings.logging.LOG_FILE_PATH = "logs/test.log"
        mock_settings.logging.LOG_MAX_BYTES = 1024

        with patch("ridetrack.config.settings", mock_settings):
            logger = get_logger("test_with_settings")

        assert logger.level == logging.WARNING
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)

    def test_handles_missing_settings(self) -> None:
        """Без конфигурации используются значения по умолчанию."""
        with patch.dict("sys.modules", {"ridetrack.config": None}):
            logger = get_logger("test_no_settings")

        assert logger.level == logging.DEBUG


class TestSetupLogging:
    """Тесты для setup_logging."""

    def test_initializes_default_logger(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(logger_module, "_LOGGING_INITIALIZED", False)
        _loggers.clear()

        setup_logging()

        assert DEFAULT_LOGGER_NAME in _loggers
        assert logging.getLogger("asyncpg").level == logging.WARNING
        assert logging.getLogger("aio_pika").level == logging.WARNING


class TestGetCallerInfo:
    """Тесты для _get_caller_info."""

    def test_reports_calling_code(self) -> None:
        def log_helper() -> dict:
            return _get_caller_info()

        def business_code() -> dict:
            return log_helper()

        info = business_code()

        assert info["caller_function"] == "business_code"
        assert info["caller_file"] == "test_logger.py"


class TestLogFunctions:
    """Тесты для асинхронных функций логирования."""

    def setup_method(self) -> None:
        _loggers.clear()

    @pytest.mark.asyncio
    async def test_log_info_basic(self) -> None:
        with patch.object(logging.Logger, "info") as mock_info:
            await log_info("Test message")

        mock_info.assert_called_once()
        assert mock_info.call_args[0][0] == "Test message"
        assert "extra_data" in mock_info.call_args[1]["extra"]

    @pytest.mark.parametrize(
        "type_msg, method",
        [
            (TypeMsg.DEBUG, "debug"),
            (TypeMsg.WARNING, "warning"),
            (TypeMsg.ERROR, "error"),
            (TypeMsg.CRITICAL, "critical"),
        ],
    )
    @pytest.mark.asyncio
    async def test_log_info_levels(self, type_msg: TypeMsg, method: str) -> None:
        with patch.object(logging.Logger, method) as mock_method:
            await log_info("Leveled", type_msg=type_msg)
        mock_method.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_info_extra(self) -> None:
        with patch.object(logging.Logger, "info") as mock_info:
            await log_info("With extra", extra={"session_id": "s1"})
        assert mock_info.call_args[1]["extra"]["extra_data"]["session_id"] == "s1"

    @pytest.mark.asyncio
    async def test_shortcuts(self) -> None:
        with patch.object(logging.Logger, "debug") as mock_debug, \
                patch.object(logging.Logger, "warning") as mock_warning:
            await log_debug("Debug")
            await log_warning("Warning")

        mock_debug.assert_called_once()
        mock_warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_error_with_exc_info(self) -> None:
        with patch.object(logging.Logger, "error") as mock_error:
            await log_error("Failure", exc_info=True)

        assert mock_error.call_args[1]["exc_info"] is True
