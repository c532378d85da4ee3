"""Unit tests for logging configuration."""

import logging
import os
import re
import sys
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import pytest

from forge.utils.logging import ForgeFormatter, get_logger, setup_logging

ANSI = re.compile(r"\033\[[0-9;]*m")


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before and after each test."""
    root = logging.getLogger()
    original_level = root.level
    original_handlers = root.handlers.copy()

    yield

    root.setLevel(original_level)
    root.handlers.clear()
    for handler in original_handlers:
        root.addHandler(handler)


def _record(name="forge.executor.engine", level=logging.INFO, msg="Prepared plan demo"):
    record = logging.LogRecord(
        name=name, level=level, pathname="engine.py", lineno=1, msg=msg, args=(), exc_info=None
    )
    record.created = datetime(2026, 1, 2, 3, 4, 5).timestamp()
    return record


class TestForgeFormatter:
    def test_plain_layout(self):
        output = ForgeFormatter(use_colors=False).format(_record())
        assert output == "[03:04:05] INFO     engine       Prepared plan demo"

    def test_colors_only_on_tty(self):
        formatter = ForgeFormatter(use_colors=True)

        with patch("sys.stderr.isatty", return_value=True):
            colored = formatter.format(_record(level=logging.WARNING))
        with patch("sys.stderr.isatty", return_value=False):
            plain = formatter.format(_record(level=logging.WARNING))

        assert "\033[33m" in colored
        assert not ANSI.search(plain)

    def test_exception_text_appended(self):
        try:
            raise ValueError("bad state")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        output = ForgeFormatter(use_colors=False).format(record)
        assert "Traceback" in output
        assert "ValueError: bad state" in output


class TestSetupLogging:
    def test_console_handler(self):
        setup_logging(level="debug")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h.formatter, ForgeFormatter) for h in root.handlers)

    def test_console_can_be_disabled(self, tmp_path):
        setup_logging(console=False, log_file=tmp_path / "forge.log")

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], RotatingFileHandler)
        assert handlers[0].formatter.use_colors is False

    def test_log_dir_creates_timestamped_file(self, tmp_path):
        log_dir = tmp_path / "nested" / "logs"
        setup_logging(log_dir=log_dir, console=False)

        get_logger("forge.test").warning("written to file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        files = list(log_dir.glob("forge_*.log"))
        assert len(files) == 1
        assert "written to file" in files[0].read_text()

    def test_old_logs_removed(self, tmp_path):
        stale = tmp_path / "forge_20000101_000000.log"
        stale.write_text("old")
        old = time.time() - 30 * 86400
        os.utime(stale, (old, old))
        fresh = tmp_path / "forge_keep.log"
        fresh.write_text("new")

        setup_logging(log_dir=tmp_path, retention_days=7, console=False)

        assert not stale.exists()
        assert fresh.exists()

    def test_level_filtering(self, capsys):
        setup_logging(level="WARNING", use_colors=False)
        logger = get_logger("forge.test")

        logger.info("hidden")
        logger.warning("shown")

        err = capsys.readouterr().err
        assert "hidden" not in err
        assert "shown" in err


def test_get_logger_same_instance():
    assert get_logger("forge.a") is get_logger("forge.a")
    assert get_logger("forge.a").name == "forge.a"


def test_unknown_level_rejected():
    with pytest.raises(ValueError, match="Unknown log level"):
        setup_logging(level="chatty")
