"""Logging setup shared by the CLI and the engine.

Records go to stderr (stdout is reserved for command output such as --json)
and, when configured, to a size-rotated file under the log directory.
"""

import logging
import sys
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

LOG_FILE_PREFIX = "forge_"
SECONDS_PER_DAY = 86400

RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}


class ForgeFormatter(logging.Formatter):
    """Renders ``[HH:MM:SS] LEVEL    module       message``.

    Only the level name is colored, and only when stderr is a terminal.
    """

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def _colors_enabled(self) -> bool:
        return self.use_colors and sys.stderr.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        # pad before coloring so escape codes don't eat into the column width
        padded = f"{record.levelname:8}"
        if not self._colors_enabled():
            return padded
        color = LEVEL_COLORS.get(record.levelno, "")
        return f"{color}{record.levelname}{RESET}{padded[len(record.levelname):]}"

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        module = record.name.rsplit(".", 1)[-1]
        line = f"[{clock}] {self._level(record)} {module:12} {record.getMessage()}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def _prune_logs(log_dir: Path, retention_days: int) -> None:
    """Delete Forge log files in log_dir not modified within retention_days."""
    if retention_days <= 0:
        return
    oldest_allowed = time.time() - retention_days * SECONDS_PER_DAY
    for path in log_dir.glob(f"{LOG_FILE_PREFIX}*.log*"):
        try:
            if path.stat().st_mtime < oldest_allowed:
                path.unlink()
        except OSError as e:
            logger.warning(f"Could not prune old log file {path}: {e}")


def _file_handler(log_file: Path, rotation_mb: int, retention_days: int) -> RotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    _prune_logs(log_file.parent, retention_days)
    handler = RotatingFileHandler(
        log_file,
        maxBytes=max(1, rotation_mb) * 1024 * 1024,
        backupCount=max(1, retention_days),
        encoding="utf-8",
    )
    handler.setFormatter(ForgeFormatter(use_colors=False))
    return handler


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Path] = None,
    log_dir: Optional[Path] = None,
    rotation_mb: int = 10,
    retention_days: int = 7,
    use_colors: bool = True,
    console: bool = True,
) -> None:
    """(Re)configure the root logger.

    Safe to call more than once: existing root handlers are replaced, which
    is how the CLI switches to the configured level and log directory once
    the config file has been read.

    Args:
        level: Level name or number
        log_file: Explicit log file path
        log_dir: Directory for a timestamped ``forge_<ts>.log`` when log_file is not given
        rotation_mb: Rotate the file after this many megabytes
        retention_days: Prune older forge_*.log files (<=0 keeps everything)
        use_colors: Color level names on a terminal
        console: Attach the stderr handler
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_resolve_level(level))
    root_logger.handlers.clear()

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(ForgeFormatter(use_colors=use_colors))
        root_logger.addHandler(stream_handler)

    if log_file is None and log_dir is not None:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = Path(log_dir) / f"{LOG_FILE_PREFIX}{stamp}.log"
    if log_file is not None:
        root_logger.addHandler(_file_handler(Path(log_file), rotation_mb, retention_days))

    # slow-callback warnings are the only asyncio records worth seeing
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
