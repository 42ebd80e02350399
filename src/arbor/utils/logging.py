"""Logging setup for the Arbor application."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["setup_logging", "get_log_path"]

_DEFAULT_LOG_DIR = Path.home() / ".arbor" / "logs"
_LOG_FILE_NAME = "arbor.log"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# Third-party loggers that flood DEBUG output with transport chatter.
_QUIET_LOGGERS = ("asyncio", "httpx", "httpcore", "openai")

_log_path: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Route the root logger to ``arbor.log`` (rotated) and, optionally, stderr.

    ``ARBOR_LOG_DIR`` overrides the default ``~/.arbor/logs`` location. Calling
    again is a no-op unless ``force`` is set.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    directory = Path(log_dir or os.environ.get("ARBOR_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / _LOG_FILE_NAME

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)
    handlers = [_file_handler(path, level, max_bytes=max_bytes, backup_count=backup_count)]
    if console:
        # stderr shares the terminal with the chat transcript.
        handlers.append(_console_handler(logging.DEBUG if level <= logging.DEBUG else logging.WARNING))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _log_path = path
    return path


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging` runs."""

    return _log_path


def _file_handler(path: Path, level: int, *, max_bytes: int, backup_count: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    return handler


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(level)
    return handler
