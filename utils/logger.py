"""
Non-Blocking Logging Configuration for Async Applications

QueueHandler-based setup that moves console/file writes to a background
thread so the asyncio loop driving capture and transcription never blocks
on log I/O.

Usage:
    from utils.logger import configure_non_blocking_logging

    # At application startup (before any logging)
    listener = configure_non_blocking_logging()

Environment:
    LOG_LEVEL: level name or number (default INFO)
    LOG_FILE: optional path; adds a rotating file handler
"""

import atexit
import logging
import logging.handlers
import os
import queue
import sys
from typing import Optional

_log_listener: Optional[logging.handlers.QueueListener] = None

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%H:%M:%S"

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3

NOISY_LOGGERS = (
    "httpcore",
    "httpx",
    "asyncio",
    "multipart",
    "uvicorn.access",
)


def _resolve_log_level(value: int | str | None) -> int:
    """Resolve log level from string or integer value."""
    if value is None:
        return logging.INFO
    if isinstance(value, int):
        return value

    stripped = value.strip().upper()
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    if stripped in level_map:
        return level_map[stripped]

    try:
        return int(value.strip())
    except ValueError:
        return logging.INFO


def _build_handlers(level: int, formatter: logging.Formatter, log_file: str | None) -> list[logging.Handler]:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [console_handler]

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    return handlers


def configure_non_blocking_logging(
    level: int | str | None = None,
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    queue_size: int = -1,  # -1 = infinite
    silence_noisy_libs: bool = True,
    log_file: str | None = None,
) -> logging.handlers.QueueListener:
    """
    Configure non-blocking logging using the QueueHandler pattern.

    Calling it again replaces the previous listener.

    Args:
        level: Log level (default: from LOG_LEVEL env var or INFO)
        log_format: Format string for log messages
        date_format: Format string for timestamps
        queue_size: Max queue size (-1 for infinite)
        silence_noisy_libs: If True, set noisy libraries to WARNING level
        log_file: Rotating log file path (default: LOG_FILE env var, if set)

    Returns:
        QueueListener instance
    """
    global _log_listener

    if level is None:
        level = os.getenv("LOG_LEVEL")
    level = _resolve_log_level(level)
    if log_file is None:
        log_file = os.getenv("LOG_FILE") or None

    stop_logging()

    log_queue: queue.Queue = queue.Queue(queue_size)
    formatter = logging.Formatter(log_format, datefmt=date_format)
    listener = logging.handlers.QueueListener(
        log_queue,
        *_build_handlers(level, formatter, log_file),
        respect_handler_level=True,
    )
    listener.start()

    queue_handler = logging.handlers.QueueHandler(log_queue)
    queue_handler.setLevel(level)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(queue_handler)

    if silence_noisy_libs:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    atexit.register(stop_logging)
    _log_listener = listener
    return listener


def get_log_listener() -> Optional[logging.handlers.QueueListener]:
    """Get the current log listener for manual shutdown if needed."""
    return _log_listener


def stop_logging() -> None:
    """Stop the background logging thread and flush remaining logs."""
    global _log_listener
    listener = _log_listener
    _log_listener = None
    if listener is None:
        return
    try:
        listener.stop()
    except RuntimeError:
        # Already stopped via atexit
        pass
    for handler in listener.handlers:
        handler.close()


def is_logging_configured() -> bool:
    """Check if non-blocking logging has been configured."""
    return _log_listener is not None


__all__ = [
    "configure_non_blocking_logging",
    "get_log_listener",
    "stop_logging",
    "is_logging_configured",
    "DEFAULT_LOG_FORMAT",
    "DEFAULT_DATE_FORMAT",
]
