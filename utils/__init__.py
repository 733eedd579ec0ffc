"""
Shared utilities module.

Contains:
- logger: Non-blocking logging configuration
- audio_trim: ffprobe/ffmpeg helpers for duration probing and window extraction
"""

from utils.logger import (
    configure_non_blocking_logging,
    get_log_listener,
    stop_logging,
    is_logging_configured,
    DEFAULT_LOG_FORMAT,
    DEFAULT_DATE_FORMAT,
)

__all__ = [
    # Logger
    "configure_non_blocking_logging",
    "get_log_listener",
    "stop_logging",
    "is_logging_configured",
    "DEFAULT_LOG_FORMAT",
    "DEFAULT_DATE_FORMAT",
]
