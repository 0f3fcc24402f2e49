"""Utility helpers for pagewire."""

from .logger import LogLevel, LogLine, PagewireLogger, configure_logging, get_logger, truncate_long_values

__all__ = [
    "LogLevel",
    "LogLine",
    "PagewireLogger",
    "configure_logging",
    "get_logger",
    "truncate_long_values",
]
