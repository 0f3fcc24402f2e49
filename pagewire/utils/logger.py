"""structlog setup and the category logger used by every pagewire component."""

import logging
import os
import sys
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional

import structlog

LOGGER_NAME = "pagewire"

# Protocol frames can carry screenshots and response bodies.
DEFAULT_MAX_VALUE_LENGTH = 1000


class LogLevel(IntEnum):
    """Verbosity at which a category line becomes visible."""
    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3


_STDLIB_LEVELS = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARN: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
}

_METHOD_NAMES = {
    LogLevel.ERROR: "error",
    LogLevel.WARN: "warning",
    LogLevel.INFO: "info",
    LogLevel.DEBUG: "debug",
}


def truncate_long_values(max_length: int) -> Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]:
    """Build a processor that shortens string values longer than ``max_length``."""

    def processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in event_dict.items():
            if key == "event":
                continue
            if isinstance(value, str) and len(value) > max_length:
                event_dict[key] = f"{value[:max_length]}... ({len(value)} chars)"
        return event_dict

    return processor


def configure_logging(
    verbose: int = 0,
    json_output: Optional[bool] = None,
    max_value_length: int = DEFAULT_MAX_VALUE_LENGTH,
) -> structlog.BoundLogger:
    """
    Configure structlog and stdlib logging for pagewire.

    Args:
        verbose: Verbosity level (0-3), mapped to ERROR/WARNING/INFO/DEBUG
        json_output: Force JSON (True) or console (False) rendering; by default
            the console renderer is used on a TTY unless NO_COLOR is set
        max_value_length: Longest string value kept intact in a log line

    Returns:
        Configured logger instance
    """
    level = LogLevel(max(0, min(verbose, LogLevel.DEBUG)))
    if json_output is None:
        json_output = not sys.stderr.isatty() or os.getenv("NO_COLOR") is not None

    processors: List[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        truncate_long_values(max_value_length),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=_STDLIB_LEVELS[level])
    logging.getLogger(LOGGER_NAME).setLevel(_STDLIB_LEVELS[level])

    return structlog.get_logger(LOGGER_NAME).bind(verbose=verbose)


class LogLine:
    """One categorized log line, e.g. ``connection:send``."""

    def __init__(
        self,
        category: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
        auxiliary: Optional[Dict[str, Any]] = None,
    ):
        self.category = category
        self.message = message
        self.level = level
        self.auxiliary = auxiliary or {}

    def to_dict(self) -> Dict[str, Any]:
        auxiliary = dict(self.auxiliary)
        # structlog takes the message as its positional "event" argument.
        if "event" in auxiliary:
            auxiliary["event_name"] = auxiliary.pop("event")
        return {
            "category": self.category,
            "message": self.message,
            "level": self.level.name,
            **auxiliary,
        }


class PagewireLogger:
    """
    Category logger over a structlog logger.

    Lines above ``verbose`` are dropped before they reach structlog, so
    components can log protocol traffic at DEBUG without paying for it at
    lower verbosity. ``child`` binds component context (session id, target
    id) for everything logged through the returned logger.
    """

    def __init__(self, logger: Any, verbose: int = 0):
        self.logger = logger
        self.verbose = verbose

    def enabled(self, level: LogLevel) -> bool:
        return level.value <= self.verbose

    def log(self, log_line: LogLine) -> None:
        if not self.enabled(log_line.level):
            return
        log_method = getattr(self.logger, _METHOD_NAMES[log_line.level], self.logger.info)
        log_method(log_line.message, **log_line.to_dict())

    def error(self, category: str, message: str, **kwargs: Any) -> None:
        self.log(LogLine(category, message, LogLevel.ERROR, kwargs))

    def warn(self, category: str, message: str, **kwargs: Any) -> None:
        self.log(LogLine(category, message, LogLevel.WARN, kwargs))

    def info(self, category: str, message: str, **kwargs: Any) -> None:
        self.log(LogLine(category, message, LogLevel.INFO, kwargs))

    def debug(self, category: str, message: str, **kwargs: Any) -> None:
        self.log(LogLine(category, message, LogLevel.DEBUG, kwargs))

    def child(self, **bindings: Any) -> "PagewireLogger":
        return PagewireLogger(self.logger.bind(**bindings), self.verbose)


def get_logger(verbose: int = 0) -> PagewireLogger:
    """Category logger on the package logger; structlog configuration is left alone."""
    return PagewireLogger(structlog.get_logger(LOGGER_NAME), verbose)
