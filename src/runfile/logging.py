"""Logging infrastructure for runfile.

Provides the Logger interface injected into every component that reports
progress, plus the LogLevel scale used to filter messages.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Any


class LogLevel(enum.Enum):
    """Log verbosity levels for runfile diagnostic messages.

    Lower numeric values represent higher severity / less verbosity.
    """
    FATAL = 0  # Only unrecoverable errors (malformed runfile, cycles)
    ERROR = 1  # Fatal errors plus recipe failures
    WARN = 2   # Errors plus ignored failures and overridden definitions
    INFO = 3   # Warnings plus echoed commands (default)
    DEBUG = 4  # Info plus skipped targets, resolved shell and config
    TRACE = 5  # Debug plus variable values and execution plan details


class Logger(ABC):
    """Leveled logger interface.

    Implementations decide where messages go; callers only pick a level.
    """

    @abstractmethod
    def log(self, level: LogLevel = LogLevel.INFO, *args: Any, **kwargs: Any) -> None:
        ...

    @abstractmethod
    def push_level(self, level: LogLevel) -> None:
        ...

    @abstractmethod
    def pop_level(self) -> LogLevel:
        ...

    def fatal(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.FATAL, *args, **kwargs)

    def error(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.ERROR, *args, **kwargs)

    def warn(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.WARN, *args, **kwargs)

    def info(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.INFO, *args, **kwargs)

    def debug(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.DEBUG, *args, **kwargs)

    def trace(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.TRACE, *args, **kwargs)


def parse_log_level(name: str) -> LogLevel:
    """Map a CLI level name (case-insensitive) to a LogLevel.

    Raises:
        ValueError: If the name is not one of the known levels
    """
    try:
        return LogLevel[name.strip().upper()]
    except KeyError:
        valid = ", ".join(level.name.lower() for level in LogLevel)
        raise ValueError(f"Invalid log level '{name}'. Valid levels: {valid}") from None
