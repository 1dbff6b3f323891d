#!/usr/bin/env python3

"""
Centralized Logging Configuration.

Sets up application-wide logging using Python's standard ``logging`` module:
- configurable level via argument, ``LoggingConfig`` or the LOG_LEVEL variable;
- console (stderr) handler and optional file handler;
- a formatter that aligns multi-line messages under the log prefix;
- filters that quieten HTTP and event-loop libraries.

Every module logs through ``logging.getLogger(__name__)``; handlers live on
the root logger so nothing has to be threaded through.
"""

from __future__ import annotations

import copy
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from config.config_schema import LoggingConfig
from testing.test_framework import Colors

LOG_FORMAT: str = "%(asctime)s %(levelname).3s [%(name)-22.22s %(lineno)-4d] %(message)s"
DATE_FORMAT: str = "%H:%M:%S"

NOISY_LIBRARIES = ["urllib3", "requests", "asyncio"]

logger_for_setup = logging.getLogger("logger_setup")


class NameFilter(logging.Filter):
    """Filters log records based on logger name starting with excluded prefixes."""

    def __init__(self, excluded_names: list[str]):
        super().__init__()
        self.excluded_names = excluded_names

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False if record name starts with any excluded prefix, True otherwise."""
        return not any(record.name.startswith(name) for name in self.excluded_names)


class AlignedMessageFormatter(logging.Formatter):
    """
    Formats log records to align multi-line messages below the initial log prefix.
    Leading whitespace from subsequent lines of the original message is removed.
    """

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, use_color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def _apply_level_color(self, message: str, level: int) -> str:
        """Apply color based on log level if not already colored."""
        if not self.use_color or "\033[" in message:
            return message
        if level >= logging.ERROR:
            return Colors.paint(message, Colors.RED)
        if level >= logging.WARNING:
            return Colors.paint(message, Colors.YELLOW)
        return message

    def _calculate_message_start_position(self, record_copy: logging.LogRecord, placeholder: str) -> int:
        """Calculate the position where the actual message starts."""
        prefix_with_placeholder = super().format(record_copy)
        try:
            return prefix_with_placeholder.index(placeholder)
        except ValueError:
            # Heuristic: end of the metadata bracket
            heuristic_index = prefix_with_placeholder.find("] ")
            return heuristic_index + 2 if heuristic_index != -1 else 41

    @staticmethod
    def _format_multiline_message(lines: list[str], prefix: str, indent: str) -> str:
        """Format multiline message with proper indentation."""
        if not lines:
            return prefix.rstrip()
        result_lines = [f"{prefix}{lines[0].lstrip()}"]
        result_lines.extend(f"{indent}{line.lstrip()}" for line in lines[1:])
        return "\n".join(result_lines)

    def format(self, record: logging.LogRecord) -> str:
        """Formats the log record with alignment and level colors."""
        original_message = self._apply_level_color(record.getMessage(), record.levelno)
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            original_message = f"{original_message}\n{record.exc_text}"

        record_copy = copy.copy(record)
        placeholder = "\x00"
        record_copy.msg = placeholder
        record_copy.args = ()
        record_copy.exc_info = None
        record_copy.exc_text = None
        record_copy.stack_info = None

        message_start_pos = self._calculate_message_start_position(record_copy, placeholder)
        prefix_string = super().format(record_copy)[:message_start_pos]
        indent = " " * message_start_pos

        return self._format_multiline_message(original_message.split("\n"), prefix_string, indent)


class _LoggingState:
    """Manages logging initialization state."""

    initialized: bool = False
    handlers: list[logging.Handler] = []


def setup_logging(
    log_file: str = "",
    log_level: str = "",
    settings: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure the root logger with console and (optionally) file handlers.

    If called again, updates existing handler levels instead of re-adding them.

    Args:
        log_file: Path of the log file. Empty means ``settings.log_file`` or the
            LOG_FILE environment variable; no file handler when none is set.
        log_level: Minimum level for the handlers (e.g. "DEBUG", "INFO"). Empty
            means ``settings.log_level`` or LOG_LEVEL (default INFO).
        settings: Optional LoggingConfig section.

    Returns:
        The configured root logger.
    """
    root = logging.getLogger()

    if not log_level:
        log_level = settings.log_level if settings else os.getenv("LOG_LEVEL", "INFO")
    numeric_log_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_log_level, int):
        logger_for_setup.warning(f"Unknown log level {log_level!r}; using INFO")
        numeric_log_level = logging.INFO

    if _LoggingState.initialized:
        for handler in _LoggingState.handlers:
            handler.setLevel(numeric_log_level)
        return root

    fmt = settings.log_format if settings else LOG_FORMAT
    datefmt = settings.date_format if settings else DATE_FORMAT

    if not log_file:
        if settings and settings.enable_file_logging and settings.log_file:
            log_file = str(settings.log_file)
        else:
            log_file = os.getenv("LOG_FILE", "")

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(AlignedMessageFormatter(fmt=fmt, datefmt=datefmt))
    console_handler.setLevel(numeric_log_level)
    console_handler.addFilter(NameFilter(NOISY_LIBRARIES))
    handlers.append(console_handler)

    if log_file:
        log_file_path = Path(log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, mode="a", encoding="utf-8")
        file_handler.setFormatter(AlignedMessageFormatter(fmt=fmt, datefmt=datefmt, use_color=False))
        file_handler.setLevel(numeric_log_level)
        handlers.append(file_handler)

    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(logging.DEBUG)

    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    _LoggingState.handlers = handlers
    _LoggingState.initialized = True
    return root


def reset_logging() -> None:
    """Remove the handlers installed by setup_logging (used by tests)."""
    root = logging.getLogger()
    for handler in _LoggingState.handlers:
        root.removeHandler(handler)
        handler.close()
    _LoggingState.handlers = []
    _LoggingState.initialized = False


__all__ = [
    "AlignedMessageFormatter",
    "DATE_FORMAT",
    "LOG_FORMAT",
    "NameFilter",
    "reset_logging",
    "setup_logging",
]
