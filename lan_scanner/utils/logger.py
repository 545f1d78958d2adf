"""
Logging system with colored output for LAN scanning operations.

This module provides a Logger class that supports colored console output
using colorama, different log levels with distinct colors, and progress
indicators for long-running scans. Probes log from worker threads, so every
write to the console is serialized through a shared lock.
"""

import sys
import threading
from datetime import datetime
from enum import Enum
from typing import Optional
from colorama import Fore, Style, init

# Initialize colorama for cross-platform colored output
init(autoreset=True)

_output_lock = threading.RLock()


class LogLevel(Enum):
    """Enumeration for different log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


_LEVEL_ORDER = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARNING: 2,
    LogLevel.ERROR: 3,
}

# Level applied to loggers created through get_logger()
_default_level = LogLevel.INFO


class Logger:
    """
    Logger class with colored console output and progress indicators.

    Provides structured logging with different levels, colors, and formatting
    utilities for scan operations.
    """

    LEVEL_COLORS = {
        LogLevel.DEBUG: Fore.CYAN,
        LogLevel.INFO: Fore.GREEN,
        LogLevel.WARNING: Fore.YELLOW,
        LogLevel.ERROR: Fore.RED,
    }

    LEVEL_SYMBOLS = {
        LogLevel.DEBUG: "🔍",
        LogLevel.INFO: "ℹ️",
        LogLevel.WARNING: "⚠️",
        LogLevel.ERROR: "❌",
    }

    def __init__(self, name: str = "LanScanner", min_level: Optional[LogLevel] = None):
        """
        Initialize the Logger.

        Args:
            name: Name of the logger (default: "LanScanner")
            min_level: Minimum log level to display. When omitted the
                       process-wide level set by set_log_level() applies.
        """
        self.name = name
        self._min_level = min_level
        self._progress_active = False

    @property
    def min_level(self) -> LogLevel:
        return self._min_level or _default_level

    @min_level.setter
    def min_level(self, level: LogLevel) -> None:
        self._min_level = level

    def _should_log(self, level: LogLevel) -> bool:
        """
        Check if a message should be logged based on minimum level.

        Args:
            level: Log level to check

        Returns:
            True if message should be logged, False otherwise
        """
        return _LEVEL_ORDER[level] >= _LEVEL_ORDER[self.min_level]

    def _format_timestamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    def _format_details(self, kwargs: dict) -> str:
        if not kwargs:
            return ""
        details = " | ".join([f"{k}={v}" for k, v in kwargs.items()])
        return f" {Style.DIM}({details}){Style.RESET_ALL}"

    def _emit(self, line: str, stream=None) -> None:
        with _output_lock:
            print(line, file=stream or sys.stdout, flush=True)

    def _log(self, level: LogLevel, message: str, **kwargs) -> None:
        """
        Internal logging method that handles formatting and output.

        Args:
            level: Log level
            message: Message to log
            **kwargs: Additional context rendered as key=value pairs
        """
        if not self._should_log(level):
            return

        timestamp = self._format_timestamp()
        color = self.LEVEL_COLORS[level]
        symbol = self.LEVEL_SYMBOLS[level]

        formatted_message = (
            f"{Style.DIM}[{timestamp}]{Style.RESET_ALL} "
            f"{color}{symbol} {level.value:<7}{Style.RESET_ALL} "
            f"{message}"
        )
        formatted_message += self._format_details(kwargs)

        self._emit(
            formatted_message,
            stream=sys.stdout if level != LogLevel.ERROR else sys.stderr,
        )

    def debug(self, message: str, **kwargs) -> None:
        """
        Log a debug message.

        Args:
            message: Debug message
            **kwargs: Additional context information
        """
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        """
        Log an info message.

        Args:
            message: Info message
            **kwargs: Additional context information
        """
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """
        Log a warning message.

        Args:
            message: Warning message
            **kwargs: Additional context information
        """
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(
        self, message: str, exception: Optional[Exception] = None, **kwargs
    ) -> None:
        """
        Log an error message.

        Args:
            message: Error message
            exception: Optional exception object for additional context
            **kwargs: Additional context information
        """
        if exception:
            kwargs["exception"] = f"{type(exception).__name__}: {str(exception)}"
        self._log(LogLevel.ERROR, message, **kwargs)

    def success(self, message: str, **kwargs) -> None:
        """
        Log a success message (formatted as INFO with special styling).

        Args:
            message: Success message
            **kwargs: Additional context information
        """
        if not self._should_log(LogLevel.INFO):
            return

        timestamp = self._format_timestamp()
        formatted_message = (
            f"{Style.DIM}[{timestamp}]{Style.RESET_ALL} "
            f"{Fore.GREEN}✅ SUCCESS {Style.RESET_ALL} "
            f"{Style.BRIGHT}{message}{Style.RESET_ALL}"
        )
        formatted_message += self._format_details(kwargs)
        self._emit(formatted_message)

    def section(self, title: str) -> None:
        """
        Log a section header for organizing output.

        Args:
            title: Section title
        """
        if not self._should_log(LogLevel.INFO):
            return

        separator = "=" * 60
        with _output_lock:
            print(f"\n{Fore.BLUE}{Style.BRIGHT}{separator}")
            print(f"  {title.upper()}")
            print(f"{separator}{Style.RESET_ALL}\n")

    def progress_start(self, message: str) -> None:
        """
        Start a progress indicator for long-running operations.

        Args:
            message: Progress message to display
        """
        if not self._should_log(LogLevel.INFO):
            return

        self._progress_active = True
        self._emit(self._format_progress(message))

    def progress_update(self, message: str) -> None:
        """
        Update the current progress indicator.

        Args:
            message: Updated progress message
        """
        if not self._progress_active or not self._should_log(LogLevel.INFO):
            return

        self._emit(self._format_progress(message))

    def progress_end(self, final_message: Optional[str] = None) -> None:
        """
        End the current progress indicator.

        Args:
            final_message: Optional final message to display
        """
        if not self._progress_active:
            return

        self._progress_active = False

        if final_message:
            self.success(final_message)

    def _format_progress(self, message: str) -> str:
        timestamp = self._format_timestamp()
        return (
            f"{Style.DIM}[{timestamp}]{Style.RESET_ALL} "
            f"{Fore.BLUE}⏳ PROGRESS{Style.RESET_ALL} "
            f"{message}..."
        )

    def table_header(self, headers: list[str], widths: list[int]) -> None:
        """
        Print a formatted table header.

        Args:
            headers: List of header names
            widths: List of column widths
        """
        if not self._should_log(LogLevel.INFO):
            return

        header_row = " | ".join(
            [f"{header:<{width}}" for header, width in zip(headers, widths)]
        )
        separator = "-+-".join(["-" * width for width in widths])
        with _output_lock:
            print(f"{Style.BRIGHT}{header_row}{Style.RESET_ALL}")
            print(f"{Style.DIM}{separator}{Style.RESET_ALL}")

    def table_row(
        self, values: list[str], widths: list[int], highlight: bool = False
    ) -> None:
        """
        Print a formatted table row.

        Args:
            values: List of values to display
            widths: List of column widths
            highlight: Whether to highlight this row
        """
        if not self._should_log(LogLevel.INFO):
            return

        row = " | ".join(
            [f"{str(value):<{width}}" for value, width in zip(values, widths)]
        )

        if highlight:
            self._emit(f"{Style.BRIGHT}{row}{Style.RESET_ALL}")
        else:
            self._emit(row)

    def scan_info(self, segment: str, target_count: int, strategy: str, probes: list[str]) -> None:
        """
        Display the parameters of a scan about to start.

        Args:
            segment: Logical network segment label
            target_count: Number of addresses to be probed
            strategy: Name of the scheduling strategy
            probes: Names of the probes taking part
        """
        if not self._should_log(LogLevel.INFO):
            return

        with _output_lock:
            print(f"\n{Fore.CYAN}{Style.BRIGHT}🌐 SCAN CONFIGURATION{Style.RESET_ALL}")
            print(f"  Segment:   {Style.BRIGHT}{segment}{Style.RESET_ALL}")
            print(f"  Targets:   {Style.BRIGHT}{target_count}{Style.RESET_ALL}")
            print(f"  Strategy:  {Style.BRIGHT}{strategy}{Style.RESET_ALL}")
            print(f"  Probes:    {Style.BRIGHT}{', '.join(probes)}{Style.RESET_ALL}\n")


# Global logger instance
logger = Logger()


def set_log_level(level: LogLevel) -> None:
    """
    Set the process-wide log level.

    Loggers created without an explicit min_level follow this setting.

    Args:
        level: Minimum log level to display
    """
    global _default_level
    _default_level = level


def get_logger(name: str = "LanScanner") -> Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    return Logger(name)
