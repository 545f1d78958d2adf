"""
Error handling and validation system for the LAN scanner.

This module defines the failure taxonomy shared by all probes, the exception
hierarchy, a thread-safe ErrorHandler that classifies and counts probe
failures, and a ToolValidator that checks the external utilities some probes
shell out to.

Probe-level failures (capability unavailable, timeout, protocol error,
unreachable host) never reach the caller: they are classified, counted and
collapsed to "no result". Only scan-halting conditions propagate.
"""

import errno
import shutil
import socket
import subprocess
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from xml.etree.ElementTree import ParseError

from .logger import Logger, get_logger


class ErrorType(Enum):
    """Enumeration for different types of errors."""
    CAPABILITY_UNAVAILABLE = "capability_unavailable"
    TIMEOUT = "timeout"
    PROTOCOL_ERROR = "protocol_error"
    UNREACHABLE = "unreachable"
    CONFIGURATION_ERROR = "configuration_error"
    ABORTED = "aborted"


class ErrorSeverity(Enum):
    """Enumeration for error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """
    Context information for error handling.

    Attributes:
        error_type: Type of error that occurred
        severity: Severity level of the error
        operation: Operation that was being performed when error occurred
        component: Component/module where error occurred
        additional_info: Additional context information (target, tool name...)
    """
    error_type: ErrorType
    severity: ErrorSeverity
    operation: str
    component: str
    additional_info: Dict[str, Any] = field(default_factory=dict)


class LanScannerError(Exception):
    """Base exception class for the LAN scanner."""

    error_type = ErrorType.UNREACHABLE

    def __init__(self, message: str, error_context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.error_context = error_context


class CapabilityUnavailableError(LanScannerError):
    """Raised when the OS lacks a capability a probe needs (raw sockets, a tool)."""
    error_type = ErrorType.CAPABILITY_UNAVAILABLE


class ProbeTimeoutError(LanScannerError):
    """Raised when a probe exhausts its time budget."""
    error_type = ErrorType.TIMEOUT


class ProtocolParseError(LanScannerError):
    """Raised when a reply or command output cannot be interpreted."""
    error_type = ErrorType.PROTOCOL_ERROR


class TargetUnreachableError(LanScannerError):
    """Raised when a target refuses or ignores a probe."""
    error_type = ErrorType.UNREACHABLE


class ScanConfigurationError(LanScannerError):
    """Raised when a scan cannot start: no enabled probes, no valid targets, bad settings."""
    error_type = ErrorType.CONFIGURATION_ERROR


# Errors that mean "the capability is missing" rather than "the host is silent"
_CAPABILITY_ERRNOS = {errno.EPERM, errno.EACCES, errno.EAFNOSUPPORT, errno.EPROTONOSUPPORT}


class ErrorHandler:
    """
    Centralized classification and bookkeeping of probe failures.

    The handler maps arbitrary exceptions onto the ErrorType taxonomy, keeps
    per-type counters for diagnostics and logs each failure at a level
    derived from its severity. It is safe to share between worker threads.
    """

    def __init__(self, logger: Optional[Logger] = None):
        """
        Initialize the ErrorHandler.

        Args:
            logger: Logger instance for error reporting
        """
        self.logger = logger or get_logger(__name__)
        self._lock = threading.Lock()
        self.error_statistics: Dict[ErrorType, int] = {error_type: 0 for error_type in ErrorType}

    def classify(self, error: BaseException) -> ErrorType:
        """
        Map an exception onto the failure taxonomy.

        Args:
            error: The exception raised by a probe

        Returns:
            ErrorType describing the failure
        """
        if isinstance(error, LanScannerError):
            return error.error_type
        if isinstance(error, (socket.timeout, TimeoutError, FutureTimeoutError, subprocess.TimeoutExpired)):
            return ErrorType.TIMEOUT
        if isinstance(error, (PermissionError, FileNotFoundError, NotImplementedError)):
            return ErrorType.CAPABILITY_UNAVAILABLE
        if isinstance(error, (ValueError, UnicodeError, ParseError, KeyError, IndexError)):
            return ErrorType.PROTOCOL_ERROR
        if isinstance(error, OSError) and error.errno in _CAPABILITY_ERRNOS:
            return ErrorType.CAPABILITY_UNAVAILABLE
        return ErrorType.UNREACHABLE

    def handle_error(self, error: BaseException, context: ErrorContext) -> ErrorType:
        """
        Record an error and log it according to its severity.

        Args:
            error: The exception that occurred
            context: Error context information

        Returns:
            The error type that was recorded
        """
        with self._lock:
            self.error_statistics[context.error_type] += 1

        self._log_error(error, context)

        if context.error_type == ErrorType.CAPABILITY_UNAVAILABLE and context.severity in (
            ErrorSeverity.HIGH, ErrorSeverity.CRITICAL
        ):
            self._suggest_capability_solutions(context)
        elif context.error_type == ErrorType.CONFIGURATION_ERROR:
            self._suggest_configuration_fixes()

        return context.error_type

    def record_probe_failure(self, error: BaseException, component: str, target: str) -> ErrorType:
        """
        Classify and record an exception raised while probing one target.

        Args:
            error: The exception raised by the probe
            component: Name of the probe
            target: Address that was being probed

        Returns:
            The error type the exception was classified as
        """
        context = ErrorContext(
            error_type=self.classify(error),
            severity=ErrorSeverity.LOW,
            operation="probe_one",
            component=component,
            additional_info={"target": target},
        )
        return self.handle_error(error, context)

    def get_statistics(self) -> Dict[str, int]:
        """Return a snapshot of the failure counters keyed by error type value."""
        with self._lock:
            return {error_type.value: count for error_type, count in self.error_statistics.items()}

    def reset_statistics(self) -> None:
        with self._lock:
            for error_type in ErrorType:
                self.error_statistics[error_type] = 0

    def _log_error(self, error: BaseException, context: ErrorContext) -> None:
        """
        Log error information with appropriate detail level.

        Args:
            error: The exception that occurred
            context: Error context information
        """
        error_msg = f"Error in {context.component}.{context.operation}: {str(error) or type(error).__name__}"

        if context.severity == ErrorSeverity.CRITICAL:
            self.logger.error(error_msg, exception=error, **context.additional_info)
        elif context.severity == ErrorSeverity.HIGH:
            self.logger.error(error_msg, **context.additional_info)
        elif context.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(error_msg, **context.additional_info)
        else:
            self.logger.debug(error_msg, kind=context.error_type.value, **context.additional_info)

    def _suggest_capability_solutions(self, context: ErrorContext) -> None:
        """Provide hints for missing privileges or tools."""
        self.logger.info("Capability error solutions:")
        self.logger.info("  • Run with elevated privileges for raw ICMP: sudo python -m lan_scanner")
        self.logger.info("  • Install the missing network utilities (see --check)")
        self.logger.info("  • Disable the probe with --disable if the capability is not needed")

    def _suggest_configuration_fixes(self) -> None:
        """Provide configuration error solutions."""
        self.logger.info("Configuration error solutions:")
        self.logger.info("  • Enable at least one probe (--enable icmp) or pick a preset")
        self.logger.info("  • Check YAML syntax and indentation in probes.yml")
        self.logger.info("  • Verify target addresses and networks are valid")


class ToolValidator:
    """
    Validator for the external utilities used by subprocess-backed probes.

    Probes degrade gracefully when a tool is missing; the validator exists so
    the CLI can tell the operator which probes will be blind and how to fix it.
    """

    TOOL_PACKAGES = {
        "ping": "iputils-ping",
        "ping6": "iputils-ping",
        "arp": "net-tools",
        "ip": "iproute2",
        "nslookup": "dnsutils",
        "dig": "dnsutils",
        "ndp": "(bundled with macOS/BSD)",
    }

    # Probes that need at least one tool from each group
    PROBE_TOOLS = {
        "icmp": [["ping"]],
        "arp": [["ping"], ["ip", "arp"]],
        "dns_reverse": [],
        "ipv6": [["ping", "ping6"], ["ip", "ndp"]],
    }

    def __init__(self, error_handler: ErrorHandler):
        """
        Initialize the ToolValidator.

        Args:
            error_handler: ErrorHandler instance for error management
        """
        self.error_handler = error_handler
        self.logger = error_handler.logger

    def validate_all_tools(self) -> Tuple[bool, List[str]]:
        """
        Validate all known external tools.

        Returns:
            Tuple of (all_valid, missing_tools)
        """
        missing_tools = [tool for tool in self.TOOL_PACKAGES if not self.validate_tool(tool)]
        return not missing_tools, missing_tools

    def validate_tool(self, tool_name: str) -> bool:
        """
        Check whether a tool is available on PATH.

        Args:
            tool_name: Name of the tool to validate

        Returns:
            bool: True if tool is available, False otherwise
        """
        tool_path = shutil.which(tool_name)
        if tool_path:
            self.logger.debug(f"Found {tool_name} at: {tool_path}")
            return True
        self.logger.debug(f"Tool {tool_name} not found in PATH")
        return False

    def degraded_probes(self) -> Dict[str, List[str]]:
        """
        Report which probes lack a tool they depend on.

        Returns:
            Mapping of probe name to the tool groups that are entirely missing
        """
        degraded: Dict[str, List[str]] = {}
        for probe_name, groups in self.PROBE_TOOLS.items():
            missing = [
                "/".join(group) for group in groups
                if not any(shutil.which(tool) for tool in group)
            ]
            if missing:
                degraded[probe_name] = missing
        return degraded

    def suggest_installation(self, tool_name: str) -> None:
        package = self.TOOL_PACKAGES.get(tool_name)
        if package:
            self.logger.info(f"  • {tool_name}: install package {package}")
        else:
            self.logger.info(f"  • Please install {tool_name} using your system's package manager")
