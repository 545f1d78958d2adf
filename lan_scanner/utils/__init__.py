"""
Utility functions and helper classes.
"""

from .logger import Logger, LogLevel, logger, set_log_level, get_logger
from .error_handler import (
    ErrorHandler, ToolValidator, ErrorContext, ErrorType, ErrorSeverity,
    LanScannerError, CapabilityUnavailableError, ProbeTimeoutError,
    ProtocolParseError, TargetUnreachableError, ScanConfigurationError
)
from .command_runner import CommandRunner, CommandOutput
from . import command_parsers
from . import network_utils

__all__ = [
    'Logger',
    'LogLevel',
    'logger',
    'set_log_level',
    'get_logger',
    'ErrorHandler',
    'ToolValidator',
    'ErrorContext',
    'ErrorType',
    'ErrorSeverity',
    'LanScannerError',
    'CapabilityUnavailableError',
    'ProbeTimeoutError',
    'ProtocolParseError',
    'TargetUnreachableError',
    'ScanConfigurationError',
    'CommandRunner',
    'CommandOutput',
    'command_parsers',
    'network_utils'
]
