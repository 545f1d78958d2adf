"""
Subprocess adapter used by probes that rely on operating-system utilities.

Every invocation carries an explicit timeout. A missing executable, an
expired timeout or an OS error yields ``None`` instead of an exception so
callers can treat the tool as silent; the reason is logged at debug level.
"""

import platform
import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from .logger import Logger, get_logger

MIN_PING_WAIT = 0.05


@dataclass(frozen=True)
class CommandOutput:
    """
    Captured result of one external command.

    Attributes:
        returncode: Process exit status
        stdout: Decoded standard output
        stderr: Decoded standard error
    """
    returncode: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def text(self) -> str:
        return self.stdout + self.stderr


class CommandRunner:
    """Runs short-lived external commands with a hard timeout."""

    def __init__(self, logger: Optional[Logger] = None):
        self.logger = logger or get_logger(__name__)

    def available(self, tool: str) -> bool:
        return shutil.which(tool) is not None

    def run(self, args: List[str], timeout: float) -> Optional[CommandOutput]:
        """
        Execute a command and capture its output.

        Args:
            args: Command and arguments
            timeout: Seconds before the process is killed

        Returns:
            CommandOutput, or None when the command could not run to completion
        """
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=timeout,
                errors="replace",
            )
        except subprocess.TimeoutExpired:
            self.logger.debug(f"Command timed out: {' '.join(args)}", timeout=timeout)
            return None
        except FileNotFoundError:
            self.logger.debug(f"Command not found: {args[0]}")
            return None
        except OSError as e:
            self.logger.debug(f"Command failed to start: {' '.join(args)}", error=e)
            return None

        return CommandOutput(completed.returncode, completed.stdout or "", completed.stderr or "")


def ping_command(address: str, timeout: float, system: Optional[str] = None) -> List[str]:
    """
    Build a single-echo ping command line for the current platform.

    Args:
        address: IPv4 or IPv6 address (zone suffix allowed)
        timeout: Seconds to wait for the reply
        system: Platform name override (``platform.system()`` when omitted)

    Returns:
        Command and arguments
    """
    system = (system or platform.system()).lower()
    ipv6 = ":" in address
    timeout_ms = max(1, int(timeout * 1000))

    if system == "windows":
        args = ["ping", "-n", "1", "-w", str(timeout_ms)]
        if ipv6:
            args.append("-6")
        return args + [address]

    if system == "darwin":
        if ipv6:
            return ["ping6", "-c", "1", address]
        return ["ping", "-c", "1", "-W", str(timeout_ms), address]

    # iputils takes fractional seconds for -W
    args = ["ping", "-c", "1", "-W", f"{max(MIN_PING_WAIT, round(timeout, 2)):g}"]
    if ipv6:
        args.append("-6")
    return args + [address]
