"""
Main entry point for the LAN scanner.

This module provides the command-line interface for the scanning engine,
including argument parsing, pre-flight checks, and graceful shutdown handling.
"""

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .config.config_loader import ConfigLoader, ScanPreset
from .core.data_models import ProbeKind, ProbeResult, ScanReport, ScanStatus, ScanStrategy
from .core.scan_orchestrator import ScanOrchestrator
from .utils.error_handler import (
    ErrorContext,
    ErrorHandler,
    ErrorSeverity,
    ErrorType,
    ScanConfigurationError,
    ToolValidator,
)
from .utils.logger import LogLevel, get_logger, set_log_level
from .utils.network_utils import expand_targets

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

RESULT_COLUMNS = ["IP Address", "Probe", "Latency", "Hostname", "Details"]
RESULT_WIDTHS = [39, 11, 9, 28, 40]


class LanScannerApp:
    """
    Main application class for the LAN scanner.

    Handles CLI interface, pre-flight checks, and application lifecycle.
    """

    def __init__(self):
        """Initialize the application."""
        self.logger = get_logger(__name__)
        self.error_handler = ErrorHandler(self.logger)
        self.orchestrator: Optional[ScanOrchestrator] = None
        self.abort_event = threading.Event()

        # Register signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum: int, frame) -> None:
        """
        Handle shutdown signals gracefully.

        The first signal asks the running scan to stop issuing probes; a
        second one terminates immediately.

        Args:
            signum: Signal number
            frame: Current stack frame
        """
        signal_names = {signal.SIGINT: "SIGINT", signal.SIGTERM: "SIGTERM"}
        signal_name = signal_names.get(signum, f"Signal {signum}")

        if not self.abort_event.is_set():
            self.logger.warning(f"Received {signal_name} - stopping scan after in-flight probes...")
            self.abort_event.set()
        else:
            self.logger.error("Force shutdown requested - terminating immediately")
            sys.exit(EXIT_INTERRUPTED)

    def _perform_preflight_checks(self, enabled: Dict[ProbeKind, bool]) -> bool:
        """
        Check the external tools the enabled probes depend on.

        Args:
            enabled: Enabled flag per probe kind

        Returns:
            bool: True if every enabled probe has its tools, False otherwise
        """
        self.logger.section("PRE-FLIGHT CHECKS")
        validator = ToolValidator(self.error_handler)

        _all_present, missing_tools = validator.validate_all_tools()
        degraded = {
            name: groups for name, groups in validator.degraded_probes().items()
            if enabled.get(ProbeKind(name), False)
        }

        for name, groups in degraded.items():
            self.logger.error(f"Probe '{name}' is missing required tools: {', '.join(groups)}")
        if missing_tools:
            self.logger.info("Installation suggestions:")
            for tool in missing_tools:
                validator.suggest_installation(tool)

        self.logger.info("Checking Python dependencies...")
        missing_packages = self._check_python_dependencies()
        if missing_packages:
            self.logger.error(f"Missing Python dependencies: {', '.join(missing_packages)}")
            self.logger.info("Install missing dependencies with: pip install -e .")

        all_checks_passed = not degraded and not missing_packages
        if all_checks_passed:
            self.logger.success("All pre-flight checks passed")
        else:
            self.logger.error("Some pre-flight checks failed - see messages above")
        return all_checks_passed

    def _check_python_dependencies(self) -> List[str]:
        """
        Check if required Python packages are importable.

        Returns:
            list: List of missing package names
        """
        required_packages = ["colorama", "yaml", "scapy", "zeroconf", "requests", "psutil"]

        missing_packages = []
        for package in required_packages:
            try:
                __import__(package)
                self.logger.debug(f"Python package {package} is available")
            except ImportError:
                missing_packages.append(package)
                self.logger.debug(f"Python package {package} is missing")
        return missing_packages

    def _build_orchestrator(self, args: argparse.Namespace) -> ScanOrchestrator:
        config_dir = args.config_dir
        if config_dir and not Path(config_dir).is_dir():
            raise ScanConfigurationError(f"Configuration directory does not exist: {config_dir}")

        settings = ConfigLoader(config_dir).load()
        orchestrator = ScanOrchestrator(settings=settings, error_handler=self.error_handler)

        if args.preset:
            orchestrator.apply_preset(args.preset)
        for name in args.enable or []:
            orchestrator.set_probe_enabled(ProbeKind(name), True)
        for name in args.disable or []:
            orchestrator.set_probe_enabled(ProbeKind(name), False)
        return orchestrator

    def _print_availability(self, orchestrator: ScanOrchestrator) -> None:
        self.logger.section("PROBE AVAILABILITY")
        availability = orchestrator.check_availability()
        widths = [16, 8, 10, 60]
        self.logger.table_header(["Probe", "Enabled", "Available", "Description"], widths)
        for description in orchestrator.describe_probes():
            kind = ProbeKind(description["kind"])
            self.logger.table_row(
                [
                    description["name"],
                    "yes" if description["enabled"] else "no",
                    "yes" if availability.get(kind) else "no",
                    description["description"],
                ],
                widths,
                highlight=bool(description["enabled"] and availability.get(kind)),
            )

    def _print_results(self, report: ScanReport) -> None:
        self.logger.section("SCAN RESULTS")
        if not report.results:
            self.logger.info("No active hosts detected")
            return

        self.logger.table_header(RESULT_COLUMNS, RESULT_WIDTHS)
        for address in report.active_hosts:
            for result in report.results_for(address):
                self.logger.table_row(
                    [
                        result.target,
                        result.kind.value,
                        f"{result.latency_ms:.0f}ms",
                        result.hostname or "",
                        _summarize(result),
                    ],
                    RESULT_WIDTHS,
                )

    def _print_diagnostics(self, orchestrator: ScanOrchestrator) -> None:
        self.logger.section("PERFORMANCE DIAGNOSTICS")
        environment = orchestrator.assess_network_environment()
        self.logger.info(
            f"Network quality: {environment['quality'].value}",
            avg_response=f"{environment['avg_response_time']:.1f}ms",
            success_rate=f"{environment['success_rate']:.1f}%",
            samples=environment["total_samples"],
        )

        widths = [12, 12, 10, 8, 36]
        self.logger.table_header(["Probe", "Avg (ms)", "Success", "Samples", "Recommendation"], widths)
        for kind, stats in orchestrator.get_performance_recommendations().items():
            self.logger.table_row(
                [
                    kind.value,
                    f"{stats['avg_response_time']:.1f}",
                    f"{stats['success_rate']:.1f}%",
                    str(stats["sample_size"]),
                    stats["recommendation"].value,
                ],
                widths,
            )

        failures = {name: count for name, count in self.error_handler.get_statistics().items() if count}
        if failures:
            self.logger.info("Probe failures by type", **failures)

    def run(self, args: argparse.Namespace) -> int:
        """
        Run the LAN scanner application.

        Args:
            args: Parsed command line arguments

        Returns:
            int: Exit code (0 for success, non-zero for failure)
        """
        try:
            self.orchestrator = self._build_orchestrator(args)

            if args.check:
                self._print_availability(self.orchestrator)
                return EXIT_SUCCESS

            targets = expand_targets(args.targets)

            if not self._perform_preflight_checks(self.orchestrator.enabled_map()):
                if not args.skip_checks:
                    self.logger.error("Pre-flight checks failed. Use --skip-checks to bypass.")
                    return EXIT_FAILURE
                self.logger.warning("Continuing despite failed pre-flight checks as requested")

            self.logger.progress_start(f"Scanning {len(targets)} addresses")
            report = self.orchestrator.scan(
                targets,
                segment=args.segment,
                strategy=args.strategy,
                on_progress=self._progress_reporter(),
                abort_event=self.abort_event,
            )
            self.logger.progress_end()

            self._print_results(report)
            if args.diagnostics:
                self._print_diagnostics(self.orchestrator)

            if report.status is ScanStatus.ABORTED:
                self.logger.warning("Scan interrupted by user")
                return EXIT_INTERRUPTED
            if report.status in (ScanStatus.COMPLETED, ScanStatus.PARTIAL):
                self.logger.success(f"Detected {len(report.active_hosts)} active hosts")
                return EXIT_SUCCESS
            self.logger.error("Scan failed", errors="; ".join(report.errors))
            return EXIT_FAILURE

        except ScanConfigurationError as e:
            self.error_handler.handle_error(e, _configuration_context(e))
            return EXIT_CONFIG_ERROR
        except ValueError as e:
            self.logger.error(f"Invalid target specification: {e}")
            return EXIT_CONFIG_ERROR
        except KeyboardInterrupt:
            self.logger.warning("Scan interrupted by user")
            return EXIT_INTERRUPTED

    def _progress_reporter(self):
        state = {"step": -1}

        def report(fraction: float) -> None:
            # Print at most every 10%
            step = int(fraction * 10)
            if step > state["step"]:
                state["step"] = step
                self.logger.progress_update(f"{fraction * 100:.0f}% complete")

        return report


def _summarize(result: ProbeResult) -> str:
    metadata = result.metadata
    parts = []
    if result.mac_address:
        parts.append(result.mac_address)
    if metadata.get("vendor"):
        parts.append(str(metadata["vendor"]))
    if result.open_ports:
        parts.append("ports " + ",".join(str(port) for port in result.open_ports))
    if metadata.get("device_type"):
        parts.append(str(metadata["device_type"]))
    if metadata.get("ttl"):
        parts.append(f"ttl={metadata['ttl']}")
    return "; ".join(parts)


def _configuration_context(error: ScanConfigurationError) -> ErrorContext:
    return ErrorContext(
        error_type=ErrorType.CONFIGURATION_ERROR,
        severity=ErrorSeverity.HIGH,
        operation="configure",
        component="LanScannerApp",
        additional_info={"reason": type(error).__name__},
    )


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the command line argument parser.

    Returns:
        argparse.ArgumentParser: Configured argument parser
    """
    probe_names = [kind.value for kind in ProbeKind]

    parser = argparse.ArgumentParser(
        prog="lan_scanner",
        description="LAN Scanner - Multi-protocol host discovery for local networks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m lan_scanner 192.168.1.0/24                       # Smart scan of a /24
  python -m lan_scanner 192.168.1.1-50 --strategy turbo      # Turbo scan of a range
  python -m lan_scanner 10.0.0.0/24 --preset full            # Every probe
  python -m lan_scanner 10.0.0.5 --enable mdns --disable arp # Adjust the probe set
  python -m lan_scanner --check                              # Show probe availability
  python -m lan_scanner 192.168.1.0/24 --diagnostics         # Print performance analysis
        """
    )

    parser.add_argument(
        "targets",
        nargs="*",
        help="Addresses, CIDR networks (192.168.1.0/24) or ranges (192.168.1.10-20)"
    )

    parser.add_argument(
        "--segment",
        default="",
        help="Network segment label attached to every result"
    )

    parser.add_argument(
        "--strategy",
        choices=[strategy.value for strategy in ScanStrategy],
        help="Scheduling strategy. Defaults to the configured default_strategy (smart)"
    )

    parser.add_argument(
        "--preset",
        choices=[preset.value for preset in ScanPreset],
        help="Enable exactly the probes of a preset"
    )

    parser.add_argument(
        "--enable",
        action="append",
        choices=probe_names,
        metavar="PROBE",
        help=f"Enable a probe (repeatable): {', '.join(probe_names)}"
    )

    parser.add_argument(
        "--disable",
        action="append",
        choices=probe_names,
        metavar="PROBE",
        help="Disable a probe (repeatable)"
    )

    parser.add_argument(
        "--config-dir",
        type=str,
        help="Directory containing probes.yml. Defaults to lan_scanner/config/"
    )

    parser.add_argument(
        "--check",
        action="store_true",
        help="Show which probes are available on this host and exit"
    )

    parser.add_argument(
        "--skip-checks",
        action="store_true",
        help="Continue even if pre-flight tool checks fail"
    )

    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="Print per-probe performance recommendations after the scan"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"LAN Scanner {__version__}"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the LAN scanner.

    Args:
        argv: Command line arguments (sys.argv when omitted)

    Returns:
        int: Exit code (0 for success, non-zero for failure)
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if not args.targets and not args.check:
        parser.error("at least one target is required unless --check is given")

    # Configure logging level based on verbose flag
    if args.verbose:
        set_log_level(LogLevel.DEBUG)

    app = LanScannerApp()
    return app.run(args)


if __name__ == "__main__":
    sys.exit(main())
