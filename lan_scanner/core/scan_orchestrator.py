"""
Scan Orchestrator for the LAN scanner.

This module provides the ScanOrchestrator class that owns the probe registry,
the enabled state and tuning of every probe, and the six scheduling
strategies that fan probes out over a target list. Results and progress are
streamed to the caller through callbacks; every scan returns a ScanReport.
"""

import queue
import threading
import time
from contextlib import ExitStack, contextmanager
from concurrent.futures import ThreadPoolExecutor, as_completed, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Union

from .concurrency import FifoSemaphore
from .data_models import (
    ProbeConfig,
    ProbeKind,
    ProbeResult,
    ScanPriority,
    ScanReport,
    ScanStatus,
    ScanStrategy,
    ScanTarget,
    ScanTask,
)
from .performance import PerformanceTracker
from .scan_queue import TaskPriorityQueue, classify_priority
from ..config.config_loader import ScannerSettings, ScanPreset, default_probe_config, preset_enabled_map
from ..probes.arp_probe import ARPProbe
from ..probes.base_probe import BaseProbe, BatchProgress, ProgressCallback, ResultCallback
from ..probes.dns_probe import ReverseDNSProbe
from ..probes.icmp_probe import ICMPProbe
from ..probes.ipv6_probe import IPv6Probe
from ..probes.mdns_probe import MDNSProbe
from ..probes.tcp_probe import TCPProbe
from ..probes.upnp_probe import UPnPProbe
from ..utils.command_runner import CommandRunner
from ..utils.error_handler import ErrorContext, ErrorHandler, ErrorSeverity, ScanConfigurationError
from ..utils.logger import Logger, get_logger
from ..utils.network_utils import is_valid_ip, neighbor_addresses

FAST_PROBE_KINDS = (ProbeKind.ICMP, ProbeKind.TCP)

SMART_PHASE_ONE_SHARE = 0.3
ULTRA_FAST_TIMEOUT = 0.4
ULTRA_FAST_TARGET_DEADLINE = 0.5
NEIGHBOR_RADIUS = 3

# Sentinel closing a stream() queue
_STREAM_END = object()


def default_probes(
    logger: Optional[Logger] = None,
    error_handler: Optional[ErrorHandler] = None,
    runner: Optional[CommandRunner] = None,
) -> List[BaseProbe]:
    """Instantiate the seven protocol probes with shared collaborators."""
    probe_classes = (ICMPProbe, TCPProbe, ARPProbe, MDNSProbe, UPnPProbe, ReverseDNSProbe, IPv6Probe)
    return [
        probe_class(logger=logger, error_handler=error_handler, runner=runner)
        for probe_class in probe_classes
    ]


@dataclass
class _ScanSession:
    """
    State of one running scan.

    Holds the config-bound probe copies chosen when the scan started, so
    strategies never observe later changes to the orchestrator.
    """
    probes: List[BaseProbe]
    abort_event: threading.Event
    on_progress: Optional[Callable[[float], None]] = None
    on_result: Optional[ResultCallback] = None
    results: List[ProbeResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    progress: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def aborted(self) -> bool:
        return self.abort_event.is_set()

    def emit(self, result: ProbeResult) -> None:
        with self.lock:
            self.results.append(result)
            if self.on_result:
                self.on_result(result)

    def report_progress(self, fraction: float) -> None:
        with self.lock:
            fraction = min(1.0, max(self.progress, fraction))
            if fraction == self.progress and fraction > 0.0:
                return
            self.progress = fraction
            if self.on_progress:
                self.on_progress(fraction)

    def record_error(self, message: str) -> None:
        with self.lock:
            self.errors.append(message)

    def detected_addresses(self) -> Set[str]:
        with self.lock:
            return {result.target for result in self.results}


class ScanOrchestrator:
    """
    Coordinates the protocol probes across a target list.

    The orchestrator keeps one registered probe per ProbeKind together with
    its current ProbeConfig (the enabled flag included). Each scan takes a
    snapshot of that state, optionally adjusted per call, so scans may run
    concurrently and configuration changes apply from the next scan on.
    """

    def __init__(
        self,
        probes: Optional[Iterable[BaseProbe]] = None,
        settings: Optional[ScannerSettings] = None,
        logger: Optional[Logger] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        """
        Initialize the scan orchestrator.

        Args:
            probes: Probes to register; the seven standard probes when omitted
            settings: Engine settings and probe configurations (defaults when omitted)
            logger: Logger instance for scan output
            error_handler: Shared handler counting probe failures
        """
        self.logger = logger or get_logger(__name__)
        self.error_handler = error_handler or ErrorHandler(self.logger)
        self.settings = settings or ScannerSettings()
        self.performance = PerformanceTracker()

        self._lock = threading.RLock()
        self._probes: Dict[ProbeKind, BaseProbe] = {}
        self._configs: Dict[ProbeKind, ProbeConfig] = {}

        if probes is None:
            probes = default_probes(error_handler=self.error_handler)
        for probe in probes:
            self.register_probe(probe)

        self._strategies: Dict[ScanStrategy, Callable[[_ScanSession, List[ScanTarget]], None]] = {
            ScanStrategy.SEQUENTIAL: self._run_sequential,
            ScanStrategy.PARALLEL: self._run_parallel,
            ScanStrategy.SMART: self._run_smart,
            ScanStrategy.TURBO: self._run_parallel,
            ScanStrategy.ULTRA_FAST: self._run_ultra_fast,
            ScanStrategy.BREADTH_FIRST: self._run_breadth_first,
        }

    # Registry and configuration

    def register_probe(self, probe: BaseProbe) -> None:
        """
        Register a probe, replacing any probe of the same kind.

        The probe's configuration comes from the settings when they define
        one for its kind, otherwise from the probe itself. A probe constructed
        with its own configuration keeps it when the settings only carry the
        built-in default for that kind.
        """
        config = self.settings.probes.get(probe.kind)
        customized = probe.config != probe.DEFAULT_CONFIG
        if config is None or (customized and config == default_probe_config(probe.kind)):
            config = probe.config
        elif customized and config != probe.config:
            self.logger.debug(f"Settings replace the constructor configuration of {probe.display_name}")
        with self._lock:
            self._probes[probe.kind] = probe
            self._configs[probe.kind] = config

    @property
    def probes(self) -> List[BaseProbe]:
        """Registered probes ordered by priority."""
        with self._lock:
            return sorted(self._probes.values(), key=lambda probe: probe.priority)

    def get_probe(self, kind: ProbeKind) -> BaseProbe:
        with self._lock:
            return self._probes[self._require_kind(kind)]

    def get_probe_config(self, kind: ProbeKind) -> ProbeConfig:
        with self._lock:
            return self._configs[self._require_kind(kind)]

    def set_probe_config(self, kind: ProbeKind, config: ProbeConfig) -> None:
        with self._lock:
            self._configs[self._require_kind(kind)] = config

    def set_probe_enabled(self, kind: ProbeKind, enabled: bool) -> None:
        with self._lock:
            kind = self._require_kind(kind)
            self._configs[kind] = self._configs[kind].replace(enabled=enabled)

    def is_probe_enabled(self, kind: ProbeKind) -> bool:
        return self.get_probe_config(kind).enabled

    def enabled_map(self) -> Dict[ProbeKind, bool]:
        with self._lock:
            return {kind: config.enabled for kind, config in self._configs.items()}

    def apply_enabled_map(self, enabled: Dict[ProbeKind, bool]) -> None:
        """Set the enabled flag of every registered probe named in the map."""
        with self._lock:
            for kind, flag in enabled.items():
                if kind in self._configs:
                    self._configs[kind] = self._configs[kind].replace(enabled=flag)

    def reset_enabled_state(self) -> None:
        """Enable every registered probe."""
        self.apply_enabled_map({kind: True for kind in ProbeKind})

    def apply_preset(self, preset: Union[ScanPreset, str]) -> Dict[ProbeKind, bool]:
        """
        Enable exactly the probes of a preset.

        Args:
            preset: Preset or its name

        Returns:
            The resulting enabled map

        Raises:
            ScanConfigurationError: If the preset name is unknown
        """
        if not isinstance(preset, ScanPreset):
            try:
                preset = ScanPreset(preset)
            except ValueError:
                raise ScanConfigurationError(f"Unknown preset: {preset}")
        self.apply_enabled_map(preset_enabled_map(preset))
        self.logger.info(f"Applied preset '{preset.value}'")
        return self.enabled_map()

    def describe_probes(self) -> List[Dict[str, object]]:
        """Return name, priority, description, enabled flag and config per probe."""
        descriptions = []
        for probe in self.probes:
            config = self.get_probe_config(probe.kind)
            description = probe.with_config(config).describe()
            description["enabled"] = config.enabled
            descriptions.append(description)
        return descriptions

    def check_availability(
        self, kinds: Optional[Iterable[ProbeKind]] = None
    ) -> Dict[ProbeKind, bool]:
        """
        Check every probe's OS capability in parallel.

        Each check is bounded by the probe's AVAILABILITY_TIMEOUT; a check
        that overruns or raises counts as unavailable.

        Args:
            kinds: Probes to check (all registered probes when omitted)

        Returns:
            Mapping of probe kind to availability
        """
        with self._lock:
            kinds = self._probes if kinds is None else kinds
            selected = [self._probes[kind] for kind in kinds if kind in self._probes]
        if not selected:
            return {}

        availability: Dict[ProbeKind, bool] = {}
        executor = ThreadPoolExecutor(max_workers=len(selected), thread_name_prefix="availability")
        try:
            futures = {executor.submit(probe.is_available): probe for probe in selected}
            deadline = max(probe.AVAILABILITY_TIMEOUT for probe in selected)
            done, not_done = wait(futures, timeout=deadline)
            for future in done:
                probe = futures[future]
                try:
                    availability[probe.kind] = bool(future.result())
                except Exception as e:
                    self.error_handler.record_probe_failure(e, probe.display_name, "availability check")
                    availability[probe.kind] = False
            for future in not_done:
                probe = futures[future]
                self.logger.debug(f"{probe.display_name} availability check timed out")
                availability[probe.kind] = False
        finally:
            executor.shutdown(wait=False)
        return availability

    def get_performance_recommendations(self):
        return self.performance.get_recommendations()

    def assess_network_environment(self):
        return self.performance.assess_network()

    # Scanning

    def scan(
        self,
        targets: Iterable[str],
        segment: str = "",
        strategy: Union[ScanStrategy, str, None] = None,
        config_overrides: Optional[Dict[ProbeKind, ProbeConfig]] = None,
        enabled: Optional[Dict[ProbeKind, bool]] = None,
        on_progress: Optional[Callable[[float], None]] = None,
        on_result: Optional[ResultCallback] = None,
        abort_event: Optional[threading.Event] = None,
    ) -> ScanReport:
        """
        Scan a list of addresses with the enabled probes.

        Args:
            targets: IPv4/IPv6 addresses; duplicates are scanned once
            segment: Logical network segment label attached to the results
            strategy: Scheduling strategy (the configured default when omitted)
            config_overrides: Per-probe tuning for this scan only
            enabled: Per-probe enabled flags for this scan only
            on_progress: Called with the overall completed fraction
            on_result: Called with each result as it arrives
            abort_event: Cancellation signal

        Returns:
            ScanReport with every result produced

        Raises:
            ScanConfigurationError: If no probe is enabled, the strategy is
                unknown or no target is a valid address
        """
        strategy = self._resolve_strategy(strategy)
        abort_event = abort_event or threading.Event()
        report = ScanReport(strategy=strategy, segment=segment)

        scan_targets = self._prepare_targets(targets, segment, report)
        configs = self._session_configs(strategy, enabled, config_overrides)
        kinds = [kind for kind in self._ordered_kinds() if configs[kind].enabled]

        availability = self.check_availability(kinds)
        report.probes_unavailable = [kind for kind in kinds if not availability.get(kind, False)]
        for kind in report.probes_unavailable:
            self.logger.warning(f"{self._probes[kind].display_name} is not available on this host, skipping")

        session = _ScanSession(
            probes=[self._session_probe(kind, configs[kind]) for kind in kinds if availability.get(kind, False)],
            abort_event=abort_event,
            on_progress=on_progress,
            on_result=on_result,
        )
        report.probes_used = [probe.kind for probe in session.probes]
        report.targets_scanned = len(scan_targets)
        report.status = ScanStatus.IN_PROGRESS

        self.logger.scan_info(
            segment or "-", len(scan_targets), strategy.value,
            [probe.display_name for probe in session.probes],
        )
        started = time.monotonic()

        if not session.probes:
            report.status = ScanStatus.FAILED
            report.errors.append("None of the enabled probes is available on this host")
            self.logger.error("Scan aborted: no usable probe")
            return report

        try:
            self._strategies[strategy](session, scan_targets)
        except Exception as e:
            self._record_failure(session, e, ErrorSeverity.HIGH, f"{strategy.value}_scan", "ScanOrchestrator")
            report.status = ScanStatus.FAILED
        else:
            if session.aborted:
                report.status = ScanStatus.ABORTED
            elif session.errors:
                report.status = ScanStatus.PARTIAL
            else:
                report.status = ScanStatus.COMPLETED
                session.report_progress(1.0)

        report.results = list(session.results)
        report.errors.extend(session.errors)
        report.duration = time.monotonic() - started

        if report.status is ScanStatus.ABORTED:
            self.logger.warning(
                f"Scan aborted after {report.duration:.2f}s",
                results=len(report.results),
            )
        else:
            self.logger.success(
                f"Scan finished: {len(report.active_hosts)} active hosts",
                status=report.status.value,
                results=len(report.results),
                duration=f"{report.duration:.2f}s",
            )
        return report

    def stream(
        self,
        targets: Iterable[str],
        segment: str = "",
        strategy: Union[ScanStrategy, str, None] = None,
        config_overrides: Optional[Dict[ProbeKind, ProbeConfig]] = None,
        enabled: Optional[Dict[ProbeKind, bool]] = None,
        abort_event: Optional[threading.Event] = None,
    ) -> Iterator[ProbeResult]:
        """
        Yield results as they arrive while the scan runs in the background.

        Closing the generator early sets the abort signal. Errors raised by
        the scan are re-raised in the consumer.
        """
        abort_event = abort_event or threading.Event()
        results: "queue.Queue[object]" = queue.Queue()
        failure: List[BaseException] = []

        def run() -> None:
            try:
                self.scan(
                    targets, segment, strategy, config_overrides, enabled,
                    on_result=results.put, abort_event=abort_event,
                )
            except BaseException as e:
                failure.append(e)
            finally:
                results.put(_STREAM_END)

        worker = threading.Thread(target=run, name="scan-stream", daemon=True)
        worker.start()
        try:
            while True:
                item = results.get()
                if item is _STREAM_END:
                    break
                yield item
        finally:
            if worker.is_alive():
                abort_event.set()
            worker.join()

        if failure:
            raise failure[0]

    # Session setup

    def _require_kind(self, kind: ProbeKind) -> ProbeKind:
        if kind not in self._probes:
            raise ScanConfigurationError(f"No probe registered for {kind}")
        return kind

    def _ordered_kinds(self) -> List[ProbeKind]:
        return [probe.kind for probe in self.probes]

    def _resolve_strategy(self, strategy: Union[ScanStrategy, str, None]) -> ScanStrategy:
        if strategy is None:
            return self.settings.default_strategy
        if isinstance(strategy, ScanStrategy):
            return strategy
        try:
            return ScanStrategy(strategy)
        except ValueError:
            raise ScanConfigurationError(f"Unknown scan strategy: {strategy}")

    def _prepare_targets(self, targets: Iterable[str], segment: str, report: ScanReport) -> List[ScanTarget]:
        valid: List[str] = []
        for address in targets:
            address = str(address).strip()
            if is_valid_ip(address):
                valid.append(address)
            else:
                report.errors.append(f"Invalid target skipped: {address}")
                self.logger.warning(f"Skipping invalid target address: {address}")

        if not valid:
            raise ScanConfigurationError("No valid target address to scan")
        return [ScanTarget(address, segment) for address in dict.fromkeys(valid)]

    def _session_configs(
        self,
        strategy: ScanStrategy,
        enabled: Optional[Dict[ProbeKind, bool]],
        config_overrides: Optional[Dict[ProbeKind, ProbeConfig]],
    ) -> Dict[ProbeKind, ProbeConfig]:
        """
        Snapshot the probe configurations for one scan.

        Overrides replace a probe's tuning but keep its enabled flag; the
        ``enabled`` map decides the flags. Strategy adjustments are applied
        last.

        Raises:
            ScanConfigurationError: If no probe ends up enabled
        """
        with self._lock:
            configs = dict(self._configs)

        for kind, config in (config_overrides or {}).items():
            self._require_kind(kind)
            configs[kind] = config.replace(enabled=configs[kind].enabled)
        for kind, flag in (enabled or {}).items():
            self._require_kind(kind)
            configs[kind] = configs[kind].replace(enabled=flag)

        if strategy is ScanStrategy.TURBO:
            configs = {kind: config.replace(request_delay=0.0) for kind, config in configs.items()}
        elif strategy is ScanStrategy.ULTRA_FAST:
            configs = self._ultra_fast_configs(configs)

        if not any(config.enabled for config in configs.values()):
            raise ScanConfigurationError("No probe is enabled for this scan")
        return configs

    def _ultra_fast_configs(self, configs: Dict[ProbeKind, ProbeConfig]) -> Dict[ProbeKind, ProbeConfig]:
        if not any(configs[kind].enabled for kind in FAST_PROBE_KINDS if kind in configs):
            raise ScanConfigurationError("Ultra-fast scanning needs ICMP or TCP enabled")

        adjusted = {}
        for kind, config in configs.items():
            if kind not in FAST_PROBE_KINDS:
                adjusted[kind] = config.replace(enabled=False)
                continue
            config = config.replace(timeout=min(config.timeout, ULTRA_FAST_TIMEOUT))
            if kind is ProbeKind.TCP:
                config = config.with_params(fetch_banners=False)
            adjusted[kind] = config
        return adjusted

    def _session_probe(self, kind: ProbeKind, config: ProbeConfig) -> BaseProbe:
        probe = self._probes[kind].with_config(config)
        probe.set_attempt_listener(self.performance.record)
        return probe

    def _run_probe_batch(
        self,
        session: _ScanSession,
        probe: BaseProbe,
        targets: Sequence[ScanTarget],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        if session.aborted or not targets:
            return
        try:
            probe.probe_batch(targets, on_progress, session.emit, session.abort_event)
        except Exception as e:
            self._record_failure(session, e, ErrorSeverity.MEDIUM, "probe_batch", probe.display_name)

    def _record_failure(
        self,
        session: _ScanSession,
        error: Exception,
        severity: ErrorSeverity,
        operation: str,
        component: str,
    ) -> None:
        context = ErrorContext(
            error_type=self.error_handler.classify(error),
            severity=severity,
            operation=operation,
            component=component,
        )
        self.error_handler.handle_error(error, context)
        session.record_error(f"{component} {operation} failed: {error}")

    # Strategies

    def _run_sequential(self, session: _ScanSession, targets: List[ScanTarget]) -> None:
        """Run each probe over the full list, one probe after another."""
        count = len(session.probes)
        for index, probe in enumerate(session.probes):
            if session.aborted:
                break
            self.logger.debug(f"Sequential step {index + 1}/{count}: {probe.display_name}")

            def progress(address: str, fraction: float, index: int = index) -> None:
                session.report_progress((index + fraction) / count)

            self._run_probe_batch(session, probe, targets, progress)

    def _run_parallel(
        self,
        session: _ScanSession,
        targets: List[ScanTarget],
        probes: Optional[List[BaseProbe]] = None,
        progress_base: float = 0.0,
        progress_share: float = 1.0,
    ) -> None:
        """
        Run several probes over the same list concurrently.

        Overall progress is the mean of the probes' own progress, mapped onto
        ``progress_base .. progress_base + progress_share``.
        """
        probes = session.probes if probes is None else probes
        if not probes:
            return

        fractions: Dict[ProbeKind, float] = {probe.kind: 0.0 for probe in probes}
        fractions_lock = threading.Lock()

        def progress_for(kind: ProbeKind) -> ProgressCallback:
            def progress(address: str, fraction: float) -> None:
                with fractions_lock:
                    fractions[kind] = fraction
                    mean = sum(fractions.values()) / len(fractions)
                session.report_progress(progress_base + progress_share * mean)
            return progress

        with ThreadPoolExecutor(max_workers=len(probes), thread_name_prefix="parallel-scan") as executor:
            futures = [
                executor.submit(self._run_probe_batch, session, probe, targets, progress_for(probe.kind))
                for probe in probes
            ]
            for future in as_completed(futures):
                future.result()

    def _run_smart(self, session: _ScanSession, targets: List[ScanTarget]) -> None:
        """
        Two-phase scan: fast probes over everything, the rest over the hits.

        Phase 1 runs ICMP and TCP over the full list. Phase 2 runs the other
        probes only over the addresses phase 1 detected and is skipped when
        there are none. Without any fast probe enabled, the other probes
        run over the full list instead.
        """
        fast = [probe for probe in session.probes if probe.kind in FAST_PROBE_KINDS]
        detailed = [probe for probe in session.probes if probe.kind not in FAST_PROBE_KINDS]

        if not fast:
            self._run_parallel(session, targets, detailed)
            return

        self.logger.debug("Smart scan phase 1: fast probes over all targets")
        self._run_parallel(session, targets, fast, 0.0, SMART_PHASE_ONE_SHARE)

        detected = session.detected_addresses()
        if session.aborted or not detailed:
            return
        if not detected:
            self.logger.info("Smart scan found no active hosts in phase 1, skipping phase 2")
            return

        active_targets = [target for target in targets if target.address in detected]
        self.logger.debug(f"Smart scan phase 2: {len(detailed)} probes over {len(active_targets)} hosts")
        self._run_parallel(
            session, active_targets, detailed, SMART_PHASE_ONE_SHARE, 1.0 - SMART_PHASE_ONE_SHARE
        )

    def _run_ultra_fast(self, session: _ScanSession, targets: List[ScanTarget]) -> None:
        """
        Probe every target with ICMP and TCP under one global admission gate.

        Each target gets ULTRA_FAST_TARGET_DEADLINE seconds; results of
        probes still running at the deadline are discarded.
        """
        gate = FifoSemaphore(self.settings.ultra_fast_concurrency)
        progress = BatchProgress(len(targets), lambda address, fraction: session.report_progress(fraction))
        workers = min(gate.permits, len(targets))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ultra-fast") as target_pool, \
                self._probe_pools(session, workers, "ultra-fast") as probe_pools:
            futures = {
                target_pool.submit(self._ultra_fast_target, session, target, gate, probe_pools): target
                for target in targets
            }
            for future in as_completed(futures):
                future.result()
                progress.advance(futures[future].address)

    def _ultra_fast_target(
        self,
        session: _ScanSession,
        target: ScanTarget,
        gate: FifoSemaphore,
        probe_pools: Dict[ProbeKind, ThreadPoolExecutor],
    ) -> None:
        if session.aborted:
            return
        with gate:
            if session.aborted:
                return
            self._probe_with_deadline(session, target, probe_pools, ULTRA_FAST_TARGET_DEADLINE)

    def _probe_with_deadline(
        self,
        session: _ScanSession,
        target: ScanTarget,
        probe_pools: Dict[ProbeKind, ThreadPoolExecutor],
        deadline: float,
    ) -> bool:
        """
        Run every session probe against one target, bounded by ``deadline``.

        Each probe kind runs on its own pool, so a kind whose attempts overrun
        the deadline only delays its own later attempts. Attempts still
        queued when the target's deadline has passed are skipped.

        Returns:
            True if any probe detected the target before the deadline
        """
        expires_at = time.monotonic() + deadline
        futures = [
            probe_pools[probe.kind].submit(self._probe_before, probe, target, expires_at)
            for probe in session.probes
        ]
        done, not_done = wait(futures, timeout=deadline)

        detected = False
        for future in done:
            result = future.result()
            if result is not None:
                session.emit(result)
                detected = True

        if not_done:
            self.logger.debug(
                f"{len(not_done)} probes missed the {deadline:.1f}s deadline",
                target=target.address,
            )
        return detected

    @staticmethod
    def _probe_before(probe: BaseProbe, target: ScanTarget, expires_at: float) -> Optional[ProbeResult]:
        if time.monotonic() >= expires_at:
            return None
        return probe.run_probe(target)

    @contextmanager
    def _probe_pools(
        self, session: _ScanSession, workers: int, prefix: str
    ) -> Iterator[Dict[ProbeKind, ThreadPoolExecutor]]:
        """Yield one executor per session probe, each with ``workers`` threads."""
        with ExitStack() as stack:
            yield {
                probe.kind: stack.enter_context(
                    ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{prefix}-{probe.kind.value}")
                )
                for probe in session.probes
            }

    def _run_breadth_first(self, session: _ScanSession, targets: List[ScanTarget]) -> None:
        """
        Priority-driven scan expanding around every detected host.

        Workers pop the highest-priority task, run all probes against it and,
        when the host is detected, enqueue its neighbors within
        NEIGHBOR_RADIUS at HIGH priority. The scan ends once the queue is
        empty and no worker is busy.
        """
        tasks = TaskPriorityQueue()
        for target in targets:
            tasks.add(ScanTask(target.address, target.segment, classify_priority(target.address)))

        known: Set[str] = {target.address for target in targets}
        completed: Set[str] = set()
        expanded: Set[str] = set()
        condition = threading.Condition()
        state = {"busy": 0, "processed": 0}

        worker_count = self.settings.breadth_first_workers
        deadline = self.settings.breadth_first_deadline

        def next_task() -> Optional[ScanTask]:
            with condition:
                while True:
                    if session.aborted:
                        return None
                    task = tasks.try_pop()
                    if task is not None:
                        if task.target in completed:
                            continue
                        completed.add(task.target)
                        state["busy"] += 1
                        return task
                    if state["busy"] == 0:
                        condition.notify_all()
                        return None
                    condition.wait(timeout=0.1)

        def finish_task(task: ScanTask, detected: bool) -> None:
            with condition:
                state["busy"] -= 1
                state["processed"] += 1
                if detected and task.target not in expanded:
                    expanded.add(task.target)
                    for neighbor in neighbor_addresses(task.target, NEIGHBOR_RADIUS):
                        if neighbor in completed:
                            continue
                        known.add(neighbor)
                        tasks.add(ScanTask(neighbor, task.segment, ScanPriority.HIGH))
                session.report_progress(state["processed"] / len(known))
                condition.notify_all()

        def worker(probe_pools: Dict[ProbeKind, ThreadPoolExecutor]) -> None:
            while True:
                task = next_task()
                if task is None:
                    return
                detected = False
                try:
                    detected = self._probe_with_deadline(
                        session, ScanTarget(task.target, task.segment), probe_pools, deadline
                    )
                finally:
                    finish_task(task, detected)

        with self._probe_pools(session, worker_count, "bfs-probe") as probe_pools, \
                ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="bfs-worker") as workers:
            futures = [workers.submit(worker, probe_pools) for _ in range(worker_count)]
            for future in as_completed(futures):
                future.result()

        self.logger.debug(
            f"Breadth-first scan processed {len(completed)} addresses",
            initial=len(targets),
            expanded=len(expanded),
        )
