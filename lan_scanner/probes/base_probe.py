"""
Base probe interface for the LAN scanner.

This module defines the abstract base class every protocol probe implements,
providing a consistent interface (availability check, single-target probe,
batch probe) that the orchestrator's strategies use polymorphically.
"""

import copy
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..core.concurrency import FifoSemaphore
from ..core.data_models import ProbeConfig, ProbeKind, ProbeResult, ScanTarget
from ..utils.command_runner import CommandRunner
from ..utils.error_handler import ErrorHandler
from ..utils.logger import Logger, get_logger

ProgressCallback = Callable[[str, float], None]
ResultCallback = Callable[[ProbeResult], None]
AttemptListener = Callable[[ProbeKind, float, bool], None]


def elapsed_ms(started: float) -> float:
    """Milliseconds elapsed since a time.monotonic() reading."""
    return (time.monotonic() - started) * 1000.0


class Deadline:
    """Time budget shared by the steps of one probe attempt."""

    def __init__(self, seconds: float):
        self.expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


class BatchProgress:
    """
    Completed-over-total progress reporting for one batch.

    Reported fractions never decrease and the callback is invoked under a
    lock, so callers observe them in order even when workers report
    concurrently.
    """

    def __init__(self, total: int, callback: Optional[ProgressCallback] = None):
        self.total = total
        self.completed = 0
        self._callback = callback
        self._lock = threading.Lock()

    def advance(self, address: str) -> float:
        with self._lock:
            self.completed = min(self.completed + 1, self.total)
            fraction = self.completed / self.total if self.total else 1.0
            if self._callback:
                self._callback(address, fraction)
            return fraction


class BaseProbe(ABC):
    """
    Abstract base class for all protocol probes.

    A probe detects live hosts with one technique. ``probe_one`` checks a
    single target; ``run_probe`` wraps it so that failures of any kind
    become "no result"; ``probe_batch`` fans ``run_probe`` out over many
    targets under the probe's concurrency limit and inter-request delay.

    Subclasses describe themselves through the class attributes ``kind``,
    ``display_name``, ``description``, ``priority`` (lower runs first in
    sequential scans) and ``DEFAULT_CONFIG``.
    """

    kind: ProbeKind
    display_name: str = ""
    description: str = ""
    priority: int = 100
    DEFAULT_CONFIG = ProbeConfig()

    # Upper bound for is_available() implementations
    AVAILABILITY_TIMEOUT = 2.0

    def __init__(
        self,
        config: Optional[ProbeConfig] = None,
        logger: Optional[Logger] = None,
        error_handler: Optional[ErrorHandler] = None,
        runner: Optional[CommandRunner] = None,
    ):
        """
        Initialize the base probe.

        Args:
            config: Tuning parameters; DEFAULT_CONFIG when omitted
            logger: Logger instance for outputting probe activity
            error_handler: Shared handler classifying probe failures
            runner: Adapter used to invoke operating-system utilities
        """
        self.logger = logger or get_logger(self.__class__.__name__)
        self.error_handler = error_handler or ErrorHandler(self.logger)
        self.runner = runner or CommandRunner(self.logger)
        self._attempt_listener: Optional[AttemptListener] = None
        self.bind_config(config or self.DEFAULT_CONFIG)

    @property
    def config(self) -> ProbeConfig:
        return self._config

    def bind_config(self, config: ProbeConfig) -> None:
        """
        Rebind the probe to a new configuration.

        Must not be called while a batch is running on this instance.

        Args:
            config: New tuning parameters
        """
        self._config = config
        self._admission = FifoSemaphore(config.max_concurrency)

    def with_config(self, config: ProbeConfig) -> "BaseProbe":
        """
        Return a copy of this probe bound to another configuration.

        The copy shares collaborators (logger, runner, caches) but has its own
        admission semaphore, so concurrent scans never share limits.

        Args:
            config: Tuning parameters for the copy

        Returns:
            A new probe instance of the same class
        """
        clone = copy.copy(self)
        clone.bind_config(config)
        return clone

    def start_deadline(self) -> Deadline:
        """Begin a probe attempt bounded by the configured timeout."""
        return Deadline(self.config.timeout)

    def set_attempt_listener(self, listener: Optional[AttemptListener]) -> None:
        """Register a callable receiving (kind, latency_ms, success) per attempt."""
        self._attempt_listener = listener

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check whether the OS capability this probe needs is present.

        Implementations must return within AVAILABILITY_TIMEOUT seconds and
        must not raise. The answer is advisory: a probe reported available
        may still fail on individual targets.

        Returns:
            True if the probe can run on this host
        """

    @abstractmethod
    def probe_one(self, target: ScanTarget) -> Optional[ProbeResult]:
        """
        Probe a single target within the configured timeout.

        Multi-step implementations share one start_deadline() budget across
        their steps instead of giving each step the full timeout.

        Implementations may raise; run_probe() turns any exception into a
        missing result.

        Args:
            target: Address and segment to probe

        Returns:
            ProbeResult for a confirmed responsive host, else None
        """

    def run_probe(self, target: ScanTarget) -> Optional[ProbeResult]:
        """
        Probe a target, never raising, and report the attempt.

        Args:
            target: Address and segment to probe

        Returns:
            ProbeResult for a confirmed responsive host, else None
        """
        started = time.monotonic()
        try:
            result = self.probe_one(target)
        except Exception as e:
            self.error_handler.record_probe_failure(e, self.display_name, target.address)
            result = None

        if result is not None and result.target != target.address:
            self.logger.debug(
                f"{self.display_name} returned a result for another address",
                expected=target.address,
                actual=result.target,
            )
            result = None

        self.record_attempt(elapsed_ms(started), result is not None)
        return result

    def record_attempt(self, latency_ms: float, success: bool) -> None:
        if self._attempt_listener:
            self._attempt_listener(self.kind, latency_ms, success)

    def probe_batch(
        self,
        targets: Sequence[ScanTarget],
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
        abort_event: Optional[threading.Event] = None,
    ) -> List[ProbeResult]:
        """
        Probe every target, at most ``max_concurrency`` at a time.

        An empty target list returns immediately without touching the
        network, as does a disabled configuration. Once ``abort_event`` is
        set no further probes are started; in-flight probes finish.

        Args:
            targets: Targets to probe
            on_progress: Called with (address, completed fraction)
            on_result: Called with each result as it arrives
            abort_event: Cancellation signal

        Returns:
            List of results in completion order
        """
        if not targets or not self.config.enabled:
            return []
        return self._run_batch(targets, self.run_probe, on_progress, on_result, abort_event)

    def _run_batch(
        self,
        targets: Sequence[ScanTarget],
        probe_fn: Callable[[ScanTarget], Optional[ProbeResult]],
        on_progress: Optional[ProgressCallback],
        on_result: Optional[ResultCallback],
        abort_event: Optional[threading.Event],
    ) -> List[ProbeResult]:
        results: List[ProbeResult] = []
        progress = BatchProgress(len(targets), on_progress)
        workers = min(self.config.max_concurrency, len(targets))

        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=f"{self.kind.value}-probe"
        ) as executor:
            future_to_target = {
                executor.submit(self._admitted, probe_fn, target, abort_event): target
                for target in targets
            }

            for future in as_completed(future_to_target):
                target = future_to_target[future]
                result = future.result()
                progress.advance(target.address)
                if result is not None:
                    results.append(result)
                    if on_result:
                        on_result(result)

        return results

    def _admitted(
        self,
        probe_fn: Callable[[ScanTarget], Optional[ProbeResult]],
        target: ScanTarget,
        abort_event: Optional[threading.Event],
    ) -> Optional[ProbeResult]:
        if abort_event is not None and abort_event.is_set():
            return None

        with self._admission:
            if abort_event is not None and abort_event.is_set():
                return None
            if self.config.request_delay > 0:
                time.sleep(self.config.request_delay)
            return probe_fn(target)

    def describe(self) -> Dict[str, Any]:
        """Return the probe's identity and current configuration."""
        return {
            "kind": self.kind.value,
            "name": self.display_name,
            "description": self.description,
            "priority": self.priority,
            "config": self.config.to_dict(),
        }

    def _make_result(self, target: ScanTarget, latency_ms: float, **fields: Any) -> ProbeResult:
        return ProbeResult(
            target=target.address,
            latency_ms=latency_ms,
            kind=self.kind,
            segment=target.segment,
            **fields,
        )
