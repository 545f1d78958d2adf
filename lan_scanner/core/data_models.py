"""
Core data models and enums for the LAN scanner.

This module defines the value types exchanged between the probes, the
orchestrator and callers: probe results and configuration, scan targets and
tasks, performance samples, and the report summarizing one scan.
"""

import dataclasses
import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ProbeKind(Enum):
    """The protocol techniques a probe can use to detect a host."""
    ICMP = "icmp"
    TCP = "tcp"
    ARP = "arp"
    MDNS = "mdns"
    UPNP = "upnp"
    DNS_REVERSE = "dns_reverse"
    IPV6 = "ipv6"


class ScanStatus(Enum):
    """Enumeration of possible scan statuses."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"
    ABORTED = "aborted"


class ScanStrategy(Enum):
    """Scheduling strategies offered by the orchestrator."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    SMART = "smart"
    TURBO = "turbo"
    ULTRA_FAST = "ultra_fast"
    BREADTH_FIRST = "breadth_first"


class ScanPriority(Enum):
    """
    Priority of a breadth-first scan task.

    ``rank`` orders the heap: a lower rank is dequeued first.
    """
    IMMEDIATE = "immediate"
    HIGH = "high"
    NORMAL = "normal"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]


_PRIORITY_RANKS = {
    ScanPriority.IMMEDIATE: 0,
    ScanPriority.HIGH: 1,
    ScanPriority.NORMAL: 2,
}


class NetworkQuality(Enum):
    """Overall network quality derived from recent probe performance."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ScanTarget:
    """
    One address to probe, tagged with the caller's segment label.

    Attributes:
        address: IPv4 or IPv6 address
        segment: Logical network segment label supplied by the caller
    """
    address: str
    segment: str = ""


@dataclass(frozen=True)
class ProbeResult:
    """
    A positive detection of a host by one probe.

    A result only exists for a host the probe confirmed responsive, so
    ``is_active`` is always True; several results may exist for the same
    target, one per detecting probe.

    Attributes:
        target: Address that was detected
        latency_ms: Round-trip or elapsed time of the detection
        kind: Probe kind that produced the result
        segment: Segment label of the target
        is_active: Always True
        hostname: Hostname learned by the probe, if any
        mac_address: MAC address learned by the probe, if any
        open_ports: Sorted open TCP ports found by the probe
        metadata: Probe-specific details (services, vendor, device type...)
    """
    target: str
    latency_ms: float
    kind: ProbeKind
    segment: str = ""
    is_active: bool = True
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    open_ports: Tuple[int, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.is_active:
            raise ValueError("ProbeResult is only created for responsive hosts")
        object.__setattr__(self, "open_ports", tuple(sorted(set(self.open_ports))))
        object.__setattr__(self, "latency_ms", max(0.0, float(self.latency_ms)))


@dataclass(frozen=True)
class ProbeConfig:
    """
    Tuning parameters bound to one probe.

    Attributes:
        timeout: Per-target time budget in seconds
        max_concurrency: Maximum simultaneous in-flight probes
        enabled: Whether strategies may invoke the probe
        request_delay: Pause in seconds before each request
        params: Probe-specific options (port lists, cache TTLs...)
    """
    timeout: float = 3.0
    max_concurrency: int = 20
    enabled: bool = True
    request_delay: float = 0.0
    params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {self.max_concurrency}")
        if self.request_delay < 0:
            raise ValueError(f"request_delay must not be negative, got {self.request_delay}")

    def replace(self, **changes: Any) -> "ProbeConfig":
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)

    def with_params(self, **params: Any) -> "ProbeConfig":
        merged = dict(self.params)
        merged.update(params)
        return dataclasses.replace(self, params=merged)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeout": self.timeout,
            "max_concurrency": self.max_concurrency,
            "enabled": self.enabled,
            "request_delay": self.request_delay,
            "params": dict(self.params),
        }


_task_sequence = itertools.count()


@dataclass(frozen=True)
class ScanTask:
    """
    A breadth-first work item.

    Attributes:
        target: Address to probe
        segment: Segment label of the target
        priority: Scheduling priority
        created_at: Creation timestamp (monotonic seconds)
        sequence: Process-wide insertion counter breaking priority ties FIFO
    """
    target: str
    segment: str
    priority: ScanPriority
    created_at: float = field(default_factory=time.monotonic)
    sequence: int = field(default_factory=lambda: next(_task_sequence))

    @property
    def sort_key(self) -> Tuple[int, float, int]:
        return (self.priority.rank, self.created_at, self.sequence)


@dataclass(frozen=True)
class PerformanceSample:
    """
    Outcome of one completed probe attempt.

    Attributes:
        latency_ms: Elapsed time of the attempt
        success: Whether the attempt produced a result
    """
    latency_ms: float
    success: bool


@dataclass
class ScanReport:
    """
    Summary of one orchestrated scan.

    Attributes:
        strategy: Strategy that was executed
        segment: Segment label supplied by the caller
        status: COMPLETED; PARTIAL when some probe batches failed; ABORTED when
            the abort signal stopped the scan; FAILED when no probe could run
        results: Every result produced, in arrival order
        targets_scanned: Number of distinct valid targets
        probes_used: Probes that took part
        probes_unavailable: Enabled probes skipped because the capability was missing
        started_at: Wall-clock start time
        duration: Elapsed seconds
        errors: Human-readable problems encountered (invalid targets...)
    """
    strategy: ScanStrategy
    segment: str
    status: ScanStatus = ScanStatus.NOT_STARTED
    results: List[ProbeResult] = field(default_factory=list)
    targets_scanned: int = 0
    probes_used: List[ProbeKind] = field(default_factory=list)
    probes_unavailable: List[ProbeKind] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    duration: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def active_hosts(self) -> List[str]:
        """Distinct detected addresses in first-detection order."""
        return list(dict.fromkeys(result.target for result in self.results))

    def results_for(self, address: str) -> List[ProbeResult]:
        return [result for result in self.results if result.target == address]

    def results_by_kind(self) -> Dict[ProbeKind, List[ProbeResult]]:
        grouped: Dict[ProbeKind, List[ProbeResult]] = {}
        for result in self.results:
            grouped.setdefault(result.kind, []).append(result)
        return grouped
