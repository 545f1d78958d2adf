"""
mDNS/Bonjour probe for the LAN scanner.

This probe browses a catalogue of common DNS-SD service types with zeroconf,
resolves every advertised instance to its host and addresses, and matches
the advertisers against the targets. One browse serves a whole batch; the
snapshot is cached briefly so per-target callers do not flood the link with
queries.
"""

import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from zeroconf import ServiceBrowser, ServiceStateChange, Zeroconf

from .base_probe import BaseProbe, BatchProgress, ProgressCallback, ResultCallback, elapsed_ms
from ..core.data_models import ProbeConfig, ProbeKind, ProbeResult, ScanTarget
from ..core.device_classifier import DeviceClassifier
from ..utils.error_handler import ProbeTimeoutError
from ..utils.network_utils import call_with_timeout

MDNS_SERVICE_TYPES = [
    "_http._tcp.local.",
    "_https._tcp.local.",
    "_ssh._tcp.local.",
    "_airplay._tcp.local.",
    "_raop._tcp.local.",
    "_device-info._tcp.local.",
    "_apple-mobdev2._tcp.local.",
    "_homekit._tcp.local.",
    "_hap._tcp.local.",
]

DEFAULT_CACHE_TTL = 30.0
RESOLVE_TIMEOUT_MS = 1000


@dataclass(frozen=True)
class DiscoveredService:
    """
    One resolved DNS-SD service instance.

    Attributes:
        name: Full instance name
        service_type: Service type the instance was found under
        server: Advertised host name (SRV target)
        addresses: Advertised A/AAAA addresses
        port: Advertised service port
        properties: Decoded TXT record
    """
    name: str
    service_type: str
    server: Optional[str] = None
    addresses: Tuple[str, ...] = ()
    port: Optional[int] = None
    properties: Dict[str, str] = field(default_factory=dict)


class _DiscoveryCache:
    def __init__(self):
        self.lock = threading.Lock()
        self.services: Optional[List[DiscoveredService]] = None
        self.fetched_at = 0.0


class _ServiceCollector:
    """ServiceBrowser handler recording the instances seen while browsing."""

    def __init__(self):
        self._lock = threading.Lock()
        self._seen: Set[Tuple[str, str]] = set()

    def on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if state_change is ServiceStateChange.Removed:
            return
        with self._lock:
            self._seen.add((service_type, name))

    def snapshot(self) -> List[Tuple[str, str]]:
        with self._lock:
            return sorted(self._seen)


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return "" if value is None else str(value)


class MDNSProbe(BaseProbe):
    """
    mDNS/DNS-SD service discovery probe.

    Supported ``params``:
        service_types: service types to browse instead of MDNS_SERVICE_TYPES
        cache_ttl: seconds a discovery snapshot is reused (default 30)
    """

    kind = ProbeKind.MDNS
    display_name = "mDNS/Bonjour"
    description = "Browses Bonjour/mDNS services to find advertising devices"
    priority = 75
    DEFAULT_CONFIG = ProbeConfig(timeout=3.0, max_concurrency=30, request_delay=0.02)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.classifier = DeviceClassifier()
        self._cache = _DiscoveryCache()

    def is_available(self) -> bool:
        try:
            zeroconf = Zeroconf()
        except OSError as e:
            self.logger.debug("Multicast DNS socket could not be opened", error=e)
            return False
        zeroconf.close()
        return True

    def probe_one(self, target: ScanTarget) -> Optional[ProbeResult]:
        started = time.monotonic()
        services = self.discover()
        matched = self._services_by_address(services).get(target.address)
        if not matched:
            return None
        return self._services_result(target, matched, elapsed_ms(started))

    def probe_batch(
        self,
        targets: Sequence[ScanTarget],
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
        abort_event: Optional[threading.Event] = None,
    ) -> List[ProbeResult]:
        if not targets or not self.config.enabled:
            return []
        if abort_event is not None and abort_event.is_set():
            return []

        started = time.monotonic()
        services = self.discover()
        by_address = self._services_by_address(services)
        latency = elapsed_ms(started)

        progress = BatchProgress(len(targets), on_progress)
        results: List[ProbeResult] = []
        for target in targets:
            matched = by_address.get(target.address)
            self.record_attempt(latency, bool(matched))
            if matched:
                result = self._services_result(target, matched, latency)
                results.append(result)
                if on_result:
                    on_result(result)
            progress.advance(target.address)

        self.logger.debug(
            f"mDNS matched {len(results)} of {len(targets)} targets",
            services=len(services),
        )
        return results

    def discover(self) -> List[DiscoveredService]:
        """
        Return the current service snapshot, browsing if the cache is stale.

        Concurrent callers wait for a single browse instead of starting
        their own.
        """
        ttl = float(self.config.params.get("cache_ttl", DEFAULT_CACHE_TTL))
        with self._cache.lock:
            fresh = time.monotonic() - self._cache.fetched_at < ttl
            if self._cache.services is None or not fresh:
                service_types = self.config.params.get("service_types") or MDNS_SERVICE_TYPES
                self._cache.services = self._browse_services(list(service_types), self.config.timeout)
                self._cache.fetched_at = time.monotonic()
            return list(self._cache.services)

    def invalidate_cache(self) -> None:
        with self._cache.lock:
            self._cache.services = None

    def _browse_services(self, service_types: List[str], window: float) -> List[DiscoveredService]:
        """
        Browse the given service types for ``window`` seconds and resolve them.

        Args:
            service_types: Fully qualified service types
            window: Browse duration in seconds

        Returns:
            List of resolved services
        """
        zeroconf = Zeroconf()
        collector = _ServiceCollector()
        try:
            browsers = [
                ServiceBrowser(zeroconf, service_type, handlers=[collector.on_service_state_change])
                for service_type in service_types
            ]
            time.sleep(window)
            for browser in browsers:
                browser.cancel()

            services = []
            for service_type, name in collector.snapshot():
                info = zeroconf.get_service_info(service_type, name, timeout=RESOLVE_TIMEOUT_MS)
                if info is None:
                    continue
                services.append(DiscoveredService(
                    name=name,
                    service_type=service_type,
                    server=info.server.rstrip(".") if info.server else None,
                    addresses=tuple(info.parsed_addresses()),
                    port=info.port,
                    properties={_decode(k): _decode(v) for k, v in (info.properties or {}).items()},
                ))
            return services
        finally:
            zeroconf.close()

    def _services_by_address(self, services: List[DiscoveredService]) -> Dict[str, List[DiscoveredService]]:
        by_address: Dict[str, List[DiscoveredService]] = {}
        for service in services:
            addresses = list(service.addresses) or self._resolve_server(service.server)
            for address in addresses:
                by_address.setdefault(address, []).append(service)
        return by_address

    def _resolve_server(self, server: Optional[str]) -> List[str]:
        if not server:
            return []
        try:
            infos = call_with_timeout(socket.getaddrinfo, 1.0, server, None)
        except (OSError, ProbeTimeoutError) as e:
            self.logger.debug(f"Could not resolve mDNS host {server}", error=e)
            return []
        return list(dict.fromkeys(info[4][0] for info in infos))

    def _services_result(
        self, target: ScanTarget, services: List[DiscoveredService], latency_ms: float
    ) -> ProbeResult:
        primary = services[0]
        return self._make_result(
            target,
            latency_ms,
            hostname=primary.server,
            metadata={
                "service_name": primary.name,
                "service_type": primary.service_type,
                "port": primary.port,
                "device_type": self.classifier.classify_mdns_service(primary.service_type),
                "services": [
                    {"name": s.name, "type": s.service_type, "port": s.port} for s in services
                ],
            },
        )
