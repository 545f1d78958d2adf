"""
IPv6 presence probe for the LAN scanner.

Given an IPv4 target, this probe looks for IPv6 addresses belonging to the
same host: neighbor-cache entries sharing its MAC address, AAAA records of
its reverse hostname, and addresses predicted from the local /64 prefixes.
Candidates that answer an ICMPv6 echo are reported together with the common
services reachable on them.
"""

import ipaddress
import platform
import socket
import threading
import time
from typing import Dict, List, Optional

from .arp_probe import ARPProbe
from .base_probe import BaseProbe, Deadline, elapsed_ms
from ..core.data_models import ProbeConfig, ProbeKind, ProbeResult, ScanTarget
from ..utils.command_parsers import parse_ipv6_neighbors, parse_ping_output
from ..utils.command_runner import ping_command
from ..utils.error_handler import CapabilityUnavailableError, ProbeTimeoutError
from ..utils.network_utils import (
    call_with_timeout,
    has_ipv6_interface,
    is_ipv4,
    is_valid_ip,
    local_ipv6_prefixes,
    predict_ipv6_addresses,
    sweep_tcp_ports,
)

IPV6_SERVICE_PORTS: Dict[int, str] = {
    22: "SSH",
    80: "HTTP",
    443: "HTTPS",
    5353: "mDNS",
    8080: "HTTP-Alt",
}

DEFAULT_MAX_CANDIDATES = 8
MAX_SWEEP_TIMEOUT = 0.5
NEIGHBOR_CACHE_TTL = 10.0

_UNIQUE_LOCAL = ipaddress.IPv6Network("fc00::/7")


class _NeighborSnapshot:
    """MAC correlation tables read from the system neighbor caches."""

    def __init__(self):
        self.lock = threading.Lock()
        self.mac_by_ipv4: Dict[str, str] = {}
        self.ipv6_by_mac: Dict[str, List[str]] = {}
        self.fetched_at: Optional[float] = None


class IPv6Probe(BaseProbe):
    """
    Dual-stack detection probe for IPv4 targets.

    Supported ``params``:
        max_candidates: upper bound on IPv6 candidates validated per target
    """

    kind = ProbeKind.IPV6
    display_name = "IPv6 Discovery"
    description = "Finds IPv6 addresses and services of dual-stack hosts"
    priority = 2
    DEFAULT_CONFIG = ProbeConfig(timeout=2.0, max_concurrency=50, request_delay=0.01)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._arp = ARPProbe(logger=self.logger, error_handler=self.error_handler, runner=self.runner)
        self._neighbors = _NeighborSnapshot()

    def is_available(self) -> bool:
        return has_ipv6_interface()

    def probe_one(self, target: ScanTarget) -> Optional[ProbeResult]:
        started = time.monotonic()
        deadline = self.start_deadline()
        live_addresses: List[str] = []
        services: List[str] = []
        for candidate in self.candidate_addresses(target.address, deadline):
            if deadline.expired:
                break
            if not self._answers_ping(candidate, deadline.remaining()):
                continue
            live_addresses.append(candidate)
            sweep_timeout = min(deadline.remaining(), MAX_SWEEP_TIMEOUT)
            if sweep_timeout <= 0:
                break
            for port in sweep_tcp_ports(candidate, IPV6_SERVICE_PORTS, sweep_timeout):
                if IPV6_SERVICE_PORTS[port] not in services:
                    services.append(IPV6_SERVICE_PORTS[port])

        if not live_addresses:
            return None

        hostname = None
        if not deadline.expired:
            hostname = self._reverse_name(live_addresses[0], deadline.remaining())

        parsed = [ipaddress.IPv6Address(address.split("%", 1)[0]) for address in live_addresses]
        return self._make_result(
            target,
            elapsed_ms(started),
            hostname=hostname,
            metadata={
                "ipv6_available": True,
                "ipv6_addresses": live_addresses,
                "ipv6_services": services,
                "link_local": any(ip.is_link_local for ip in parsed),
                "global_unicast": any(
                    not ip.is_link_local and ip not in _UNIQUE_LOCAL for ip in parsed
                ),
            },
        )

    def candidate_addresses(self, ipv4_address: str, deadline: Optional[Deadline] = None) -> List[str]:
        """
        Collect the IPv6 addresses the host may be using.

        An IPv6 target is its own sole candidate.

        Args:
            ipv4_address: IPv4 address of the host
            deadline: Budget for the table reads and name lookups (the
                configured timeout when omitted)

        Returns:
            Unique candidates, neighbor-cache entries first, capped at
            ``max_candidates``
        """
        if not is_ipv4(ipv4_address):
            return [ipv4_address] if is_valid_ip(ipv4_address) else []

        deadline = deadline or self.start_deadline()
        mac_by_ipv4, ipv6_by_mac = self._neighbor_tables(deadline.remaining())
        mac = mac_by_ipv4.get(ipv4_address)

        candidates: List[str] = []
        if mac:
            candidates.extend(ipv6_by_mac.get(mac, []))
        candidates.extend(self._aaaa_addresses(ipv4_address, deadline))
        candidates.extend(predict_ipv6_addresses(ipv4_address, local_ipv6_prefixes(), mac))

        limit = int(self.config.params.get("max_candidates", DEFAULT_MAX_CANDIDATES))
        return list(dict.fromkeys(candidates))[:limit]

    def _neighbor_tables(self, timeout: float):
        with self._neighbors.lock:
            fetched_at = self._neighbors.fetched_at
            if fetched_at is None or time.monotonic() - fetched_at > NEIGHBOR_CACHE_TTL:
                if timeout <= 0:
                    return self._neighbors.mac_by_ipv4, self._neighbors.ipv6_by_mac
                try:
                    arp_table = self._arp.read_table(timeout)
                except CapabilityUnavailableError as e:
                    self.logger.debug("IPv4 neighbor table unavailable", error=e)
                    arp_table = {}
                self._neighbors.mac_by_ipv4 = {ip: entry.mac for ip, entry in arp_table.items()}

                ipv6_by_mac: Dict[str, List[str]] = {}
                for entry in self._read_ipv6_neighbors(timeout):
                    ipv6_by_mac.setdefault(entry.mac, []).append(entry.ip)
                self._neighbors.ipv6_by_mac = ipv6_by_mac
                self._neighbors.fetched_at = time.monotonic()
            return self._neighbors.mac_by_ipv4, self._neighbors.ipv6_by_mac

    def _read_ipv6_neighbors(self, timeout: float):
        system = platform.system().lower()
        if system == "linux" and self.runner.available("ip"):
            command = ["ip", "-6", "neigh", "show"]
        elif system == "windows":
            command = ["netsh", "interface", "ipv6", "show", "neighbors"]
        else:
            command = ["ndp", "-an"]

        output = self.runner.run(command, timeout=timeout)
        if output is None or not output.ok:
            return []
        return parse_ipv6_neighbors(output.stdout)

    def _aaaa_addresses(self, ipv4_address: str, deadline: Deadline) -> List[str]:
        if deadline.expired:
            return []
        hostname = self._reverse_name(ipv4_address, deadline.remaining())
        if not hostname or deadline.expired:
            return []
        try:
            infos = call_with_timeout(
                socket.getaddrinfo, deadline.remaining(), hostname, None, socket.AF_INET6
            )
        except (OSError, ProbeTimeoutError):
            return []
        return [info[4][0] for info in infos]

    def _reverse_name(self, address: str, timeout: float) -> Optional[str]:
        try:
            hostname, _aliases, _addresses = call_with_timeout(
                socket.gethostbyaddr, timeout, address.split("%", 1)[0]
            )
        except (OSError, ProbeTimeoutError):
            return None
        return hostname if hostname != address else None

    def _answers_ping(self, address: str, timeout: float) -> bool:
        output = self.runner.run(ping_command(address, timeout), timeout=timeout)
        if output is None:
            return False
        return parse_ping_output(output.text, address, output.returncode).alive
