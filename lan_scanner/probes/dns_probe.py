"""
Reverse DNS probe for the LAN scanner.

A PTR record alone does not prove a host is up, but on home and office
networks the local resolver only holds names for devices that recently
leased an address, which makes reverse lookups a cheap supplementary
signal. The system resolver is tried first, then ``nslookup`` and ``dig``.
"""

import socket
import time
from typing import Optional

from .base_probe import BaseProbe, Deadline, elapsed_ms
from ..core.data_models import ProbeConfig, ProbeKind, ProbeResult, ScanTarget
from ..core.device_classifier import DeviceClassifier
from ..utils.command_parsers import parse_dig_output, parse_nslookup_output
from ..utils.error_handler import ProbeTimeoutError
from ..utils.network_utils import call_with_timeout

LOCAL_SUFFIXES = (".local", ".lan", ".home", ".internal", ".private", ".localdomain")


def extract_domain(hostname: str) -> str:
    """Return the last two labels of a hostname, or the hostname itself."""
    labels = hostname.split(".")
    if len(labels) >= 2:
        return ".".join(labels[-2:])
    return hostname


def is_local_hostname(hostname: str) -> bool:
    lowered = hostname.lower()
    return any(lowered.endswith(suffix) for suffix in LOCAL_SUFFIXES)


class ReverseDNSProbe(BaseProbe):
    """Reverse (PTR) lookup probe."""

    kind = ProbeKind.DNS_REVERSE
    display_name = "Reverse DNS"
    description = "Resolves target addresses back to hostnames"
    priority = 2
    DEFAULT_CONFIG = ProbeConfig(timeout=1.0, max_concurrency=80, request_delay=0.005)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.classifier = DeviceClassifier()

    def is_available(self) -> bool:
        try:
            call_with_timeout(socket.gethostbyname, self.AVAILABILITY_TIMEOUT, "localhost")
        except (OSError, ProbeTimeoutError) as e:
            self.logger.debug("Name resolution is not working", error=e)
            return False
        return True

    def probe_one(self, target: ScanTarget) -> Optional[ProbeResult]:
        started = time.monotonic()
        hostname = self.reverse_lookup(target.address)
        latency = elapsed_ms(started)

        if not hostname:
            return None

        return self._make_result(
            target,
            latency,
            hostname=hostname,
            metadata={
                "dns_available": True,
                "domain": extract_domain(hostname),
                "device_type": self.classifier.classify_hostname(hostname),
                "is_local": is_local_hostname(hostname),
            },
        )

    def reverse_lookup(self, address: str, deadline: Optional[Deadline] = None) -> Optional[str]:
        """
        Resolve an address to a hostname.

        Each fallback only gets what is left of the attempt's time budget.

        Args:
            address: IPv4 or IPv6 address
            deadline: Budget of the whole lookup chain (the configured
                timeout when omitted)

        Returns:
            Hostname distinct from the address, or None
        """
        deadline = deadline or self.start_deadline()
        for lookup in (self._lookup_system, self._lookup_nslookup, self._lookup_dig):
            if deadline.expired:
                break
            hostname = lookup(address, deadline.remaining())
            if hostname and hostname != address:
                return hostname
        return None

    def _lookup_system(self, address: str, timeout: float) -> Optional[str]:
        try:
            hostname, _aliases, _addresses = call_with_timeout(socket.gethostbyaddr, timeout, address)
        except (OSError, ProbeTimeoutError):
            return None
        return hostname.rstrip(".")

    def _lookup_nslookup(self, address: str, timeout: float) -> Optional[str]:
        if not self.runner.available("nslookup"):
            return None
        output = self.runner.run(["nslookup", address], timeout=timeout)
        if output is None or not output.ok:
            return None
        return parse_nslookup_output(output.stdout)

    def _lookup_dig(self, address: str, timeout: float) -> Optional[str]:
        if not self.runner.available("dig"):
            return None
        output = self.runner.run(["dig", "-x", address, "+short", "+tries=1"], timeout=timeout)
        if output is None or not output.ok:
            return None
        return parse_dig_output(output.stdout)
