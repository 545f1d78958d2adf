"""
ARP table probe for the LAN scanner.

This probe prompts the kernel to resolve each target's link-layer address by
pinging it, then reads the system neighbor table (``ip neigh`` or ``arp``).
A resolved entry proves the host is on the local link even when it ignores
ping. MAC vendors are looked up in a static OUI table.
"""

import platform
import threading
import time
from typing import Dict, List, Optional, Sequence

from .base_probe import BaseProbe, ProgressCallback, ResultCallback, elapsed_ms
from ..core.data_models import ProbeConfig, ProbeKind, ProbeResult, ScanTarget
from ..utils.command_parsers import NeighborEntry, normalize_mac, parse_arp_table
from ..utils.command_runner import ping_command
from ..utils.error_handler import CapabilityUnavailableError
from ..utils.network_utils import is_ipv4

OUI_VENDORS: Dict[str, str] = {
    "001B63": "Apple",
    "002500": "Apple",
    "002608": "Apple",
    "3C15C2": "Apple",
    "005056": "VMware",
    "000C29": "VMware",
    "080027": "VirtualBox",
    "00155D": "Microsoft",
    "001C42": "Parallels",
    "00E04C": "Realtek",
    "001AA0": "Netgear",
    "002401": "D-Link",
    "00265A": "Linksys",
    "001122": "Cisco",
    "00D0C9": "Intel",
    "00A0C9": "Intel",
    "001B21": "Intel",
    "001CF0": "Dell",
    "002564": "HP",
    "001E58": "WD (Western Digital)",
}

# Share of batch progress spent pinging; the table dump completes the rest
_PING_PHASE_SHARE = 0.9


def lookup_vendor(mac_address: Optional[str]) -> Optional[str]:
    """
    Find the vendor owning a MAC address's OUI.

    Matching ignores case and accepts ``:`` or ``-`` separators.

    Args:
        mac_address: MAC address

    Returns:
        Vendor name; "Unknown" for an unlisted OUI; None for a malformed MAC
    """
    normalized = normalize_mac(mac_address) if mac_address else None
    if normalized is None:
        return None
    oui = normalized[:8].replace(":", "").upper()
    return OUI_VENDORS.get(oui, "Unknown")


class ARPProbe(BaseProbe):
    """
    ARP neighbor-table probe (IPv4 only).

    Batch mode pings every target under the concurrency limit and then reads
    the neighbor table once, reconciling all targets against that single
    snapshot.
    """

    kind = ProbeKind.ARP
    display_name = "ARP Table"
    description = "Reads the system ARP table to find hosts on the local link"
    priority = 3
    DEFAULT_CONFIG = ProbeConfig(timeout=1.0, max_concurrency=80, request_delay=0.005)

    def is_available(self) -> bool:
        command = self._table_command()
        if not self.runner.available(command[0]):
            return False
        output = self.runner.run(command, timeout=self.AVAILABILITY_TIMEOUT)
        return output is not None and output.ok

    def probe_one(self, target: ScanTarget) -> Optional[ProbeResult]:
        if not is_ipv4(target.address):
            return None

        started = time.monotonic()
        deadline = self.start_deadline()
        self._populate_cache(target, deadline.remaining())
        if deadline.expired:
            return None
        entry = self.read_table(deadline.remaining()).get(target.address)
        if entry is None:
            return None
        return self._entry_result(target, entry, elapsed_ms(started))

    def probe_batch(
        self,
        targets: Sequence[ScanTarget],
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
        abort_event: Optional[threading.Event] = None,
    ) -> List[ProbeResult]:
        if not targets or not self.config.enabled:
            return []

        ipv4_targets = [target for target in targets if is_ipv4(target.address)]
        if not ipv4_targets:
            return []

        ping_progress = None
        if on_progress:
            def ping_progress(address: str, fraction: float) -> None:
                on_progress(address, fraction * _PING_PHASE_SHARE)

        started = time.monotonic()
        self._run_batch(ipv4_targets, self._populate_cache, ping_progress, None, abort_event)
        if abort_event is not None and abort_event.is_set():
            return []

        try:
            table = self.read_table()
        except CapabilityUnavailableError as e:
            self.error_handler.record_probe_failure(e, self.display_name, "neighbor table")
            table = {}

        per_target_latency = elapsed_ms(started) / len(ipv4_targets)
        results: List[ProbeResult] = []
        for target in ipv4_targets:
            entry = table.get(target.address)
            self.record_attempt(per_target_latency, entry is not None)
            if entry is None:
                continue
            result = self._entry_result(target, entry, per_target_latency)
            results.append(result)
            if on_result:
                on_result(result)

        if on_progress:
            on_progress(ipv4_targets[-1].address, 1.0)

        self.logger.debug(
            f"ARP reconciliation matched {len(results)} of {len(ipv4_targets)} targets",
            table_entries=len(table),
        )
        return results

    def read_table(self, timeout: Optional[float] = None) -> Dict[str, NeighborEntry]:
        """
        Read and parse the system neighbor table.

        Args:
            timeout: Seconds allowed for the table command (twice the
                configured timeout when omitted)

        Returns:
            Mapping of IP address to its resolved entry

        Raises:
            CapabilityUnavailableError: If no table command could be run
        """
        command = self._table_command()
        if timeout is None:
            timeout = self.config.timeout * 2
        output = self.runner.run(command, timeout=timeout)
        if output is None or not output.ok:
            raise CapabilityUnavailableError(f"Could not read neighbor table with {command[0]}")
        return {entry.ip: entry for entry in parse_arp_table(output.stdout)}

    def _table_command(self) -> List[str]:
        system = platform.system().lower()
        if system == "linux" and self.runner.available("ip"):
            return ["ip", "neigh", "show"]
        if system == "windows":
            return ["arp", "-a"]
        return ["arp", "-an"]

    def _populate_cache(self, target: ScanTarget, timeout: Optional[float] = None) -> None:
        if timeout is None:
            timeout = self.config.timeout
        self.runner.run(ping_command(target.address, timeout), timeout=timeout)

    def _entry_result(self, target: ScanTarget, entry: NeighborEntry, latency_ms: float) -> ProbeResult:
        return self._make_result(
            target,
            latency_ms,
            mac_address=entry.mac,
            metadata={
                "arp_status": entry.status,
                "interface": entry.interface,
                "vendor": lookup_vendor(entry.mac),
            },
        )
