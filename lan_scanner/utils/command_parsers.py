"""
Parsers for the text output of operating-system network utilities.

Each function takes the raw output of one command and returns structured
records, so the probes never work on free text and the parsing rules can be
tested without running any command. Supported formats:

- ``ping`` (Linux, BSD/macOS, Windows)
- ``arp -a`` (Linux, BSD/macOS, Windows) and ``ip neigh``
- ``ip -6 neigh`` and ``ndp -an``
- ``nslookup <ip>`` and ``dig -x <ip> +short``
"""

import ipaddress
import re
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class PingReply:
    """
    Interpretation of one ping invocation.

    Attributes:
        alive: Whether the host answered
        latency_ms: Round-trip time reported by the tool, if any
        ttl: TTL of the reply, if reported
    """
    alive: bool
    latency_ms: Optional[float] = None
    ttl: Optional[int] = None


@dataclass(frozen=True)
class NeighborEntry:
    """
    One resolved entry of an ARP or IPv6 neighbor table.

    Attributes:
        ip: IP address of the neighbor (IPv6 scope suffix preserved)
        mac: Normalized lowercase colon-separated MAC address
        interface: Interface the entry was learned on, if reported
        status: "permanent" for static entries, "dynamic" otherwise
    """
    ip: str
    mac: str
    interface: Optional[str] = None
    status: str = "dynamic"


_LATENCY_PATTERN = re.compile(r"time[=<]\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)
_TTL_PATTERN = re.compile(r"ttl[=:]\s*(\d+)", re.IGNORECASE)
_MAC_PATTERN = re.compile(r"^([0-9A-Fa-f]{1,2}[:-]){5}[0-9A-Fa-f]{1,2}$")
_PAREN_IP_PATTERN = re.compile(r"\(([0-9a-fA-F.:]+)\)")
_INTERFACE_PATTERN = re.compile(r"\bon (\S+)")

_PING_FAILURE_INDICATORS = (
    "destination host unreachable",
    "request timed out",
    "could not find host",
    "general failure",
    "transmit failed",
    "no route to host",
    "network is unreachable",
    "name or service not known",
    "100% packet loss",
    "100.0% packet loss",
    "received = 0",
    " 0 received",
    " 0 packets received",
)

_IGNORED_MACS = {"ff:ff:ff:ff:ff:ff", "00:00:00:00:00:00"}
_INCOMPLETE_STATES = {"incomplete", "(incomplete)", "failed"}


def normalize_mac(mac: str) -> Optional[str]:
    """
    Normalize a MAC address to lowercase, colon-separated, zero-padded form.

    BSD tools print octets without leading zeros (``0:1b:63:a:b:c``) and
    Windows separates them with dashes; both are accepted.

    Args:
        mac: MAC address as printed by a tool

    Returns:
        Normalized MAC, or None if the string is not a MAC address
    """
    if not mac or not _MAC_PATTERN.match(mac.strip()):
        return None
    octets = re.split(r"[:-]", mac.strip())
    return ":".join(octet.zfill(2) for octet in octets).lower()


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value.split("%", 1)[0])
        return True
    except ValueError:
        return False


def _entry_status(line: str) -> str:
    lowered = line.lower()
    if "permanent" in lowered or "static" in lowered or " perm" in lowered:
        return "permanent"
    return "dynamic"


def parse_ping_output(output: str, target: str, returncode: int = 0) -> PingReply:
    """
    Decide whether a ping invocation saw a reply and extract its timing.

    Args:
        output: Combined stdout/stderr of the ping command
        target: Address that was pinged
        returncode: Exit status of the command

    Returns:
        PingReply describing the outcome
    """
    if not output:
        return PingReply(alive=False)

    output_lower = output.lower()
    for indicator in _PING_FAILURE_INDICATORS:
        if indicator in output_lower:
            return PingReply(alive=False)

    latency_match = _LATENCY_PATTERN.search(output)
    ttl_match = _TTL_PATTERN.search(output)

    has_reply = (
        latency_match is not None
        or f"reply from {target.lower()}" in output_lower
        or "bytes from" in output_lower
    )
    if not has_reply or returncode != 0:
        return PingReply(alive=False)

    return PingReply(
        alive=True,
        latency_ms=float(latency_match.group(1)) if latency_match else None,
        ttl=int(ttl_match.group(1)) if ttl_match else None,
    )


def parse_arp_table(output: str) -> List[NeighborEntry]:
    """
    Parse an IPv4 neighbor table dump.

    Handles three layouts::

        host (192.168.1.1) at 00:11:22:33:44:55 [ether] on eth0      # arp -a (Linux/BSD)
        192.168.1.1 dev eth0 lladdr 00:11:22:33:44:55 REACHABLE      # ip neigh
        192.168.1.1          00-11-22-33-44-55     dynamic            # arp -a (Windows)

    Incomplete, broadcast and all-zero entries are skipped.

    Args:
        output: Raw command output

    Returns:
        List of NeighborEntry records in table order
    """
    entries: List[NeighborEntry] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("Interface:") or "Internet Address" in line:
            continue
        entry = _parse_neighbor_line(line)
        if entry is not None:
            entries.append(entry)
    return entries


def _parse_neighbor_line(line: str) -> Optional[NeighborEntry]:
    parts = line.split()

    # ip neigh / ip -6 neigh
    if "lladdr" in parts:
        if parts[-1].lower() in _INCOMPLETE_STATES:
            return None
        mac_index = parts.index("lladdr") + 1
        if mac_index >= len(parts) or not _is_ip(parts[0]):
            return None
        mac = normalize_mac(parts[mac_index])
        interface = parts[parts.index("dev") + 1] if "dev" in parts[:-1] else None
        if mac is None or mac in _IGNORED_MACS:
            return None
        return NeighborEntry(parts[0], mac, interface, _entry_status(line))

    # arp -a (Linux/BSD)
    if " at " in line:
        ip_match = _PAREN_IP_PATTERN.search(line)
        if not ip_match:
            return None
        mac = normalize_mac(line.split(" at ", 1)[1].split()[0])
        if mac is None or mac in _IGNORED_MACS:
            return None
        interface_match = _INTERFACE_PATTERN.search(line)
        return NeighborEntry(
            ip_match.group(1),
            mac,
            interface_match.group(1) if interface_match else None,
            _entry_status(line),
        )

    # arp -a (Windows)
    if len(parts) >= 2 and _is_ip(parts[0]):
        mac = normalize_mac(parts[1])
        if mac is None or mac in _IGNORED_MACS:
            return None
        return NeighborEntry(parts[0], mac, None, _entry_status(line))

    return None


def parse_ipv6_neighbors(output: str) -> List[NeighborEntry]:
    """
    Parse ``ip -6 neigh`` or ``ndp -an`` output into neighbor records.

    ``ndp -an`` prints a header followed by rows such as::

        fe80::1%en0    0:1b:63:aa:bb:cc    en0 23h59m58s S R

    Args:
        output: Raw command output

    Returns:
        List of NeighborEntry records with IPv6 addresses only
    """
    entries: List[NeighborEntry] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line or line.lower().startswith("neighbor"):
            continue

        parts = line.split()
        if "lladdr" in parts:
            entry = _parse_neighbor_line(line)
        elif len(parts) >= 3 and _is_ip(parts[0]):
            mac = normalize_mac(parts[1])
            entry = None
            if mac is not None and mac not in _IGNORED_MACS:
                entry = NeighborEntry(parts[0], mac, parts[2], _entry_status(line))
        else:
            entry = None

        if entry is not None and ":" in entry.ip:
            entries.append(entry)
    return entries


def parse_nslookup_output(output: str) -> Optional[str]:
    """
    Extract the PTR hostname from ``nslookup <ip>`` output.

    Looks for lines such as ``1.1.168.192.in-addr.arpa  name = router.lan.``.

    Args:
        output: Raw command output

    Returns:
        Hostname without trailing dot, or None
    """
    for line in output.splitlines():
        if "name =" in line:
            hostname = line.split("name =", 1)[1].strip().rstrip(".")
            if hostname:
                return hostname
    return None


def parse_dig_output(output: str) -> Optional[str]:
    """
    Extract the PTR hostname from ``dig -x <ip> +short`` output.

    Args:
        output: Raw command output

    Returns:
        First hostname without trailing dot, or None
    """
    for line in output.splitlines():
        candidate = line.strip()
        if not candidate or candidate.startswith(";") or " " in candidate:
            continue
        hostname = candidate.rstrip(".")
        if hostname and not _is_ip(hostname):
            return hostname
    return None
