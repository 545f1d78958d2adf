"""
Network utility functions for address handling and low-level probing.

This module provides helper functions for IP address validation, target
expansion (CIDR networks and ranges), breadth-first neighbor computation,
a non-blocking TCP port sweep, timeout-bounded blocking calls, and local
IPv6 prefix discovery.
"""

import errno
import ipaddress
import selectors
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

import psutil

from .error_handler import ProbeTimeoutError

# Pool for blocking resolver calls that have no timeout parameter of their own
_blocking_call_pool = ThreadPoolExecutor(max_workers=32, thread_name_prefix="blocking-call")

_CONNECT_IN_PROGRESS = {errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY, 10035}


@dataclass(frozen=True)
class LocalPrefix:
    """
    A /64 IPv6 prefix configured on a local interface.

    Attributes:
        network: The /64 network
        scope: Interface name required to reach link-local addresses, else None
    """
    network: ipaddress.IPv6Network
    scope: Optional[str] = None

    @property
    def is_link_local(self) -> bool:
        return self.network.network_address.is_link_local


def is_valid_ip(ip_address: str) -> bool:
    """
    Check if a string represents a valid IPv4 or IPv6 address.

    An IPv6 zone suffix (``fe80::1%eth0``) is accepted.

    Args:
        ip_address: String to validate

    Returns:
        bool: True if valid address, False otherwise
    """
    try:
        ipaddress.ip_address(ip_address.split("%", 1)[0])
        return True
    except (ValueError, AttributeError):
        return False


def is_ipv4(ip_address: str) -> bool:
    try:
        ipaddress.IPv4Address(ip_address)
        return True
    except ValueError:
        return False


def last_octet(ip_address: str) -> Optional[int]:
    """Return the final octet of an IPv4 address, or None for anything else."""
    if not is_ipv4(ip_address):
        return None
    return int(ip_address.rsplit(".", 1)[1])


def neighbor_addresses(ip_address: str, radius: int = 3) -> List[str]:
    """
    Compute the IPv4 addresses surrounding a host within its /24.

    Only addresses whose last octet stays within 1..254 are returned; the
    address itself is excluded.

    Args:
        ip_address: IPv4 address of the detected host
        radius: Maximum distance of the last octet

    Returns:
        List[str]: Neighbor addresses in ascending order
    """
    octet = last_octet(ip_address)
    if octet is None:
        return []

    prefix = ip_address.rsplit(".", 1)[0]
    return [
        f"{prefix}.{octet + offset}"
        for offset in range(-radius, radius + 1)
        if offset != 0 and 1 <= octet + offset <= 254
    ]


def generate_ip_range(start_ip: str, end_ip: str) -> List[str]:
    """
    Generate a list of IP addresses between start and end (inclusive).

    Args:
        start_ip: Starting IP address
        end_ip: Ending IP address

    Returns:
        List[str]: List of IP addresses in the range

    Raises:
        ValueError: If IP addresses are invalid or start > end
    """
    start = ipaddress.ip_address(start_ip)
    end = ipaddress.ip_address(end_ip)

    if start.version != end.version:
        raise ValueError(f"Range mixes address families: {start_ip} - {end_ip}")
    if start > end:
        raise ValueError(f"Start IP {start_ip} is greater than end IP {end_ip}")

    return [str(ipaddress.ip_address(value)) for value in range(int(start), int(end) + 1)]


def expand_targets(specs: Iterable[str], max_hosts: int = 65536) -> List[str]:
    """
    Expand target specifications into individual addresses.

    Accepts single addresses, CIDR networks (``192.168.1.0/24``, hosts only)
    and dash ranges (``192.168.1.10-192.168.1.20`` or ``192.168.1.10-20``).
    Duplicates are removed while keeping first-seen order.

    Args:
        specs: Target specifications
        max_hosts: Upper bound on the number of expanded addresses

    Returns:
        List[str]: Expanded addresses

    Raises:
        ValueError: If a specification is invalid or the expansion is too large
    """
    addresses: List[str] = []
    for spec in specs:
        spec = spec.strip()
        if not spec:
            continue
        if "/" in spec:
            network = ipaddress.ip_network(spec, strict=False)
            if network.num_addresses > max_hosts + 2:
                raise ValueError(f"Network {spec} is larger than {max_hosts} hosts")
            hosts = list(network.hosts()) or [network.network_address]
            addresses.extend(str(host) for host in hosts)
        elif "-" in spec:
            start, end = spec.split("-", 1)
            if "." not in end and ":" not in end:
                end = f"{start.rsplit('.', 1)[0]}.{end}"
            addresses.extend(generate_ip_range(start, end))
        elif is_valid_ip(spec):
            addresses.append(spec)
        else:
            raise ValueError(f"Invalid target: {spec}")

        if len(addresses) > max_hosts:
            raise ValueError(f"Target list exceeds {max_hosts} addresses")

    return list(dict.fromkeys(addresses))


def call_with_timeout(func: Callable[..., Any], timeout: float, *args: Any) -> Any:
    """
    Run a blocking call that lacks its own timeout, bounded by ``timeout``.

    The worker thread is abandoned if the deadline passes; the call's
    eventual result is discarded.

    Raises:
        ProbeTimeoutError: If the call did not finish in time
    """
    future = _blocking_call_pool.submit(func, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        raise ProbeTimeoutError(f"{getattr(func, '__name__', 'call')} exceeded {timeout:.2f}s")


def _socket_address(ip_address: str, port: int):
    family = socket.AF_INET6 if ":" in ip_address else socket.AF_INET
    info = socket.getaddrinfo(
        ip_address, port, family, socket.SOCK_STREAM, 0, socket.AI_NUMERICHOST
    )
    return family, info[0][4]


def sweep_tcp_ports(ip_address: str, ports: Iterable[int], timeout: float) -> List[int]:
    """
    Attempt TCP connections to many ports of one host in parallel.

    All connects are started non-blocking at once and a selector waits for
    them until the shared deadline expires, so the whole sweep takes at most
    ``timeout`` seconds regardless of the number of ports.

    Args:
        ip_address: IPv4 or IPv6 address (zone suffix allowed)
        ports: Ports to try
        timeout: Overall deadline in seconds

    Returns:
        List[int]: Ports that accepted the connection, sorted
    """
    open_ports: List[int] = []
    selector = selectors.DefaultSelector()
    deadline = time.monotonic() + timeout

    try:
        for port in dict.fromkeys(ports):
            family, address = _socket_address(ip_address, port)
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.setblocking(False)
            result = sock.connect_ex(address)
            if result == 0:
                open_ports.append(port)
                sock.close()
            elif result in _CONNECT_IN_PROGRESS:
                selector.register(sock, selectors.EVENT_WRITE, port)
            else:
                sock.close()

        while selector.get_map():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            for key, _events in selector.select(remaining):
                sock = key.fileobj
                if sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR) == 0:
                    open_ports.append(key.data)
                selector.unregister(sock)
                sock.close()
    finally:
        for key in list(selector.get_map().values()):
            selector.unregister(key.fileobj)
            key.fileobj.close()
        selector.close()

    return sorted(open_ports)


def local_ipv6_prefixes() -> List[LocalPrefix]:
    """
    Collect the /64 prefixes of the IPv6 addresses configured locally.

    Returns:
        List[LocalPrefix]: Unique prefixes; loopback addresses are ignored
    """
    prefixes: List[LocalPrefix] = []
    for interface, addresses in psutil.net_if_addrs().items():
        for address in addresses:
            if address.family != socket.AF_INET6:
                continue
            base = address.address.split("%", 1)[0]
            try:
                ip = ipaddress.IPv6Address(base)
            except ValueError:
                continue
            if ip.is_loopback or ip.is_unspecified:
                continue
            network = ipaddress.IPv6Network(f"{ip}/64", strict=False)
            prefix = LocalPrefix(network, interface if ip.is_link_local else None)
            if prefix not in prefixes:
                prefixes.append(prefix)
    return prefixes


def has_ipv6_interface() -> bool:
    """Check whether any non-loopback interface carries an IPv6 address."""
    try:
        return bool(local_ipv6_prefixes())
    except (OSError, RuntimeError):
        return False


def eui64_interface_id(mac_address: str) -> int:
    """
    Derive the modified EUI-64 interface identifier from a MAC address.

    Args:
        mac_address: Colon-separated MAC address

    Returns:
        int: 64-bit interface identifier
    """
    octets = [int(part, 16) for part in mac_address.split(":")]
    if len(octets) != 6:
        raise ValueError(f"Invalid MAC address: {mac_address}")
    octets[0] ^= 0x02
    eui = octets[:3] + [0xFF, 0xFE] + octets[3:]
    return int.from_bytes(bytes(eui), "big")


def predict_ipv6_addresses(
    ipv4_address: str,
    prefixes: Iterable[LocalPrefix],
    mac_address: Optional[str] = None,
) -> List[str]:
    """
    Guess IPv6 addresses a dual-stack host may use, from its IPv4 address.

    For every local /64 prefix the candidates are ``prefix::<o4 hex>``,
    ``prefix::<o3 hex>:<o4 hex>``, the IPv4-embedded form
    ``prefix::a.b.c.d`` and, when the MAC is known, the EUI-64 address.

    Args:
        ipv4_address: IPv4 address of the host
        prefixes: Local prefixes to combine with
        mac_address: MAC address of the host, if known

    Returns:
        List[str]: Candidate addresses (link-local ones carry a zone suffix)
    """
    if not is_ipv4(ipv4_address):
        return []

    ipv4_value = int(ipaddress.IPv4Address(ipv4_address))
    third, fourth = (ipv4_value >> 8) & 0xFF, ipv4_value & 0xFF
    interface_ids = [fourth, (third << 16) | fourth, ipv4_value]
    if mac_address:
        interface_ids.append(eui64_interface_id(mac_address))

    candidates: List[str] = []
    for prefix in prefixes:
        base = int(prefix.network.network_address)
        for interface_id in interface_ids:
            candidate = str(ipaddress.IPv6Address(base | interface_id))
            if prefix.scope:
                candidate = f"{candidate}%{prefix.scope}"
            if candidate not in candidates:
                candidates.append(candidate)
    return candidates
