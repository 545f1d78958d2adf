"""
Protocol probes for the LAN scanner.

This package contains the base probe interface and the seven probe
implementations (ICMP, TCP, ARP, mDNS, UPnP, reverse DNS, IPv6).
"""

from .base_probe import BaseProbe, BatchProgress
from .icmp_probe import ICMPProbe
from .tcp_probe import TCPProbe
from .arp_probe import ARPProbe, lookup_vendor
from .mdns_probe import MDNSProbe
from .upnp_probe import UPnPProbe
from .dns_probe import ReverseDNSProbe
from .ipv6_probe import IPv6Probe

__all__ = [
    'BaseProbe',
    'BatchProgress',
    'ICMPProbe',
    'TCPProbe',
    'ARPProbe',
    'lookup_vendor',
    'MDNSProbe',
    'UPnPProbe',
    'ReverseDNSProbe',
    'IPv6Probe'
]
