"""
LAN Scanner

Multi-protocol host discovery for local networks: ICMP, TCP, ARP, mDNS,
UPnP/SSDP, reverse DNS and IPv6 probes scheduled by a common orchestrator.
"""

__version__ = "1.0.0"
__author__ = "LAN Scanner Team"
