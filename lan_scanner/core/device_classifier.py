"""
Device classification for the LAN scanner.

This module guesses what kind of device answered a probe from the clues the
probes collect:
- hostnames learned through reverse DNS
- mDNS/Bonjour service types
- UPnP SSDP ``SERVER`` headers and device-description ``deviceType`` URNs

Classification is rule based: each rule lists case-insensitive substrings and
the first matching rule (highest priority first) wins.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class ClassificationRule:
    """
    A rule mapping textual clues to a device type label.

    Attributes:
        name: Human-readable name for the rule
        device_type: Label assigned when the rule matches
        priority: Priority of the rule (higher = evaluated first)
        patterns: Case-insensitive substrings, any of which triggers the rule
    """
    name: str
    device_type: str
    priority: int
    patterns: List[str] = field(default_factory=list)

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(pattern in lowered for pattern in self.patterns)


UNKNOWN_HOSTNAME_TYPE = "Unknown Device"
GENERIC_MDNS_TYPE = "mDNS Device"
GENERIC_UPNP_TYPE = "UPnP Device"
UNKNOWN = "Unknown"


class DeviceClassifier:
    """
    Rule-based device classifier shared by the DNS, mDNS and UPnP probes.
    """

    def __init__(self):
        """Initialize the classifier with its predefined rule sets."""
        self.hostname_rules = self._sorted(self._initialize_hostname_rules())
        self.mdns_rules = self._sorted(self._initialize_mdns_rules())
        self.upnp_server_rules = self._sorted(self._initialize_upnp_server_rules())
        self.upnp_device_rules = self._sorted(self._initialize_upnp_device_rules())
        self.manufacturer_database = self._initialize_manufacturer_database()

    def classify_hostname(self, hostname: Optional[str]) -> str:
        """
        Guess the device type from a hostname.

        Args:
            hostname: Hostname learned through reverse DNS

        Returns:
            Device type label, or "Unknown Device"
        """
        return self._first_match(self.hostname_rules, hostname, UNKNOWN_HOSTNAME_TYPE)

    def classify_mdns_service(self, service_type: Optional[str]) -> str:
        """
        Guess the device type from an advertised mDNS service type.

        Args:
            service_type: Service type such as ``_airplay._tcp.local.``

        Returns:
            Device type label, or "mDNS Device"
        """
        return self._first_match(self.mdns_rules, service_type, GENERIC_MDNS_TYPE)

    def classify_upnp_server(self, server: Optional[str]) -> str:
        """
        Guess the device type from an SSDP ``SERVER`` header.

        Args:
            server: Header value, e.g. ``Linux/3.14 UPnP/1.0 router/1.2``

        Returns:
            Device type label, or "UPnP Device"
        """
        return self._first_match(self.upnp_server_rules, server, GENERIC_UPNP_TYPE)

    def classify_upnp_device_type(self, device_type: Optional[str]) -> str:
        """
        Simplify a UPnP ``deviceType`` URN.

        Args:
            device_type: URN such as
                ``urn:schemas-upnp-org:device:InternetGatewayDevice:1``

        Returns:
            Simplified label, or "UPnP Device"
        """
        return self._first_match(self.upnp_device_rules, device_type, GENERIC_UPNP_TYPE)

    def manufacturer_from_server(self, server: Optional[str]) -> str:
        """
        Identify a manufacturer or software stack from an SSDP ``SERVER`` header.

        Args:
            server: Header value

        Returns:
            Manufacturer name, or "Unknown"
        """
        if not server:
            return UNKNOWN
        lowered = server.lower()
        for keyword, manufacturer in self.manufacturer_database.items():
            if keyword in lowered:
                return manufacturer
        return UNKNOWN

    def model_from_server(self, server: Optional[str]) -> str:
        """Extract a ``vX.Y[.Z]`` version string from a ``SERVER`` header."""
        if not server:
            return UNKNOWN
        match = re.search(r"(\d+\.\d+(?:\.\d+)?)", server)
        return f"v{match.group(1)}" if match else UNKNOWN

    @staticmethod
    def _sorted(rules: List[ClassificationRule]) -> List[ClassificationRule]:
        return sorted(rules, key=lambda rule: rule.priority, reverse=True)

    @staticmethod
    def _first_match(rules: List[ClassificationRule], text: Optional[str], default: str) -> str:
        if not text:
            return default
        for rule in rules:
            if rule.matches(text):
                return rule.device_type
        return default

    def _initialize_hostname_rules(self) -> List[ClassificationRule]:
        """
        Initialize the hostname keyword rules.

        Returns:
            List of ClassificationRule objects
        """
        return [
            ClassificationRule("Gateway hostnames", "Router/Gateway", 100,
                               ["router", "gateway", "gw", "modem"]),
            ClassificationRule("Apple hostnames", "Apple Device", 90,
                               ["iphone", "ipad", "macbook", "imac", "mac-", "appletv"]),
            ClassificationRule("Android hostnames", "Android Device", 80,
                               ["android", "samsung", "xiaomi", "huawei", "oneplus"]),
            ClassificationRule("Computer hostnames", "Computer", 70,
                               ["pc", "desktop", "laptop", "computer", "win", "ubuntu", "linux"]),
            ClassificationRule("Printer hostnames", "Printer", 60,
                               ["printer", "print", "hp-", "canon", "epson"]),
            ClassificationRule("Storage hostnames", "NAS/Storage", 50,
                               ["nas", "storage", "synology", "qnap", "drobo"]),
            ClassificationRule("Television hostnames", "Smart TV", 40,
                               ["tv", "smart", "roku", "chromecast", "firetv"]),
            ClassificationRule("Camera hostnames", "IP Camera", 30,
                               ["camera", "cam", "webcam", "ipcam"]),
            ClassificationRule("Console hostnames", "Game Console", 20,
                               ["xbox", "playstation", "ps4", "ps5", "nintendo", "switch"]),
        ]

    def _initialize_mdns_rules(self) -> List[ClassificationRule]:
        return [
            ClassificationRule("AirPlay services", "Apple TV/AirPlay Device", 100, ["airplay", "raop"]),
            ClassificationRule("HomeKit services", "HomeKit Device", 90, ["homekit", "_hap."]),
            ClassificationRule("iOS pairing service", "iOS Device", 80, ["apple-mobdev"]),
            ClassificationRule("SSH service", "SSH Server", 70, ["_ssh."]),
            ClassificationRule("Web services", "Web Server", 60, ["_http.", "_https."]),
        ]

    def _initialize_upnp_server_rules(self) -> List[ClassificationRule]:
        return [
            ClassificationRule("Gateway servers", "Router/Gateway", 100, ["router", "gateway"]),
            ClassificationRule("Printer servers", "Printer", 90, ["printer"]),
            ClassificationRule("Media servers", "Media Server", 80, ["media", "dlna"]),
            ClassificationRule("Storage servers", "NAS/Storage", 70, ["nas", "storage"]),
            ClassificationRule("Camera servers", "IP Camera", 60, ["camera", "webcam"]),
            ClassificationRule("Television servers", "Smart TV", 50, ["tv", "smart"]),
        ]

    def _initialize_upnp_device_rules(self) -> List[ClassificationRule]:
        return [
            ClassificationRule("Internet gateway", "Router/Gateway", 100, ["internetgatewaydevice"]),
            ClassificationRule("Media server", "Media Server", 90, ["mediaserver"]),
            ClassificationRule("Media renderer", "Media Renderer", 80, ["mediarenderer"]),
            ClassificationRule("Printer", "Printer", 70, ["printer"]),
        ]

    def _initialize_manufacturer_database(self) -> Dict[str, str]:
        """
        Initialize the SERVER-header keyword to manufacturer table.

        Checked in insertion order, so specific vendors must not be shadowed
        by generic stack names listed before them.
        """
        return {
            "fritz": "AVM Fritz",
            "netgear": "Netgear",
            "linksys": "Linksys",
            "dlink": "D-Link",
            "tplink": "TP-Link",
            "asus": "ASUS",
            "miniupnpd": "MiniUPnP",
            "windows": "Microsoft",
            "linux": "Linux",
            "igd": "Internet Gateway Device",
            "upnp": "Generic UPnP",
        }
