"""
UPnP/SSDP probe for the LAN scanner.

Devices implementing UPnP answer an SSDP M-SEARCH with their description
location. This probe sends one multicast search per batch and matches the
responders against the targets; targets that stayed silent get a unicast
search and a direct request for the usual description documents.
"""

import re
import socket
import threading
import time
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import requests

from .base_probe import BaseProbe, BatchProgress, ProgressCallback, ResultCallback, elapsed_ms
from ..core.data_models import ProbeConfig, ProbeKind, ProbeResult, ScanTarget
from ..core.device_classifier import GENERIC_UPNP_TYPE, UNKNOWN, DeviceClassifier
from ..utils.error_handler import ProtocolParseError
from ..utils.network_utils import is_ipv4, sweep_tcp_ports

SSDP_ADDRESS = "239.255.255.250"
SSDP_PORT = 1900
SSDP_MX = 3

DESCRIPTION_PORTS = (49152, 49153, 49154, 80)
DESCRIPTION_PATHS = ("/rootDesc.xml", "/description.xml", "/device.xml", "/upnp/desc.xml")

DEFAULT_CACHE_TTL = 30.0

_SERVER_NAME_PATTERNS = (
    re.compile(r"([A-Za-z]+)\s*[/\s]"),
    re.compile(r"^([A-Za-z0-9\-]+)"),
)


def build_msearch_request(mx: int = SSDP_MX) -> bytes:
    """Build the SSDP discovery request for root devices."""
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {SSDP_ADDRESS}:{SSDP_PORT}\r\n"
        'MAN: "ssdp:discover"\r\n'
        "ST: upnp:rootdevice\r\n"
        f"MX: {mx}\r\n\r\n"
    ).encode("ascii")


def parse_ssdp_response(response: str) -> Optional[Dict[str, str]]:
    """
    Parse the headers of an SSDP response.

    Args:
        response: Raw response text

    Returns:
        Lower-cased header mapping, or None when there is no LOCATION header
    """
    headers: Dict[str, str] = {}
    for line in response.splitlines():
        key, separator, value = line.partition(":")
        if not separator:
            continue
        headers.setdefault(key.strip().lower(), value.strip())

    if not headers.get("location"):
        return None
    return headers


def device_name_from_ssdp(server: Optional[str], usn: Optional[str]) -> str:
    """
    Derive a display name from the SERVER or USN header.

    Args:
        server: SERVER header value
        usn: USN header value

    Returns:
        Device name, or "UPnP Device"
    """
    if server:
        for pattern in _SERVER_NAME_PATTERNS:
            match = pattern.search(server)
            if match:
                return match.group(1)

    if usn and "::" in usn:
        return usn.split("::", 1)[0].replace("uuid:", "")[:8]

    return GENERIC_UPNP_TYPE


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_device_description(document: str) -> Optional[Dict[str, Any]]:
    """
    Extract the root device's identity from a UPnP description document.

    Element namespaces are ignored.

    Args:
        document: XML description text

    Returns:
        Dictionary with friendlyName, deviceType, manufacturer, modelName and
        serviceTypes; None when the document has no device identity

    Raises:
        ProtocolParseError: If the document is not well-formed XML
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise ProtocolParseError(f"Malformed device description: {e}")

    device = next((el for el in root.iter() if _local_name(el.tag) == "device"), None)
    if device is None:
        return None

    fields: Dict[str, str] = {}
    for child in device:
        name = _local_name(child.tag)
        if name in ("friendlyName", "deviceType", "manufacturer", "modelName") and child.text:
            fields[name] = child.text.strip()

    if "friendlyName" not in fields and "deviceType" not in fields:
        return None

    service_types = [
        el.text.strip()
        for el in device.iter()
        if _local_name(el.tag) == "serviceType" and el.text
    ]
    return {
        "friendlyName": fields.get("friendlyName", GENERIC_UPNP_TYPE),
        "deviceType": fields.get("deviceType"),
        "manufacturer": fields.get("manufacturer", UNKNOWN),
        "modelName": fields.get("modelName", UNKNOWN),
        "serviceTypes": service_types,
    }


class _ResponderCache:
    def __init__(self):
        self.lock = threading.Lock()
        self.responders: Optional[Dict[str, Dict[str, str]]] = None
        self.fetched_at = 0.0


class UPnPProbe(BaseProbe):
    """
    UPnP/SSDP device discovery probe (IPv4 only).

    Supported ``params``:
        cache_ttl: seconds a multicast search snapshot is reused (default 30)
        unicast_fallback: set False to skip hosts that ignored the multicast search
    """

    kind = ProbeKind.UPNP
    display_name = "UPnP/SSDP"
    description = "Finds devices answering SSDP discovery and reads their descriptions"
    priority = 3
    DEFAULT_CONFIG = ProbeConfig(timeout=2.0, max_concurrency=50, request_delay=0.01)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.classifier = DeviceClassifier()
        self.session = requests.Session()
        self._cache = _ResponderCache()

    def is_available(self) -> bool:
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.bind(("0.0.0.0", 0))
            sock.close()
        except OSError as e:
            self.logger.debug("UDP socket could not be opened", error=e)
            return False
        return True

    def probe_one(self, target: ScanTarget) -> Optional[ProbeResult]:
        if not is_ipv4(target.address):
            return None

        started = time.monotonic()
        headers = self.discover_responders().get(target.address)
        if headers is not None:
            info = self._describe_responder(headers)
        elif self.unicast_fallback:
            info = self._unicast_discover(target.address)
        else:
            info = None

        if info is None:
            return None
        return self._device_result(target, info, elapsed_ms(started))

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

        total = len(targets)
        started = time.monotonic()
        responders = self.discover_responders()
        latency = elapsed_ms(started)

        results: List[ProbeResult] = []
        silent: List[ScanTarget] = []
        progress = BatchProgress(total, on_progress)
        for target in targets:
            headers = responders.get(target.address)
            if headers is None:
                silent.append(target)
                continue
            info = self._describe_responder(headers)
            self.record_attempt(latency, info is not None)
            if info is not None:
                result = self._device_result(target, info, latency)
                results.append(result)
                if on_result:
                    on_result(result)
            progress.advance(target.address)

        matched = total - len(silent)
        fallback_progress = None
        if on_progress:
            def fallback_progress(address: str, fraction: float) -> None:
                on_progress(address, (matched + fraction * len(silent)) / total)

        if silent and self.unicast_fallback:
            results.extend(
                self._run_batch(silent, self.run_probe, fallback_progress, on_result, abort_event)
            )
        else:
            for target in silent:
                self.record_attempt(latency, False)
                progress.advance(target.address)
        return results

    @property
    def unicast_fallback(self) -> bool:
        return bool(self.config.params.get("unicast_fallback", True))

    def discover_responders(self) -> Dict[str, Dict[str, str]]:
        """
        Return SSDP responders by address, searching if the snapshot is stale.

        A failed multicast search yields an empty snapshot.
        """
        ttl = float(self.config.params.get("cache_ttl", DEFAULT_CACHE_TTL))
        with self._cache.lock:
            fresh = time.monotonic() - self._cache.fetched_at < ttl
            if self._cache.responders is None or not fresh:
                try:
                    responders = self._ssdp_search(SSDP_ADDRESS, self.config.timeout)
                except OSError as e:
                    self.error_handler.record_probe_failure(e, self.display_name, SSDP_ADDRESS)
                    responders = {}
                self._cache.responders = responders
                self._cache.fetched_at = time.monotonic()
                self.logger.debug(f"SSDP search found {len(responders)} responders")
            return dict(self._cache.responders)

    def _ssdp_search(self, destination: str, window: float) -> Dict[str, Dict[str, str]]:
        """
        Send an M-SEARCH and collect responses for ``window`` seconds.

        Args:
            destination: Multicast group or unicast address
            window: Seconds to wait for responses

        Returns:
            Parsed response headers keyed by responder address
        """
        responders: Dict[str, Dict[str, str]] = {}
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
            sock.sendto(build_msearch_request(), (destination, SSDP_PORT))

            deadline = time.monotonic() + window
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                sock.settimeout(remaining)
                try:
                    data, (address, _port) = sock.recvfrom(65507)
                except socket.timeout:
                    break
                headers = parse_ssdp_response(data.decode("utf-8", errors="ignore"))
                if headers is not None:
                    responders.setdefault(address, headers)
                    if destination != SSDP_ADDRESS and address == destination:
                        break
        finally:
            sock.close()
        return responders

    def _unicast_discover(self, address: str) -> Optional[Dict[str, Any]]:
        """
        Query one silent host directly.

        Tries a unicast M-SEARCH first, then the description documents on
        the ports UPnP stacks commonly serve them from.
        """
        window = min(self.config.timeout, 2.0)
        try:
            headers = self._ssdp_search(address, window).get(address)
        except OSError as e:
            self.logger.debug(f"Unicast SSDP search failed for {address}", error=e)
            headers = None
        if headers is not None:
            return self._describe_responder(headers)

        for port in sweep_tcp_ports(address, DESCRIPTION_PORTS, window):
            for path in DESCRIPTION_PATHS:
                description = self._fetch_description(f"http://{address}:{port}{path}")
                if description is not None:
                    return description
        return None

    def _describe_responder(self, headers: Dict[str, str]) -> Optional[Dict[str, Any]]:
        location = headers.get("location", "")
        server = headers.get("server")

        description = None
        if urlparse(location).scheme in ("http", "https"):
            description = self._fetch_description(location)
        if description is not None:
            description.update(location=location, server=server)
            return description

        return {
            "friendlyName": device_name_from_ssdp(server, headers.get("usn")),
            "deviceType": None,
            "device_label": self.classifier.classify_upnp_server(server),
            "manufacturer": self.classifier.manufacturer_from_server(server),
            "modelName": self.classifier.model_from_server(server),
            "serviceTypes": [],
            "location": location,
            "server": server,
        }

    def _fetch_description(self, url: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.session.get(url, timeout=(1.0, self.config.timeout))
        except requests.exceptions.RequestException as e:
            self.logger.debug(f"Description request failed for {url}", error=type(e).__name__)
            return None

        if response.status_code != 200:
            return None
        try:
            return parse_device_description(response.text)
        except ProtocolParseError as e:
            self.logger.debug(f"Ignoring description from {url}", error=e)
            return None

    def _device_result(self, target: ScanTarget, info: Dict[str, Any], latency_ms: float) -> ProbeResult:
        device_type = info.get("device_label") or self.classifier.classify_upnp_device_type(
            info.get("deviceType")
        )
        services = ["UPnP"]
        if info.get("deviceType"):
            services.append("HTTP")
        services.extend(info.get("serviceTypes", []))

        return self._make_result(
            target,
            latency_ms,
            hostname=info.get("friendlyName"),
            metadata={
                "upnp_available": True,
                "device_type": device_type,
                "manufacturer": info.get("manufacturer", UNKNOWN),
                "model": info.get("modelName", UNKNOWN),
                "services": services,
                "location": info.get("location"),
                "server": info.get("server"),
            },
        )
