"""
TCP service probe for the LAN scanner.

This probe connects to a list of well-known service ports on each target in
parallel. A host is active as soon as one port accepts a connection; open
web ports are additionally queried with a lightweight HTTP GET to capture
the status code and server banner.
"""

import time
from typing import Any, Dict, List, Optional

import requests
import urllib3

from .base_probe import BaseProbe, elapsed_ms
from ..core.data_models import ProbeConfig, ProbeKind, ProbeResult, ScanTarget
from ..utils.network_utils import sweep_tcp_ports

# Device web interfaces almost always use self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

COMMON_PORTS: Dict[int, str] = {
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    110: "POP3",
    143: "IMAP",
    443: "HTTPS",
    993: "IMAPS",
    995: "POP3S",
    1433: "SQL Server",
    3306: "MySQL",
    3389: "RDP",
    5432: "PostgreSQL",
    8080: "HTTP (Alt)",
    8443: "HTTPS (Alt)",
    9000: "Development",
    3000: "Node.js",
    5000: "Flask",
    8000: "Django",
}

WEB_PORTS = (80, 443)
DATABASE_PORTS = frozenset({1433, 3306, 5432})

# (connect, read) seconds for banner requests
BANNER_TIMEOUT = (1.0, 2.0)


class TCPProbe(BaseProbe):
    """
    TCP connect sweep over common service ports.

    Supported ``params``:
        ports: list of ports to try instead of COMMON_PORTS
        fetch_banners: set False to skip the HTTP banner requests
    """

    kind = ProbeKind.TCP
    display_name = "TCP Port Scan"
    description = "Connects to common service ports to find hosts that filter ping"
    priority = 2
    DEFAULT_CONFIG = ProbeConfig(timeout=0.8, max_concurrency=100, request_delay=0.0)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.session = requests.Session()
        self.session.verify = False

    def is_available(self) -> bool:
        return True

    @property
    def ports(self) -> List[int]:
        return list(self.config.params.get("ports") or COMMON_PORTS)

    def probe_one(self, target: ScanTarget) -> Optional[ProbeResult]:
        started = time.monotonic()
        open_ports = sweep_tcp_ports(target.address, self.ports, self.config.timeout)
        latency = elapsed_ms(started)

        if not open_ports:
            return None

        metadata: Dict[str, Any] = {
            "services": {port: COMMON_PORTS.get(port, "Unknown") for port in open_ports},
            "open_port_count": len(open_ports),
            "website_available": any(port in WEB_PORTS for port in open_ports),
            "ssh_available": 22 in open_ports,
            "database_available": any(port in DATABASE_PORTS for port in open_ports),
        }

        if self.config.params.get("fetch_banners", True):
            for port in open_ports:
                if port in WEB_PORTS:
                    web_info = self._fetch_web_info(target.address, port)
                    if web_info:
                        metadata[f"web_info_{port}"] = web_info

        return self._make_result(target, latency, open_ports=tuple(open_ports), metadata=metadata)

    def _fetch_web_info(self, address: str, port: int) -> Optional[Dict[str, Any]]:
        """
        Issue a GET against a web port and summarize the response headers.

        Args:
            address: Target address
            port: 80 or 443

        Returns:
            Dictionary with status_code, server, content_type; None on failure
        """
        scheme = "https" if port == 443 else "http"
        host = address
        if ":" in address:
            host = f"[{address.replace('%', '%25')}]"
        url = f"{scheme}://{host}:{port}/"

        try:
            response = self.session.get(
                url, timeout=BANNER_TIMEOUT, allow_redirects=False, stream=True
            )
        except requests.exceptions.RequestException as e:
            self.logger.debug(f"Banner request failed for {url}", error=type(e).__name__)
            return None

        try:
            return {
                "status_code": response.status_code,
                "server": response.headers.get("Server", "Unknown"),
                "content_type": response.headers.get("Content-Type", "Unknown"),
            }
        finally:
            response.close()
