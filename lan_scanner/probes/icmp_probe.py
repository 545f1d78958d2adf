"""
ICMP echo probe for the LAN scanner.

This probe sends a raw ICMP echo request with scapy and waits for the echo
reply. Raw sockets need elevated privileges; the first permission failure
switches every copy of the probe over to the system ``ping`` utility.
"""

import errno
import socket
import threading
import time
from typing import Optional

from .base_probe import BaseProbe, Deadline, elapsed_ms
from ..core.data_models import ProbeConfig, ProbeKind, ProbeResult, ScanTarget
from ..utils.command_parsers import parse_ping_output
from ..utils.command_runner import ping_command


class _RawSocketState:
    """Whether raw ICMP works on this host: None until first tried."""

    def __init__(self):
        self.permitted: Optional[bool] = None
        self.lock = threading.Lock()


class ICMPProbe(BaseProbe):
    """
    ICMP echo (ping) probe.

    Raw echo via scapy is preferred because it avoids one process per target;
    the ``ping`` fallback parses ``time=... ms`` and ``ttl=`` from the tool's
    output. Scoped (link-local) IPv6 targets always use the fallback.
    """

    kind = ProbeKind.ICMP
    display_name = "ICMP Ping"
    description = "Sends ICMP echo requests to find hosts that answer ping"
    priority = 1
    DEFAULT_CONFIG = ProbeConfig(timeout=0.5, max_concurrency=200, request_delay=0.0)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._raw_state = _RawSocketState()

    def is_available(self) -> bool:
        if self._raw_sockets_permitted():
            return True
        if not self.runner.available("ping"):
            return False
        output = self.runner.run(
            ping_command("127.0.0.1", 1.0), timeout=self.AVAILABILITY_TIMEOUT
        )
        return output is not None and output.ok

    def probe_one(self, target: ScanTarget) -> Optional[ProbeResult]:
        deadline = self.start_deadline()
        if self._raw_state.permitted is not False and "%" not in target.address:
            try:
                return self._probe_raw(target, deadline.remaining())
            except PermissionError as e:
                self._disable_raw(e)
            except OSError as e:
                if e.errno not in (errno.EPERM, errno.EACCES):
                    raise
                self._disable_raw(e)

        if deadline.expired:
            return None
        return self._probe_system_ping(target, deadline)

    def _raw_sockets_permitted(self) -> bool:
        with self._raw_state.lock:
            if self._raw_state.permitted is None:
                try:
                    sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
                    sock.close()
                    self._raw_state.permitted = True
                except OSError:
                    self._raw_state.permitted = False
            return self._raw_state.permitted

    def _disable_raw(self, error: OSError) -> None:
        with self._raw_state.lock:
            if self._raw_state.permitted is not False:
                self.logger.debug(
                    "Raw ICMP not permitted, using the system ping utility",
                    error=error,
                )
            self._raw_state.permitted = False

    def _probe_raw(self, target: ScanTarget, timeout: float) -> Optional[ProbeResult]:
        """
        Send one echo request through a raw socket.

        Args:
            target: Address to ping
            timeout: Seconds to wait for the reply

        Returns:
            ProbeResult when an echo reply arrived in time, else None

        Raises:
            PermissionError: If raw sockets are not permitted
        """
        from scapy.all import ICMP, IP, IPv6, ICMPv6EchoReply, ICMPv6EchoRequest, sr1

        ipv6 = ":" in target.address
        if ipv6:
            packet = IPv6(dst=target.address) / ICMPv6EchoRequest()
        else:
            packet = IP(dst=target.address) / ICMP()

        started = time.monotonic()
        reply = sr1(packet, timeout=timeout, verbose=False)
        latency = elapsed_ms(started)

        if reply is None:
            return None

        if ipv6:
            if not reply.haslayer(ICMPv6EchoReply):
                return None
            ttl = reply[IPv6].hlim
        else:
            icmp = reply.getlayer(ICMP)
            if icmp is None or icmp.type != 0:
                return None
            ttl = reply[IP].ttl

        return self._make_result(
            target,
            latency,
            metadata={"method": "raw_icmp", "pingable": True, "ttl": ttl},
        )

    def _probe_system_ping(self, target: ScanTarget, deadline: Deadline) -> Optional[ProbeResult]:
        timeout = deadline.remaining()
        started = time.monotonic()
        output = self.runner.run(ping_command(target.address, timeout), timeout=timeout)
        if output is None:
            return None

        reply = parse_ping_output(output.text, target.address, output.returncode)
        if not reply.alive:
            return None

        latency = reply.latency_ms if reply.latency_ms is not None else elapsed_ms(started)
        return self._make_result(
            target,
            latency,
            metadata={"method": "system_ping", "pingable": True, "ttl": reply.ttl},
        )
