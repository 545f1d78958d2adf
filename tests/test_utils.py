"""Tests for address helpers, command-output parsers and error classification."""

import socket
import subprocess

import pytest

from lan_scanner.utils import command_parsers
from lan_scanner.utils.command_runner import ping_command
from lan_scanner.utils.error_handler import (
    CapabilityUnavailableError,
    ErrorContext,
    ErrorSeverity,
    ErrorType,
    ProbeTimeoutError,
    ToolValidator,
)
from lan_scanner.utils.network_utils import (
    LocalPrefix,
    eui64_interface_id,
    expand_targets,
    generate_ip_range,
    is_valid_ip,
    neighbor_addresses,
    predict_ipv6_addresses,
)


class TestNetworkUtils:
    """Test address handling."""

    def test_valid_addresses(self):
        assert is_valid_ip("192.168.1.10")
        assert is_valid_ip("fe80::1%eth0")
        assert not is_valid_ip("192.168.1.300")
        assert not is_valid_ip("printer.local")

    def test_neighbors_stay_inside_host_range(self):
        assert neighbor_addresses("192.168.1.10") == [
            "192.168.1.7", "192.168.1.8", "192.168.1.9",
            "192.168.1.11", "192.168.1.12", "192.168.1.13",
        ]
        assert neighbor_addresses("192.168.1.2", radius=3) == [
            "192.168.1.1", "192.168.1.3", "192.168.1.4", "192.168.1.5",
        ]
        assert neighbor_addresses("192.168.1.253", radius=3)[-1] == "192.168.1.254"
        assert neighbor_addresses("fe80::1") == []

    def test_expand_targets(self):
        expanded = expand_targets(["10.0.0.0/30", "10.0.0.5-7", "10.0.0.1"])
        assert expanded == ["10.0.0.1", "10.0.0.2", "10.0.0.5", "10.0.0.6", "10.0.0.7"]

    def test_expand_targets_rejects_garbage(self):
        with pytest.raises(ValueError):
            expand_targets(["not-an-address"])
        with pytest.raises(ValueError):
            expand_targets(["10.0.0.0/8"], max_hosts=1024)

    def test_generate_ip_range_order(self):
        with pytest.raises(ValueError):
            generate_ip_range("10.0.0.9", "10.0.0.1")

    def test_eui64(self):
        interface_id = eui64_interface_id("00:1b:63:aa:bb:cc")
        assert interface_id == 0x021B63FFFEAABBCC

    def test_predict_ipv6_addresses(self):
        import ipaddress

        prefix = LocalPrefix(ipaddress.IPv6Network("2001:db8:1:2::/64"))
        link_local = LocalPrefix(ipaddress.IPv6Network("fe80::/64"), "eth0")
        candidates = predict_ipv6_addresses("192.168.1.10", [prefix, link_local])

        assert "2001:db8:1:2::a" in candidates
        assert "2001:db8:1:2::1:a" in candidates
        assert "2001:db8:1:2::c0a8:10a" in candidates
        assert "fe80::a%eth0" in candidates
        assert predict_ipv6_addresses("fe80::1", [prefix]) == []


class TestCommandParsers:
    """Test parsing of system utility output."""

    LINUX_PING = (
        "PING 192.168.1.1 (192.168.1.1) 56(84) bytes of data.\n"
        "64 bytes from 192.168.1.1: icmp_seq=1 ttl=64 time=0.512 ms\n\n"
        "1 packets transmitted, 1 received, 0% packet loss, time 0ms\n"
    )
    WINDOWS_PING = (
        "Pinging 192.168.1.1 with 32 bytes of data:\n"
        "Reply from 192.168.1.1: bytes=32 time<1ms TTL=128\n"
    )

    def test_ping_reply(self):
        reply = command_parsers.parse_ping_output(self.LINUX_PING, "192.168.1.1")
        assert reply.alive
        assert reply.latency_ms == pytest.approx(0.512)
        assert reply.ttl == 64

        reply = command_parsers.parse_ping_output(self.WINDOWS_PING, "192.168.1.1")
        assert reply.alive
        assert reply.ttl == 128

    def test_ping_failure(self):
        unreachable = "Reply from 192.168.1.5: Destination host unreachable.\n"
        assert not command_parsers.parse_ping_output(unreachable, "192.168.1.5").alive
        lost = "1 packets transmitted, 0 received, 100% packet loss, time 0ms\n"
        assert not command_parsers.parse_ping_output(lost, "192.168.1.5", 1).alive
        assert not command_parsers.parse_ping_output("", "192.168.1.5").alive

    def test_arp_table_layouts(self):
        output = (
            "router (192.168.1.1) at 00:11:22:33:44:55 [ether] on eth0\n"
            "? (192.168.1.9) at <incomplete> on eth0\n"
            "192.168.1.7 dev eth0 lladdr 0:1b:63:a:b:c REACHABLE\n"
            "192.168.1.8 dev eth0  FAILED\n"
            "Interface: 192.168.1.50 --- 0x4\n"
            "  Internet Address      Physical Address      Type\n"
            "  192.168.1.20          00-50-56-c0-00-08     dynamic\n"
            "  192.168.1.255         ff-ff-ff-ff-ff-ff     static\n"
        )
        entries = command_parsers.parse_arp_table(output)
        assert [entry.ip for entry in entries] == ["192.168.1.1", "192.168.1.7", "192.168.1.20"]
        assert entries[0].interface == "eth0"
        assert entries[1].mac == "00:1b:63:0a:0b:0c"
        assert entries[2].mac == "00:50:56:c0:00:08"

    def test_ipv6_neighbors(self):
        output = (
            "fe80::1 dev eth0 lladdr 00:11:22:33:44:55 router REACHABLE\n"
            "192.168.1.1 dev eth0 lladdr 00:11:22:33:44:55 REACHABLE\n"
            "Neighbor                        Linklayer Address  Netif Expire    S Flags\n"
            "fe80::2%en0                     0:1b:63:aa:bb:cc   en0 23h59m58s S R\n"
        )
        entries = command_parsers.parse_ipv6_neighbors(output)
        assert [entry.ip for entry in entries] == ["fe80::1", "fe80::2%en0"]
        assert entries[1].interface == "en0"

    def test_reverse_lookup_output(self):
        nslookup = "1.1.168.192.in-addr.arpa\tname = router.lan.\n"
        assert command_parsers.parse_nslookup_output(nslookup) == "router.lan"
        assert command_parsers.parse_nslookup_output("** server can't find\n") is None
        assert command_parsers.parse_dig_output("nas.home.\n") == "nas.home"
        assert command_parsers.parse_dig_output(";; connection timed out\n") is None

    def test_normalize_mac(self):
        assert command_parsers.normalize_mac("AA-BB-CC-DD-EE-FF") == "aa:bb:cc:dd:ee:ff"
        assert command_parsers.normalize_mac("garbage") is None


class TestCommandRunner:
    """Test command line construction."""

    def test_ping_commands(self):
        assert ping_command("10.0.0.1", 0.5, "windows") == ["ping", "-n", "1", "-w", "500", "10.0.0.1"]
        assert ping_command("10.0.0.1", 0.5, "linux") == ["ping", "-c", "1", "-W", "0.5", "10.0.0.1"]
        assert ping_command("10.0.0.1", 2.0, "linux") == ["ping", "-c", "1", "-W", "2", "10.0.0.1"]
        assert ping_command("fe80::1%en0", 1.0, "darwin") == ["ping6", "-c", "1", "fe80::1%en0"]
        assert "-6" in ping_command("2001:db8::1", 1.0, "linux")

    def test_linux_wait_is_never_zero(self):
        assert ping_command("10.0.0.1", 0.0, "linux")[4] == "0.05"


class TestErrorHandler:
    """Test failure classification and bookkeeping."""

    @pytest.mark.parametrize("error,expected", [
        (CapabilityUnavailableError("no raw sockets"), ErrorType.CAPABILITY_UNAVAILABLE),
        (ProbeTimeoutError("late"), ErrorType.TIMEOUT),
        (socket.timeout(), ErrorType.TIMEOUT),
        (subprocess.TimeoutExpired("ping", 1), ErrorType.TIMEOUT),
        (PermissionError("denied"), ErrorType.CAPABILITY_UNAVAILABLE),
        (ValueError("bad reply"), ErrorType.PROTOCOL_ERROR),
        (ConnectionRefusedError(), ErrorType.UNREACHABLE),
    ])
    def test_classify(self, error_handler, error, expected):
        assert error_handler.classify(error) is expected

    def test_statistics(self, error_handler):
        error_handler.record_probe_failure(ProbeTimeoutError("late"), "ICMP Ping", "10.0.0.1")
        error_handler.record_probe_failure(ValueError("bad"), "UPnP/SSDP", "10.0.0.2")
        stats = error_handler.get_statistics()
        assert stats["timeout"] == 1
        assert stats["protocol_error"] == 1

        error_handler.reset_statistics()
        assert sum(error_handler.get_statistics().values()) == 0

    def test_handle_error_returns_context_type(self, error_handler):
        context = ErrorContext(
            error_type=ErrorType.CONFIGURATION_ERROR,
            severity=ErrorSeverity.HIGH,
            operation="load",
            component="ConfigLoader",
        )
        assert error_handler.handle_error(ValueError("bad"), context) is ErrorType.CONFIGURATION_ERROR

    def test_degraded_probes(self, error_handler, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda tool: "/bin/ping" if tool == "ping" else None)
        degraded = ToolValidator(error_handler).degraded_probes()
        assert "icmp" not in degraded
        assert degraded["arp"] == ["ip/arp"]
        assert degraded["ipv6"] == ["ip/ndp"]


class TestLogger:
    """Test level filtering and output routing."""

    def test_levels_and_streams(self, capsys):
        from lan_scanner.utils.logger import Logger, LogLevel

        log = Logger("test", LogLevel.WARNING)
        log.info("hidden")
        log.warning("careful", target="10.0.0.1")
        log.error("broken", exception=ValueError("bad"))

        captured = capsys.readouterr()
        assert "hidden" not in captured.out
        assert "careful" in captured.out and "target=10.0.0.1" in captured.out
        assert "broken" in captured.err and "ValueError: bad" in captured.err

    def test_process_wide_level(self, capsys):
        import importlib
        logger_module = importlib.import_module("lan_scanner.utils.logger")

        previous = logger_module._default_level
        try:
            logger_module.set_log_level(logger_module.LogLevel.DEBUG)
            logger_module.get_logger("test").debug("details")
        finally:
            logger_module.set_log_level(previous)
        assert "details" in capsys.readouterr().out
