"""Tests for the probe contract and the protocol probes."""

import socket
import threading
import time

import pytest

from lan_scanner.core.data_models import ProbeConfig, ProbeKind, ScanTarget
from lan_scanner.core.device_classifier import DeviceClassifier
from lan_scanner.probes import dns_probe, ipv6_probe
from lan_scanner.probes.arp_probe import ARPProbe, lookup_vendor
from lan_scanner.probes.dns_probe import ReverseDNSProbe, extract_domain, is_local_hostname
from lan_scanner.probes.icmp_probe import ICMPProbe
from lan_scanner.probes.ipv6_probe import IPv6Probe
from lan_scanner.probes.mdns_probe import DiscoveredService, MDNSProbe
from lan_scanner.probes.tcp_probe import TCPProbe
from lan_scanner.probes.upnp_probe import (
    UPnPProbe,
    build_msearch_request,
    device_name_from_ssdp,
    parse_device_description,
    parse_ssdp_response,
)
from lan_scanner.utils.command_runner import CommandOutput
from lan_scanner.utils.error_handler import ProtocolParseError

from tests.conftest import FakeProbe, FakeRunner


def targets(*addresses):
    return [ScanTarget(address, "lab") for address in addresses]


class TestBaseProbe:
    """Test the batch contract shared by every probe."""

    def test_empty_batch_does_nothing(self, fast_config):
        probe = FakeProbe(ProbeKind.ICMP, config=fast_config)
        assert probe.probe_batch([]) == []
        assert probe.calls == []

    def test_disabled_probe_is_never_invoked(self, fast_config):
        probe = FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1"}, config=fast_config.replace(enabled=False))
        assert probe.probe_batch(targets("10.0.0.1")) == []
        assert probe.calls == []

    def test_batch_collects_results_and_progress(self, fast_config):
        probe = FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1", "10.0.0.3"}, config=fast_config)
        progress = []
        seen = []

        results = probe.probe_batch(
            targets("10.0.0.1", "10.0.0.2", "10.0.0.3"),
            on_progress=lambda address, fraction: progress.append(fraction),
            on_result=seen.append,
        )

        assert sorted(result.target for result in results) == ["10.0.0.1", "10.0.0.3"]
        assert all(result.segment == "lab" for result in results)
        assert len(seen) == 2
        assert progress == sorted(progress)
        assert progress[-1] == 1.0

    def test_concurrency_limit_is_respected(self):
        config = ProbeConfig(timeout=1.0, max_concurrency=2)
        probe = FakeProbe(ProbeKind.TCP, delay=0.02, config=config)
        probe.probe_batch(targets(*[f"10.0.0.{i}" for i in range(1, 11)]))
        assert len(probe.calls) == 10
        assert probe.max_in_flight <= 2

    def test_abort_stops_new_probes(self, fast_config):
        abort = threading.Event()
        abort.set()
        probe = FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1"}, config=fast_config)
        assert probe.probe_batch(targets("10.0.0.1", "10.0.0.2"), abort_event=abort) == []
        assert probe.calls == []

    def test_exceptions_become_missing_results(self, fast_config, error_handler):
        class ExplodingProbe(FakeProbe):
            def probe_one(self, target):
                raise socket.timeout("timed out")

        probe = ExplodingProbe(ProbeKind.ICMP, config=fast_config, error_handler=error_handler)
        assert probe.run_probe(ScanTarget("10.0.0.1")) is None
        assert error_handler.get_statistics()["timeout"] == 1

    def test_result_for_other_address_is_dropped(self, fast_config):
        class ConfusedProbe(FakeProbe):
            def probe_one(self, target):
                return self._make_result(ScanTarget("10.9.9.9"), 1.0)

        attempts = []
        probe = ConfusedProbe(ProbeKind.ICMP, config=fast_config)
        probe.set_attempt_listener(lambda kind, latency, success: attempts.append(success))
        assert probe.run_probe(ScanTarget("10.0.0.1")) is None
        assert attempts == [False]

    def test_with_config_keeps_original(self, fast_config):
        probe = FakeProbe(ProbeKind.ICMP, config=fast_config)
        copy = probe.with_config(fast_config.replace(max_concurrency=9))
        assert copy.config.max_concurrency == 9
        assert probe.config.max_concurrency == 4
        assert copy.describe()["config"]["max_concurrency"] == 9


class TestICMPProbe:
    """Test the ping fallback path."""

    def test_system_ping_fallback(self, quiet_logger):
        output = CommandOutput(0, "64 bytes from 10.0.0.1: icmp_seq=1 ttl=63 time=1.25 ms\n")
        runner = FakeRunner({"ping": output}, tools={"ping"})
        probe = ICMPProbe(logger=quiet_logger, runner=runner)
        probe._raw_state.permitted = False

        result = probe.probe_one(ScanTarget("10.0.0.1"))
        assert result is not None
        assert result.latency_ms == pytest.approx(1.25)
        assert result.metadata["method"] == "system_ping"
        assert result.metadata["ttl"] == 63
        assert runner.calls[0][0] == "ping"

    def test_silent_host(self, quiet_logger):
        output = CommandOutput(1, "1 packets transmitted, 0 received, 100% packet loss\n")
        probe = ICMPProbe(logger=quiet_logger, runner=FakeRunner({"ping": output}))
        probe._raw_state.permitted = False
        assert probe.probe_one(ScanTarget("10.0.0.2")) is None

    def test_fallback_ping_stays_within_timeout(self, quiet_logger):
        runner = FakeRunner({"ping": CommandOutput(1, "")}, tools={"ping"})
        probe = ICMPProbe(config=ProbeConfig(timeout=0.5), logger=quiet_logger, runner=runner)
        probe._raw_state.permitted = False

        assert probe.probe_one(ScanTarget("10.0.0.2")) is None
        assert len(runner.timeouts) == 1
        assert runner.timeouts[0] <= 0.5


class TestTCPProbe:
    """Test the TCP connect sweep against loopback."""

    @pytest.fixture
    def listener(self):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(("127.0.0.1", 0))
        server.listen(8)
        yield server
        server.close()

    def test_open_port_detects_host(self, listener, quiet_logger):
        port = listener.getsockname()[1]
        config = ProbeConfig(timeout=1.0, max_concurrency=4, params={"ports": [port], "fetch_banners": False})
        probe = TCPProbe(config=config, logger=quiet_logger)

        result = probe.probe_one(ScanTarget("127.0.0.1"))
        assert result is not None
        assert result.open_ports == (port,)
        assert result.metadata["open_port_count"] == 1
        assert result.metadata["services"][port] == "Unknown"

    def test_closed_port_gives_no_result(self, quiet_logger):
        probe_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        probe_socket.bind(("127.0.0.1", 0))
        port = probe_socket.getsockname()[1]
        probe_socket.close()

        config = ProbeConfig(timeout=0.5, max_concurrency=4, params={"ports": [port], "fetch_banners": False})
        probe = TCPProbe(config=config, logger=quiet_logger)
        assert probe.probe_one(ScanTarget("127.0.0.1")) is None


class TestARPProbe:
    """Test neighbor-table reconciliation."""

    TABLE = (
        "192.168.1.1 dev eth0 lladdr 00:1b:63:aa:bb:cc REACHABLE\n"
        "192.168.1.7 dev eth0 lladdr 08:00:27:00:00:01 STALE\n"
    )

    def make_probe(self, quiet_logger, output):
        runner = FakeRunner({"ip": output, "arp": output, "ping": CommandOutput(1, "")}, tools={"ip", "arp"})
        config = ProbeConfig(timeout=0.5, max_concurrency=4)
        return ARPProbe(config=config, logger=quiet_logger, runner=runner), runner

    def test_batch_reads_table_once(self, quiet_logger):
        probe, runner = self.make_probe(quiet_logger, CommandOutput(0, self.TABLE))
        progress = []
        results = probe.probe_batch(
            targets("192.168.1.1", "192.168.1.2", "192.168.1.7", "fe80::1"),
            on_progress=lambda address, fraction: progress.append(fraction),
        )

        assert {result.target: result.mac_address for result in results} == {
            "192.168.1.1": "00:1b:63:aa:bb:cc",
            "192.168.1.7": "08:00:27:00:00:01",
        }
        assert results[0].metadata["vendor"] == "Apple"
        table_reads = [call for call in runner.calls if call[0] != "ping"]
        assert len(table_reads) == 1
        assert len([call for call in runner.calls if call[0] == "ping"]) == 3
        assert progress[-1] == 1.0

    def test_unreadable_table_yields_nothing(self, quiet_logger, error_handler):
        probe, _runner = self.make_probe(quiet_logger, CommandOutput(1, "", "permission denied"))
        probe.error_handler = error_handler
        assert probe.probe_batch(targets("192.168.1.1")) == []
        assert error_handler.get_statistics()["capability_unavailable"] == 1

    def test_ipv6_target_is_ignored(self, quiet_logger):
        probe, runner = self.make_probe(quiet_logger, CommandOutput(0, self.TABLE))
        assert probe.probe_one(ScanTarget("fe80::1")) is None
        assert runner.calls == []

    @pytest.mark.parametrize("mac,vendor", [
        ("00:1B:63:11:22:33", "Apple"),
        ("00-50-56-aa-bb-cc", "VMware"),
        ("12:34:56:78:9a:bc", "Unknown"),
        ("nonsense", None),
    ])
    def test_lookup_vendor(self, mac, vendor):
        assert lookup_vendor(mac) == vendor


class TestReverseDNSProbe:
    """Test reverse lookups."""

    def test_hostname_metadata(self, quiet_logger, monkeypatch):
        probe = ReverseDNSProbe(logger=quiet_logger, runner=FakeRunner())
        monkeypatch.setattr(probe, "reverse_lookup", lambda address: "my-macbook.local")

        result = probe.probe_one(ScanTarget("192.168.1.30"))
        assert result.hostname == "my-macbook.local"
        assert result.metadata["device_type"] == "Apple Device"
        assert result.metadata["domain"] == "my-macbook.local"
        assert result.metadata["is_local"] is True

    def test_falls_back_to_nslookup(self, quiet_logger, monkeypatch):
        def no_ptr(*args):
            raise socket.herror("not found")

        monkeypatch.setattr(dns_probe.socket, "gethostbyaddr", no_ptr)
        runner = FakeRunner(
            {"nslookup": CommandOutput(0, "30.1.168.192.in-addr.arpa\tname = nas.lan.\n")},
            tools={"nslookup"},
        )
        probe = ReverseDNSProbe(logger=quiet_logger, runner=runner)
        assert probe.reverse_lookup("192.168.1.30") == "nas.lan"
        assert runner.timeouts[0] <= probe.config.timeout

    def test_lookup_chain_shares_one_budget(self, quiet_logger, monkeypatch):
        def slow_ptr(address):
            time.sleep(0.3)
            raise socket.herror("not found")

        monkeypatch.setattr(dns_probe.socket, "gethostbyaddr", slow_ptr)
        runner = FakeRunner(tools={"nslookup", "dig"})
        probe = ReverseDNSProbe(config=ProbeConfig(timeout=0.2), logger=quiet_logger, runner=runner)

        started = time.monotonic()
        assert probe.reverse_lookup("192.168.1.40") is None
        assert time.monotonic() - started < 0.5
        # the system resolver used the whole budget
        assert runner.calls == []

    def test_no_name_means_no_result(self, quiet_logger, monkeypatch):
        monkeypatch.setattr(dns_probe.socket, "gethostbyaddr", lambda address: (address, [], [address]))
        probe = ReverseDNSProbe(logger=quiet_logger, runner=FakeRunner())
        assert probe.probe_one(ScanTarget("192.168.1.31")) is None

    def test_domain_helpers(self):
        assert extract_domain("printer.office.example.com") == "example.com"
        assert extract_domain("router") == "router"
        assert is_local_hostname("NAS.LAN")
        assert not is_local_hostname("example.com")


class TestMDNSProbe:
    """Test service matching with a canned browse."""

    SERVICES = [
        DiscoveredService("Living Room._airplay._tcp.local.", "_airplay._tcp.local.",
                          "appletv.local", ("192.168.1.40",), 7000),
        DiscoveredService("nas._ssh._tcp.local.", "_ssh._tcp.local.", "nas.local", ("192.168.1.41",), 22),
    ]

    def make_probe(self, quiet_logger, monkeypatch):
        probe = MDNSProbe(config=ProbeConfig(timeout=0.1, max_concurrency=4), logger=quiet_logger)
        browses = []

        def fake_browse(service_types, window):
            browses.append(service_types)
            return list(self.SERVICES)

        monkeypatch.setattr(probe, "_browse_services", fake_browse)
        return probe, browses

    def test_batch_matches_advertisers(self, quiet_logger, monkeypatch):
        probe, browses = self.make_probe(quiet_logger, monkeypatch)
        results = probe.probe_batch(targets("192.168.1.40", "192.168.1.41", "192.168.1.42"))

        by_target = {result.target: result for result in results}
        assert set(by_target) == {"192.168.1.40", "192.168.1.41"}
        assert by_target["192.168.1.40"].hostname == "appletv.local"
        assert by_target["192.168.1.40"].metadata["device_type"] == "Apple TV/AirPlay Device"
        assert by_target["192.168.1.41"].metadata["port"] == 22
        assert len(browses) == 1

    def test_snapshot_is_cached(self, quiet_logger, monkeypatch):
        probe, browses = self.make_probe(quiet_logger, monkeypatch)
        probe.probe_one(ScanTarget("192.168.1.40"))
        probe.probe_one(ScanTarget("192.168.1.41"))
        assert len(browses) == 1

        probe.invalidate_cache()
        probe.probe_one(ScanTarget("192.168.1.40"))
        assert len(browses) == 2


class TestUPnP:
    """Test SSDP parsing and description handling."""

    RESPONSE = (
        "HTTP/1.1 200 OK\r\n"
        "CACHE-CONTROL: max-age=1800\r\n"
        "LOCATION: http://192.168.1.1:49152/rootDesc.xml\r\n"
        "SERVER: Linux/3.14 UPnP/1.0 MiniUPnPd/2.1\r\n"
        "ST: upnp:rootdevice\r\n"
        "USN: uuid:12345678-aaaa-bbbb-cccc-1234567890ab::upnp:rootdevice\r\n\r\n"
    )

    DESCRIPTION = """<?xml version="1.0"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <device>
    <deviceType>urn:schemas-upnp-org:device:InternetGatewayDevice:1</deviceType>
    <friendlyName>Home Router</friendlyName>
    <manufacturer>Netgear</manufacturer>
    <modelName>R7000</modelName>
    <serviceList>
      <service><serviceType>urn:schemas-upnp-org:service:Layer3Forwarding:1</serviceType></service>
    </serviceList>
  </device>
</root>"""

    def test_msearch_request(self):
        request = build_msearch_request(2).decode("ascii")
        assert request.startswith("M-SEARCH * HTTP/1.1\r\n")
        assert 'MAN: "ssdp:discover"' in request
        assert "MX: 2" in request

    def test_parse_ssdp_response(self):
        headers = parse_ssdp_response(self.RESPONSE)
        assert headers["location"] == "http://192.168.1.1:49152/rootDesc.xml"
        assert headers["server"].startswith("Linux")
        assert parse_ssdp_response("HTTP/1.1 200 OK\r\nST: upnp:rootdevice\r\n") is None

    def test_device_name_from_ssdp(self):
        assert device_name_from_ssdp("Linux/3.14 UPnP/1.0", None) == "Linux"
        assert device_name_from_ssdp(None, "uuid:12345678-aaaa::upnp:rootdevice") == "12345678"
        assert device_name_from_ssdp(None, None) == "UPnP Device"

    def test_parse_device_description(self):
        info = parse_device_description(self.DESCRIPTION)
        assert info["friendlyName"] == "Home Router"
        assert info["manufacturer"] == "Netgear"
        assert info["modelName"] == "R7000"
        assert info["serviceTypes"] == ["urn:schemas-upnp-org:service:Layer3Forwarding:1"]

        assert parse_device_description("<root><other/></root>") is None
        with pytest.raises(ProtocolParseError):
            parse_device_description("<root><device>")

    def test_probe_uses_multicast_responders(self, quiet_logger, monkeypatch):
        probe = UPnPProbe(config=ProbeConfig(timeout=0.1, max_concurrency=4,
                                             params={"unicast_fallback": False}),
                          logger=quiet_logger)
        searches = []

        def fake_search(destination, window):
            searches.append(destination)
            return {"192.168.1.1": parse_ssdp_response(self.RESPONSE)}

        monkeypatch.setattr(probe, "_ssdp_search", fake_search)
        monkeypatch.setattr(probe, "_fetch_description",
                            lambda url: parse_device_description(self.DESCRIPTION))

        results = probe.probe_batch(targets("192.168.1.1", "192.168.1.2"))
        assert len(results) == 1
        result = results[0]
        assert result.hostname == "Home Router"
        assert result.metadata["device_type"] == "Router/Gateway"
        assert result.metadata["services"][:2] == ["UPnP", "HTTP"]
        assert result.metadata["location"] == "http://192.168.1.1:49152/rootDesc.xml"
        assert searches == ["239.255.255.250"]

    def test_responder_without_description(self, quiet_logger, monkeypatch):
        probe = UPnPProbe(config=ProbeConfig(timeout=0.1, params={"unicast_fallback": False}),
                          logger=quiet_logger)
        monkeypatch.setattr(probe, "_ssdp_search",
                            lambda destination, window: {"192.168.1.1": parse_ssdp_response(self.RESPONSE)})
        monkeypatch.setattr(probe, "_fetch_description", lambda url: None)

        result = probe.probe_one(ScanTarget("192.168.1.1"))
        assert result.metadata["device_type"] == "UPnP Device"
        assert result.metadata["manufacturer"] == "MiniUPnP"
        assert result.metadata["model"] == "v3.14"
        assert result.metadata["services"] == ["UPnP"]


class TestDeviceClassifier:
    """Test rule-based classification."""

    @pytest.fixture
    def classifier(self):
        return DeviceClassifier()

    def test_hostnames(self, classifier):
        assert classifier.classify_hostname("fritz-router.lan") == "Router/Gateway"
        assert classifier.classify_hostname("Johns-iPhone") == "Apple Device"
        assert classifier.classify_hostname("synology-ds218") == "NAS/Storage"
        assert classifier.classify_hostname("zz-9") == "Unknown Device"
        assert classifier.classify_hostname(None) == "Unknown Device"

    def test_services_and_servers(self, classifier):
        assert classifier.classify_mdns_service("_hap._tcp.local.") == "HomeKit Device"
        assert classifier.classify_mdns_service("_printer._tcp.local.") == "mDNS Device"
        assert classifier.classify_upnp_server("DLNA media server/1.0") == "Media Server"
        assert classifier.classify_upnp_device_type(
            "urn:schemas-upnp-org:device:MediaRenderer:1") == "Media Renderer"

    def test_manufacturer_prefers_vendor_over_stack(self, classifier):
        assert classifier.manufacturer_from_server("Linux/4.1 UPnP/1.0 Netgear/1.0") == "Netgear"
        assert classifier.manufacturer_from_server("Linux/4.1 UPnP/1.0") == "Linux"
        assert classifier.manufacturer_from_server(None) == "Unknown"


class TestIPv6Probe:
    """Test candidate collection and validation."""

    def test_ipv6_target_is_its_own_candidate(self, quiet_logger):
        probe = IPv6Probe(logger=quiet_logger, runner=FakeRunner())
        assert probe.candidate_addresses("2001:db8::5") == ["2001:db8::5"]

    def test_candidates_correlate_by_mac(self, quiet_logger, monkeypatch):
        runner = FakeRunner(
            {
                "ip": CommandOutput(0, "192.168.1.10 dev eth0 lladdr 00:1b:63:aa:bb:cc REACHABLE\n"),
            },
            tools={"ip"},
        )
        probe = IPv6Probe(config=ProbeConfig(timeout=0.2, params={"max_candidates": 3}),
                          logger=quiet_logger, runner=runner)
        monkeypatch.setattr(probe, "_neighbor_tables", lambda timeout: (
            {"192.168.1.10": "00:1b:63:aa:bb:cc"},
            {"00:1b:63:aa:bb:cc": ["fe80::21b:63ff:feaa:bbcc%eth0"]},
        ))
        monkeypatch.setattr(probe, "_aaaa_addresses", lambda address, deadline: ["2001:db8::10"])
        monkeypatch.setattr(ipv6_probe, "local_ipv6_prefixes", lambda: [])

        assert probe.candidate_addresses("192.168.1.10") == [
            "fe80::21b:63ff:feaa:bbcc%eth0",
            "2001:db8::10",
        ]

    def test_probe_reports_live_addresses(self, quiet_logger, monkeypatch):
        probe = IPv6Probe(config=ProbeConfig(timeout=0.2), logger=quiet_logger, runner=FakeRunner())
        monkeypatch.setattr(probe, "candidate_addresses",
                            lambda address, deadline=None: ["fe80::1%eth0", "2001:db8::10"])
        monkeypatch.setattr(probe, "_answers_ping", lambda address, timeout: True)
        monkeypatch.setattr(probe, "_reverse_name", lambda address, timeout: None)
        monkeypatch.setattr(ipv6_probe, "sweep_tcp_ports", lambda address, ports, timeout: [22])

        result = probe.probe_one(ScanTarget("192.168.1.10"))
        assert result.metadata["ipv6_addresses"] == ["fe80::1%eth0", "2001:db8::10"]
        assert result.metadata["ipv6_services"] == ["SSH"]
        assert result.metadata["link_local"] is True
        assert result.metadata["global_unicast"] is True

    def test_no_live_candidate(self, quiet_logger, monkeypatch):
        probe = IPv6Probe(logger=quiet_logger, runner=FakeRunner())
        monkeypatch.setattr(probe, "candidate_addresses", lambda address, deadline=None: ["2001:db8::10"])
        monkeypatch.setattr(probe, "_answers_ping", lambda address, timeout: False)
        assert probe.probe_one(ScanTarget("192.168.1.10")) is None

    def test_candidates_share_one_budget(self, quiet_logger, monkeypatch):
        probe = IPv6Probe(config=ProbeConfig(timeout=0.3), logger=quiet_logger, runner=FakeRunner())
        monkeypatch.setattr(probe, "candidate_addresses",
                            lambda address, deadline=None: [f"2001:db8::{i}" for i in range(1, 9)])
        waits = []

        def silent_ping(address, timeout):
            waits.append(timeout)
            time.sleep(0.1)
            return False

        monkeypatch.setattr(probe, "_answers_ping", silent_ping)

        started = time.monotonic()
        assert probe.probe_one(ScanTarget("192.168.1.10")) is None
        assert time.monotonic() - started < 0.6
        assert len(waits) < 8
        assert all(wait <= 0.3 for wait in waits)
