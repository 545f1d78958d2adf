"""Tests for the scan orchestrator and its strategies."""

import socket
import threading

import pytest

from lan_scanner.config.config_loader import ScannerSettings, ScanPreset
from lan_scanner.core.data_models import ProbeConfig, ProbeKind, ScanStatus, ScanStrategy
from lan_scanner.core.scan_orchestrator import ScanOrchestrator
from lan_scanner.probes.tcp_probe import TCPProbe
from lan_scanner.utils.error_handler import ScanConfigurationError

from tests.conftest import FakeProbe


def config(**fields):
    values = {"timeout": 0.5, "max_concurrency": 8, "request_delay": 0.0}
    values.update(fields)
    return ProbeConfig(**values)


def make_orchestrator(quiet_logger, *probes, **settings):
    scanner_settings = ScannerSettings(probes={}, **settings)
    return ScanOrchestrator(probes=probes, settings=scanner_settings, logger=quiet_logger)


class TestRegistry:
    """Test probe registration and enabled-state management."""

    def test_probes_ordered_by_priority(self, quiet_logger):
        icmp = FakeProbe(ProbeKind.ICMP, priority=1, config=config())
        mdns = FakeProbe(ProbeKind.MDNS, priority=75, config=config())
        orchestrator = make_orchestrator(quiet_logger, mdns, icmp)
        assert [probe.kind for probe in orchestrator.probes] == [ProbeKind.ICMP, ProbeKind.MDNS]

    def test_settings_config_takes_precedence(self, quiet_logger):
        probe = FakeProbe(ProbeKind.ICMP, config=config())
        settings = ScannerSettings(probes={ProbeKind.ICMP: config(timeout=2.0)})
        orchestrator = ScanOrchestrator(probes=[probe], settings=settings, logger=quiet_logger)
        assert orchestrator.get_probe_config(ProbeKind.ICMP).timeout == 2.0

    def test_constructor_config_survives_default_settings(self, quiet_logger):
        tcp = TCPProbe(config=ProbeConfig(timeout=1.0, params={"ports": [8080]}), logger=quiet_logger)
        orchestrator = ScanOrchestrator(probes=[tcp], logger=quiet_logger)
        assert orchestrator.get_probe_config(ProbeKind.TCP).params == {"ports": [8080]}

    def test_default_probe_takes_settings_config(self, quiet_logger):
        orchestrator = ScanOrchestrator(probes=[FakeProbe(ProbeKind.MDNS)], logger=quiet_logger)
        assert not orchestrator.is_probe_enabled(ProbeKind.MDNS)

    def test_presets_and_reset(self, quiet_logger):
        probes = [FakeProbe(kind, config=config()) for kind in ProbeKind]
        orchestrator = make_orchestrator(quiet_logger, *probes)

        enabled = orchestrator.apply_preset(ScanPreset.QUICK)
        assert {kind for kind, flag in enabled.items() if flag} == {ProbeKind.ICMP, ProbeKind.TCP}

        orchestrator.apply_preset("speed")
        assert orchestrator.is_probe_enabled(ProbeKind.ARP)
        assert not orchestrator.is_probe_enabled(ProbeKind.MDNS)

        orchestrator.reset_enabled_state()
        assert all(orchestrator.enabled_map().values())

        with pytest.raises(ScanConfigurationError):
            orchestrator.apply_preset("everything")

    def test_unknown_kind_is_rejected(self, quiet_logger):
        orchestrator = make_orchestrator(quiet_logger, FakeProbe(ProbeKind.ICMP, config=config()))
        with pytest.raises(ScanConfigurationError):
            orchestrator.set_probe_enabled(ProbeKind.ARP, False)

    def test_availability(self, quiet_logger):
        orchestrator = make_orchestrator(
            quiet_logger,
            FakeProbe(ProbeKind.ICMP, config=config()),
            FakeProbe(ProbeKind.ARP, available=False, config=config()),
        )
        assert orchestrator.check_availability() == {ProbeKind.ICMP: True, ProbeKind.ARP: False}
        assert orchestrator.check_availability([]) == {}

    def test_describe_probes(self, quiet_logger):
        orchestrator = make_orchestrator(quiet_logger, FakeProbe(ProbeKind.ICMP, config=config(enabled=False)))
        description = orchestrator.describe_probes()[0]
        assert description["kind"] == "icmp"
        assert description["enabled"] is False


class TestScan:
    """Test scan setup, statuses and callbacks."""

    def test_disabled_probe_is_never_invoked(self, quiet_logger):
        icmp = FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1"}, config=config())
        arp = FakeProbe(ProbeKind.ARP, detected={"10.0.0.1"}, config=config(enabled=False))
        orchestrator = make_orchestrator(quiet_logger, icmp, arp)

        report = orchestrator.scan(["10.0.0.1", "10.0.0.2"], strategy=ScanStrategy.PARALLEL)
        assert report.status is ScanStatus.COMPLETED
        assert report.probes_used == [ProbeKind.ICMP]
        assert arp.calls == [] and arp.batch_calls == []
        assert report.active_hosts == ["10.0.0.1"]

    def test_no_enabled_probe_raises(self, quiet_logger):
        orchestrator = make_orchestrator(quiet_logger, FakeProbe(ProbeKind.ICMP, config=config()))
        with pytest.raises(ScanConfigurationError):
            orchestrator.scan(["10.0.0.1"], enabled={ProbeKind.ICMP: False})

    def test_invalid_targets(self, quiet_logger):
        orchestrator = make_orchestrator(quiet_logger, FakeProbe(ProbeKind.ICMP, config=config()))
        with pytest.raises(ScanConfigurationError):
            orchestrator.scan(["not-an-ip"])

        report = orchestrator.scan(["10.0.0.1", "bogus", "10.0.0.1"], strategy="parallel")
        assert report.targets_scanned == 1
        assert any("bogus" in error for error in report.errors)

    def test_unknown_strategy(self, quiet_logger):
        orchestrator = make_orchestrator(quiet_logger, FakeProbe(ProbeKind.ICMP, config=config()))
        with pytest.raises(ScanConfigurationError):
            orchestrator.scan(["10.0.0.1"], strategy="warp")

    def test_unavailable_probes_fail_the_scan(self, quiet_logger):
        orchestrator = make_orchestrator(
            quiet_logger, FakeProbe(ProbeKind.ICMP, available=False, config=config())
        )
        report = orchestrator.scan(["10.0.0.1"])
        assert report.status is ScanStatus.FAILED
        assert report.probes_unavailable == [ProbeKind.ICMP]

    def test_failing_batch_gives_partial_report(self, quiet_logger):
        orchestrator = make_orchestrator(
            quiet_logger,
            FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1"}, config=config()),
            FakeProbe(ProbeKind.TCP, fail_batch=True, config=config()),
        )
        report = orchestrator.scan(["10.0.0.1"], strategy=ScanStrategy.PARALLEL)
        assert report.status is ScanStatus.PARTIAL
        assert report.active_hosts == ["10.0.0.1"]
        assert orchestrator.error_handler.get_statistics()["unreachable"] == 1

    def test_abort_before_start(self, quiet_logger):
        icmp = FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1"}, config=config())
        orchestrator = make_orchestrator(quiet_logger, icmp)
        abort = threading.Event()
        abort.set()

        report = orchestrator.scan(["10.0.0.1"], strategy=ScanStrategy.SEQUENTIAL, abort_event=abort)
        assert report.status is ScanStatus.ABORTED
        assert report.results == []
        assert icmp.calls == []

    def test_progress_and_results_callbacks(self, quiet_logger):
        orchestrator = make_orchestrator(
            quiet_logger,
            FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1"}, priority=1, config=config()),
            FakeProbe(ProbeKind.ARP, detected={"10.0.0.2"}, priority=3, config=config()),
        )
        progress = []
        results = []
        report = orchestrator.scan(
            [f"10.0.0.{i}" for i in range(1, 6)],
            strategy=ScanStrategy.SEQUENTIAL,
            on_progress=progress.append,
            on_result=results.append,
        )

        assert progress == sorted(progress)
        assert progress[-1] == 1.0
        assert {result.target for result in results} == {"10.0.0.1", "10.0.0.2"}
        assert len(report.results) == 2

    def test_overrides_keep_enabled_flag(self, quiet_logger):
        icmp = FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1"}, config=config())
        tcp = FakeProbe(ProbeKind.TCP, config=config(enabled=False))
        orchestrator = make_orchestrator(quiet_logger, icmp, tcp)

        orchestrator.scan(
            ["10.0.0.1"],
            strategy=ScanStrategy.PARALLEL,
            config_overrides={ProbeKind.TCP: config(timeout=0.2)},
        )
        assert tcp.calls == []
        assert orchestrator.get_probe_config(ProbeKind.TCP).timeout == 0.5

    def test_performance_is_recorded(self, quiet_logger):
        orchestrator = make_orchestrator(
            quiet_logger, FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1"}, config=config())
        )
        orchestrator.scan(["10.0.0.1", "10.0.0.2"], strategy=ScanStrategy.PARALLEL)
        stats = orchestrator.get_performance_recommendations()[ProbeKind.ICMP]
        assert stats["sample_size"] == 2
        assert stats["success_rate"] == 50.0
        assert orchestrator.assess_network_environment()["total_samples"] == 2

    def test_stream_yields_results(self, quiet_logger):
        orchestrator = make_orchestrator(
            quiet_logger, FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1", "10.0.0.3"}, config=config())
        )
        streamed = list(orchestrator.stream(["10.0.0.1", "10.0.0.2", "10.0.0.3"], strategy="parallel"))
        assert sorted(result.target for result in streamed) == ["10.0.0.1", "10.0.0.3"]

    def test_stream_reraises_configuration_errors(self, quiet_logger):
        orchestrator = make_orchestrator(quiet_logger, FakeProbe(ProbeKind.ICMP, config=config()))
        with pytest.raises(ScanConfigurationError):
            list(orchestrator.stream(["nope"]))


class TestStrategies:
    """Test the scheduling strategies."""

    def test_sequential_runs_probes_in_priority_order(self, quiet_logger):
        order = []

        class OrderedProbe(FakeProbe):
            def probe_batch(self, targets, on_progress=None, on_result=None, abort_event=None):
                order.append(self.kind)
                return super().probe_batch(targets, on_progress, on_result, abort_event)

        orchestrator = make_orchestrator(
            quiet_logger,
            OrderedProbe(ProbeKind.DNS_REVERSE, priority=2, config=config()),
            OrderedProbe(ProbeKind.ICMP, priority=1, config=config()),
        )
        orchestrator.scan(["10.0.0.1"], strategy=ScanStrategy.SEQUENTIAL)
        assert order == [ProbeKind.ICMP, ProbeKind.DNS_REVERSE]

    def test_smart_runs_detail_probes_on_hits_only(self, quiet_logger):
        icmp = FakeProbe(ProbeKind.ICMP, detected={"10.0.0.2"}, config=config())
        dns = FakeProbe(ProbeKind.DNS_REVERSE, detected={"10.0.0.2", "10.0.0.3"}, config=config())
        orchestrator = make_orchestrator(quiet_logger, icmp, dns)

        report = orchestrator.scan(["10.0.0.1", "10.0.0.2", "10.0.0.3"], strategy=ScanStrategy.SMART)
        assert sorted(icmp.calls) == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
        assert dns.calls == ["10.0.0.2"]
        assert {result.kind for result in report.results} == {ProbeKind.ICMP, ProbeKind.DNS_REVERSE}

    def test_smart_skips_phase_two_without_hits(self, quiet_logger):
        icmp = FakeProbe(ProbeKind.ICMP, config=config())
        dns = FakeProbe(ProbeKind.DNS_REVERSE, detected={"10.0.0.1"}, config=config())
        orchestrator = make_orchestrator(quiet_logger, icmp, dns)

        report = orchestrator.scan(["10.0.0.1"], strategy=ScanStrategy.SMART)
        assert dns.calls == []
        assert report.results == []

    def test_smart_without_fast_probes_scans_everything(self, quiet_logger):
        dns = FakeProbe(ProbeKind.DNS_REVERSE, detected={"10.0.0.1"}, config=config())
        orchestrator = make_orchestrator(quiet_logger, dns)
        report = orchestrator.scan(["10.0.0.1", "10.0.0.2"], strategy=ScanStrategy.SMART)
        assert sorted(dns.calls) == ["10.0.0.1", "10.0.0.2"]
        assert report.active_hosts == ["10.0.0.1"]

    def test_turbo_drops_request_delay(self, quiet_logger):
        seen = []

        class DelayProbe(FakeProbe):
            def probe_one(self, target):
                seen.append(self.config.request_delay)
                return super().probe_one(target)

        orchestrator = make_orchestrator(quiet_logger, DelayProbe(ProbeKind.ICMP, config=config(request_delay=0.05)))
        orchestrator.scan(["10.0.0.1", "10.0.0.2"], strategy=ScanStrategy.TURBO)
        assert seen == [0.0, 0.0]
        assert orchestrator.get_probe_config(ProbeKind.ICMP).request_delay == 0.05

    def test_ultra_fast_uses_only_fast_probes(self, quiet_logger):
        icmp = FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1"}, config=config(timeout=2.0))
        arp = FakeProbe(ProbeKind.ARP, detected={"10.0.0.1"}, config=config())
        orchestrator = make_orchestrator(quiet_logger, icmp, arp)

        report = orchestrator.scan(["10.0.0.1", "10.0.0.2"], strategy=ScanStrategy.ULTRA_FAST)
        assert report.probes_used == [ProbeKind.ICMP]
        assert arp.calls == []
        assert report.active_hosts == ["10.0.0.1"]

    def test_ultra_fast_needs_a_fast_probe(self, quiet_logger):
        orchestrator = make_orchestrator(quiet_logger, FakeProbe(ProbeKind.ARP, config=config()))
        with pytest.raises(ScanConfigurationError):
            orchestrator.scan(["10.0.0.1"], strategy=ScanStrategy.ULTRA_FAST)

    def test_ultra_fast_discards_late_results(self, quiet_logger):
        slow = FakeProbe(ProbeKind.TCP, detected={"10.0.0.1"}, delay=0.8, config=config())
        orchestrator = make_orchestrator(quiet_logger, slow)
        report = orchestrator.scan(["10.0.0.1"], strategy=ScanStrategy.ULTRA_FAST)
        assert report.results == []

    def test_breadth_first_expands_around_hits(self, quiet_logger):
        icmp = FakeProbe(ProbeKind.ICMP, detected={"192.168.1.1", "192.168.1.3"}, config=config())
        orchestrator = make_orchestrator(quiet_logger, icmp, breadth_first_workers=2)

        report = orchestrator.scan(["192.168.1.1"], strategy=ScanStrategy.BREADTH_FIRST)

        assert set(report.active_hosts) == {"192.168.1.1", "192.168.1.3"}
        # .1 expands to .2-.4; .3 expands to .2, .4-.6
        assert set(icmp.calls) == {f"192.168.1.{i}" for i in range(1, 7)}
        assert len(icmp.calls) == len(set(icmp.calls))
        assert report.status is ScanStatus.COMPLETED

    def test_breadth_first_scans_immediate_targets_first(self, quiet_logger):
        icmp = FakeProbe(ProbeKind.ICMP, config=config())
        orchestrator = make_orchestrator(quiet_logger, icmp, breadth_first_workers=1)
        orchestrator.scan(["10.0.0.50", "10.0.0.5", "10.0.0.1"], strategy=ScanStrategy.BREADTH_FIRST)
        assert icmp.calls == ["10.0.0.1", "10.0.0.5", "10.0.0.50"]

    def test_ultra_fast_skips_every_slow_probe(self, quiet_logger):
        icmp = FakeProbe(ProbeKind.ICMP, detected={"10.0.0.1"}, config=config())
        tcp = FakeProbe(ProbeKind.TCP, config=config())
        slow = [
            FakeProbe(kind, detected={"10.0.0.1"}, config=config())
            for kind in (ProbeKind.ARP, ProbeKind.MDNS, ProbeKind.UPNP, ProbeKind.DNS_REVERSE, ProbeKind.IPV6)
        ]
        orchestrator = make_orchestrator(quiet_logger, icmp, tcp, *slow)

        report = orchestrator.scan(["10.0.0.1", "10.0.0.2"], strategy=ScanStrategy.ULTRA_FAST)

        assert set(report.probes_used) == {ProbeKind.ICMP, ProbeKind.TCP}
        for probe in slow:
            assert probe.calls == [], probe.kind
            assert probe.batch_calls == [], probe.kind
        assert all(orchestrator.enabled_map().values())

    def test_breadth_first_slow_probe_does_not_delay_fast_one(self, quiet_logger):
        initial = [f"10.0.0.{i}" for i in range(1, 41)]
        icmp = FakeProbe(ProbeKind.ICMP, detected=initial, config=config())
        ipv6 = FakeProbe(ProbeKind.IPV6, delay=1.0, config=config())
        orchestrator = make_orchestrator(quiet_logger, icmp, ipv6, breadth_first_deadline=0.3)

        report = orchestrator.scan(initial, strategy=ScanStrategy.BREADTH_FIRST)

        found = {result.target for result in report.results if result.kind is ProbeKind.ICMP}
        assert found.issuperset(initial)


class TestLoopbackScan:
    """Test a TCP-only scan of a listening loopback port end to end."""

    @pytest.fixture
    def listener(self):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(("127.0.0.1", 0))
        server.listen(8)
        yield server
        server.close()

    @pytest.mark.parametrize("strategy", list(ScanStrategy))
    def test_single_tcp_result(self, listener, quiet_logger, strategy):
        port = listener.getsockname()[1]
        tcp = TCPProbe(
            config=ProbeConfig(timeout=1.0, max_concurrency=4, params={"ports": [port], "fetch_banners": False}),
            logger=quiet_logger,
        )
        orchestrator = make_orchestrator(quiet_logger, tcp)

        report = orchestrator.scan(["127.0.0.1"], "127.0.0", strategy=strategy)

        assert len(report.results) == 1
        result = report.results[0]
        assert result.kind is ProbeKind.TCP
        assert result.target == "127.0.0.1"
        assert result.segment == "127.0.0"
        assert port in result.open_ports
        assert report.status is ScanStatus.COMPLETED
