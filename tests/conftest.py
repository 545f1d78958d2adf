"""Shared fakes for the LAN scanner tests."""

import threading
import time
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from lan_scanner.core.data_models import ProbeConfig, ProbeKind, ProbeResult, ScanTarget
from lan_scanner.probes.base_probe import BaseProbe
from lan_scanner.utils.command_runner import CommandOutput
from lan_scanner.utils.error_handler import ErrorHandler
from lan_scanner.utils.logger import Logger, LogLevel


class FakeRunner:
    """Command runner returning canned output keyed by the command name."""

    def __init__(self, outputs: Optional[Dict[str, CommandOutput]] = None, tools: Iterable[str] = ()):
        self.outputs = outputs or {}
        self.tools = set(tools)
        self.calls: List[Tuple[str, ...]] = []
        self.timeouts: List[float] = []
        self._lock = threading.Lock()

    def available(self, tool: str) -> bool:
        return tool in self.tools

    def run(self, args, timeout):
        with self._lock:
            self.calls.append(tuple(args))
            self.timeouts.append(timeout)
        return self.outputs.get(args[0])


class FakeProbe(BaseProbe):
    """Probe detecting a fixed set of addresses and recording every call."""

    def __init__(
        self,
        kind: ProbeKind,
        detected: Iterable[str] = (),
        available: bool = True,
        delay: float = 0.0,
        priority: int = 50,
        fail_batch: bool = False,
        **kwargs,
    ):
        self.kind = kind
        self.display_name = f"Fake {kind.value}"
        self.priority = priority
        self.detected = set(detected)
        self.available = available
        self.delay = delay
        self.fail_batch = fail_batch
        self.calls: List[str] = []
        self.batch_calls: List[List[str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._calls_lock = threading.Lock()
        kwargs.setdefault("logger", Logger("test", LogLevel.ERROR))
        super().__init__(**kwargs)

    def is_available(self) -> bool:
        return self.available

    def probe_batch(self, targets, on_progress=None, on_result=None, abort_event=None):
        with self._calls_lock:
            self.batch_calls.append([target.address for target in targets])
        if self.fail_batch:
            raise RuntimeError("batch exploded")
        return super().probe_batch(targets, on_progress, on_result, abort_event)

    def probe_one(self, target: ScanTarget) -> Optional[ProbeResult]:
        with self._calls_lock:
            self.calls.append(target.address)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if target.address in self.detected:
                return self._make_result(target, 1.0)
            return None
        finally:
            with self._calls_lock:
                self.in_flight -= 1


@pytest.fixture
def quiet_logger():
    return Logger("test", LogLevel.ERROR)


@pytest.fixture
def error_handler(quiet_logger):
    return ErrorHandler(quiet_logger)


@pytest.fixture
def fast_config():
    return ProbeConfig(timeout=0.5, max_concurrency=4, request_delay=0.0)
