"""Shared pytest fixtures for the edgescan tests.

Provides a fake clock and a fake transport so probe timings are exact and
no test touches the network.
"""

import random
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from edgescan.config import AppConfig
from edgescan.network.probe_client import ProbeOutcome
from edgescan.scanner.prober import CandidateProber
from edgescan.settings import ScanSettings


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Application config fixture pointing logs at a temporary directory."""
    return AppConfig(
        log_directory=tmp_path,
        log_level="INFO",
    )


class FakeClock:
    """Monotonic nanosecond clock advanced explicitly by the fake transport."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.now_ns = 0

    def __call__(self) -> int:
        with self._lock:
            return self.now_ns

    def advance_ms(self, ms: float) -> None:
        with self._lock:
            self.now_ns += int(ms * 1_000_000)


class FakeTransport:
    """Probe client double.

    Each address maps to ``(attempt_ms, outcomes)``: every attempt advances
    the clock by ``attempt_ms`` and returns the next outcome (the last one
    repeats). Unknown addresses use ``default``.
    """

    def __init__(
        self,
        clock: FakeClock,
        behaviours: Optional[Dict[str, Tuple[float, List[ProbeOutcome]]]] = None,
        default: Tuple[float, List[ProbeOutcome]] = (100.0, [ProbeOutcome.SUCCESS]),
    ) -> None:
        self.clock = clock
        self.behaviours = behaviours or {}
        self.default = default
        self.calls: List[Tuple[str, str, Optional[str], float]] = []
        self.before_probe: Optional[Callable[[str], None]] = None
        self._lock = threading.Lock()
        self._attempts: Dict[str, int] = {}

    def probed_addresses(self) -> List[str]:
        seen: List[str] = []
        for url, _, _, _ in self.calls:
            address = url.split("//", 1)[1].rsplit(":", 1)[0]
            if address not in seen:
                seen.append(address)
        return seen

    def probe(self, url, path, server_name, deadline_ms, cancel_event=None):
        address = url.split("//", 1)[1].rsplit(":", 1)[0]
        with self._lock:
            self.calls.append((url, path, server_name, deadline_ms))
            index = self._attempts.get(address, 0)
            self._attempts[address] = index + 1
        if self.before_probe is not None:
            self.before_probe(address)
        if cancel_event is not None and cancel_event.is_set():
            return ProbeOutcome.TIMEOUT
        attempt_ms, outcomes = self.behaviours.get(address, self.default)
        self.clock.advance_ms(attempt_ms)
        return outcomes[min(index, len(outcomes) - 1)]


class NoShuffle(random.Random):
    """Random source that makes Fisher-Yates keep the input order."""

    def randrange(self, start, stop=None, step=1):  # type: ignore[override]
        return start - 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport(clock: FakeClock) -> FakeTransport:
    return FakeTransport(clock)


@pytest.fixture
def prober(transport: FakeTransport, clock: FakeClock) -> CandidateProber:
    return CandidateProber(transport, clock=clock)


@pytest.fixture
def settings() -> ScanSettings:
    return ScanSettings(max_ip_count=5, max_latency=1500)
