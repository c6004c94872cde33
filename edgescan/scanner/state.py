"""Scan lifecycle states and the live progress shown to observers."""

import enum
from dataclasses import dataclass


class ScanState(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    STOPPING = "stopping"


class ProgressColor(enum.Enum):
    """Red while the first attempt of a candidate runs, green afterwards."""

    COLD = "red"
    WARM = "green"


@dataclass
class LiveProgress:
    """Transient progress, overwritten on every probe attempt.

    ``total_attempts`` counts candidates started in the current scan and only
    ever grows until the next reset.
    """

    current_candidate: str = ""
    attempt_indicator: str = ""
    rolling_latency_ms: int = 0
    color: ProgressColor = ProgressColor.COLD
    total_attempts: int = 0

    def reset(self) -> None:
        self.current_candidate = ""
        self.attempt_indicator = ""
        self.rolling_latency_ms = 0
        self.color = ProgressColor.COLD
        self.total_attempts = 0


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only copy of the live progress plus the scan state."""

    current_candidate: str
    attempt_indicator: str
    rolling_latency_ms: int
    color: ProgressColor
    total_attempts: int
    scan_state: ScanState


__all__ = ["ScanState", "ProgressColor", "LiveProgress", "ProgressSnapshot"]
