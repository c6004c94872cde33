"""Scan engine, candidate prober and result ranking."""

from edgescan.scanner.engine import DEPTH_CAP, PatternError, ScanEngine, ScanReport
from edgescan.scanner.prober import CandidateProber, ProbeVerdict
from edgescan.scanner.results import ResultStore, ValidResult
from edgescan.scanner.state import ProgressColor, ProgressSnapshot, ScanState

__all__ = [
    "DEPTH_CAP",
    "CandidateProber",
    "PatternError",
    "ProbeVerdict",
    "ProgressColor",
    "ProgressSnapshot",
    "ResultStore",
    "ScanEngine",
    "ScanReport",
    "ScanState",
    "ValidResult",
]
