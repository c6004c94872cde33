"""Scan engine: lifecycle, candidate loop and ranked results.

States move ``idle -> scanning -> idle``; ``stop()`` inserts a transient
``stopping`` state that the loop observes after the current candidate.

A scan runs on its own worker thread so callers (a CLI, a UI) can poll
``snapshot()``/``results()`` or ``subscribe()`` to changes while it runs.
Only the engine writes progress and results; observers get copies.

Only the first ``depth_cap`` addresses of each shuffled list are probed.
When more were available, ``deeper_search_available`` is raised and
``start_deeper()``/``rescan()`` run the same procedure again on a fresh
shuffle, adding to the results found so far.
"""

import logging
import random
import re
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Pattern, Sequence, Tuple

from edgescan.network.probe_client import ProbeClient
from edgescan.scanner.prober import AttemptProgress, CandidateProber
from edgescan.scanner.results import ResultStore, ValidResult
from edgescan.scanner.state import LiveProgress, ProgressSnapshot, ScanState
from edgescan.settings import ScanSettings
from edgescan.shuffle import randomize_elements

LOGGER = logging.getLogger(__name__)

DEPTH_CAP = 150

Subscriber = Callable[[ProgressSnapshot], None]


class PatternError(ValueError):
    """The address filter is not a valid regular expression."""


@dataclass(frozen=True)
class ScanReport:
    """Outcome of one scan run.

    Attributes:
        results: Ranked results held by the engine when the run ended.
        candidate_count: Candidates left after the address filter.
        evaluated: Candidates actually probed.
        deeper_search_available: The depth cap truncated the candidate list.
        stopped: The run ended because ``stop()`` was requested.
        error: Message of an unexpected exception that ended the run.
    """

    results: Tuple[ValidResult, ...]
    candidate_count: int
    evaluated: int
    deeper_search_available: bool
    stopped: bool = False
    error: Optional[str] = None


@dataclass
class _ScanRun:
    candidates: List[str]
    candidate_count: int
    truncated: bool
    cancel_event: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)
    evaluated: int = 0
    stopped: bool = False
    error: Optional[str] = None
    report: Optional[ScanReport] = None
    thread: Optional[threading.Thread] = None


def compile_address_filter(pattern: str) -> Optional[Pattern[str]]:
    """Compile the optional address filter; empty means no filtering."""
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise PatternError(f"invalid address filter {pattern!r}: {exc}") from exc


def filter_candidates(candidates: Sequence[str], pattern: Optional[Pattern[str]]) -> List[str]:
    if pattern is None:
        return list(candidates)
    return [address for address in candidates if pattern.fullmatch(address)]


def limit_depth(shuffled: Sequence[str], cap: int) -> Tuple[List[str], bool]:
    """Keep the first ``cap`` candidates; report whether any were dropped."""
    return list(shuffled[:cap]), len(shuffled) > cap


class ScanEngine:
    """Probe candidates and keep the fastest ones.

    Example:
        engine = ScanEngine(ProbeClient(), ScanSettings(max_ip_count=3))
        report = engine.scan(addresses)
        for result in report.results:
            print(result.address, result.latency_ms)
    """

    def __init__(
        self,
        client: ProbeClient,
        settings: Optional[ScanSettings] = None,
        *,
        prober: Optional[CandidateProber] = None,
        depth_cap: int = DEPTH_CAP,
        rng: Optional[random.Random] = None,
    ) -> None:
        if depth_cap <= 0:
            raise ValueError("depth_cap must be positive")
        self._settings = settings or ScanSettings()
        self._prober = prober or CandidateProber(client)
        self._depth_cap = depth_cap
        self._rng = rng or random.Random()

        self._lock = threading.RLock()
        self._state = ScanState.IDLE
        self._progress = LiveProgress()
        self._results = ResultStore()
        self._deeper_available = False
        self._run: Optional[_ScanRun] = None
        self._subscribers: List[Subscriber] = []

    @property
    def settings(self) -> ScanSettings:
        return self._settings

    @property
    def depth_cap(self) -> int:
        return self._depth_cap

    @property
    def scan_state(self) -> ScanState:
        with self._lock:
            return self._state

    @property
    def deeper_search_available(self) -> bool:
        with self._lock:
            return self._deeper_available

    def results(self) -> Tuple[ValidResult, ...]:
        with self._lock:
            return self._results.items()

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            current_candidate=self._progress.current_candidate,
            attempt_indicator=self._progress.attempt_indicator,
            rolling_latency_ms=self._progress.rolling_latency_ms,
            color=self._progress.color,
            total_attempts=self._progress.total_attempts,
            scan_state=self._state,
        )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with a snapshot after every change.

        Callbacks run on the thread that made the change (usually the scan
        worker). Returns a function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, snapshot: ProgressSnapshot) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:  # noqa: BLE001 - observers must not break a scan
                LOGGER.warning("Scan subscriber %r failed", callback, exc_info=True)

    def update_settings(self, settings: ScanSettings) -> None:
        with self._lock:
            if self._state is not ScanState.IDLE:
                raise RuntimeError("settings cannot change while a scan is active")
            self._settings = settings

    def start(self, candidates: Sequence[str]) -> threading.Thread:
        """Reset everything and scan ``candidates`` on a worker thread.

        A scan already in progress is superseded: its partial results are
        discarded and it stops writing to this engine.

        Raises:
            PatternError: the configured address filter does not compile.
        """
        return self._launch(candidates, keep_results=False).thread

    def start_deeper(self, candidates: Sequence[str]) -> threading.Thread:
        """Search deeper: reshuffle and scan again, keeping current results."""
        return self._launch(candidates, keep_results=True).thread

    def scan(self, candidates: Sequence[str]) -> ScanReport:
        """Blocking variant of ``start``."""
        return self._wait_for(self._launch(candidates, keep_results=False))

    def rescan(self, candidates: Sequence[str]) -> ScanReport:
        """Blocking variant of ``start_deeper``."""
        return self._wait_for(self._launch(candidates, keep_results=True))

    def stop(self) -> None:
        """Ask a running scan to stop after its current candidate.

        When no scan is running the engine is forced back to idle.
        """
        with self._lock:
            if self._state is ScanState.SCANNING:
                self._state = ScanState.STOPPING
                LOGGER.info("Scan stop requested")
            else:
                self._state = ScanState.IDLE
                self._progress.attempt_indicator = ""
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the active run's worker; True when it has finished."""
        with self._lock:
            run = self._run
        if run is None:
            return True
        return run.done.wait(timeout)

    def _wait_for(self, run: _ScanRun) -> ScanReport:
        run.done.wait()
        if run.report is None:
            raise RuntimeError("scan run finished without a report")
        return run.report

    def _launch(self, candidates: Sequence[str], *, keep_results: bool) -> _ScanRun:
        with self._lock:
            settings = self._settings
            if self._run is not None:
                self._run.cancel_event.set()
                self._run = None
                self._state = ScanState.IDLE
            if not keep_results:
                self._reset_locked()
            pattern = compile_address_filter(settings.ip_regex)

            filtered = filter_candidates(candidates, pattern)
            ordered, truncated = limit_depth(
                randomize_elements(filtered, self._rng), self._depth_cap
            )
            run = _ScanRun(candidates=ordered, candidate_count=len(filtered), truncated=truncated)
            run.thread = threading.Thread(
                target=self._worker,
                args=(run, settings),
                name="edgescan-worker",
                daemon=True,
            )
            self._run = run
            self._deeper_available = False
            self._state = ScanState.SCANNING
            snapshot = self._snapshot_locked()

        LOGGER.info(
            "Scan started: candidates=%d evaluating=%d max_ip_count=%d max_latency=%d port=%d tls=%s",
            run.candidate_count,
            len(run.candidates),
            settings.max_ip_count,
            settings.max_latency,
            settings.port,
            str(settings.uses_tls).lower(),
        )
        self._notify(snapshot)
        run.thread.start()
        return run

    def _reset_locked(self) -> None:
        self._results.clear()
        self._progress.reset()
        self._deeper_available = False
        self._state = ScanState.IDLE

    def _is_active(self, run: _ScanRun) -> bool:
        return self._run is run and not run.cancel_event.is_set()

    def _worker(self, run: _ScanRun, settings: ScanSettings) -> None:
        try:
            self._test_candidates(run, settings)
        except Exception as exc:  # noqa: BLE001 - a scan must always return to idle
            LOGGER.exception("Scan aborted by unexpected error")
            run.error = str(exc) or exc.__class__.__name__
        finally:
            self._finish(run)
            run.done.set()

    def _test_candidates(self, run: _ScanRun, settings: ScanSettings) -> None:
        def on_attempt(progress: AttemptProgress) -> None:
            self._publish_attempt(run, progress)

        for address in run.candidates:
            with self._lock:
                if len(self._results) >= settings.max_ip_count:
                    return
            if not self._increase_test_no(run, address):
                return

            verdict = self._prober.probe(address, settings, run.cancel_event, on_attempt)
            run.evaluated += 1
            if verdict.passed:
                self._add_valid(run, ValidResult(address=address, latency_ms=verdict.latency_ms))

            with self._lock:
                if not self._is_active(run):
                    return
                if self._state is not ScanState.SCANNING:
                    run.stopped = True
                    return
                if len(self._results) >= settings.max_ip_count:
                    return

    def _increase_test_no(self, run: _ScanRun, address: str) -> bool:
        with self._lock:
            if not self._is_active(run):
                return False
            self._progress.total_attempts += 1
            self._progress.current_candidate = address
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
        return True

    def _publish_attempt(self, run: _ScanRun, progress: AttemptProgress) -> None:
        with self._lock:
            if not self._is_active(run):
                return
            self._progress.current_candidate = progress.address
            self._progress.attempt_indicator = progress.indicator
            self._progress.rolling_latency_ms = progress.rolling_latency_ms
            self._progress.color = progress.color
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def _add_valid(self, run: _ScanRun, result: ValidResult) -> None:
        with self._lock:
            if not self._is_active(run):
                return
            self._results.insert(result)
            snapshot = self._snapshot_locked()
        LOGGER.info("Admitted %s latency_ms=%d", result.address, result.latency_ms)
        self._notify(snapshot)

    def _finish(self, run: _ScanRun) -> None:
        with self._lock:
            active = self._run is run
            if active:
                self._state = ScanState.IDLE
                self._progress.current_candidate = ""
                self._progress.attempt_indicator = ""
                self._progress.rolling_latency_ms = 0
                self._deeper_available = run.truncated
            run.report = ScanReport(
                results=self._results.items() if active else (),
                candidate_count=run.candidate_count,
                evaluated=run.evaluated,
                deeper_search_available=run.truncated,
                stopped=run.stopped,
                error=run.error,
            )
            snapshot = self._snapshot_locked()

        if not active:
            LOGGER.info("Superseded scan finished after %d candidates", run.evaluated)
            return
        LOGGER.info(
            "Scan finished: evaluated=%d admitted=%d stopped=%s deeper_available=%s",
            run.evaluated,
            len(run.report.results),
            str(run.stopped).lower(),
            str(run.truncated).lower(),
        )
        self._notify(snapshot)


__all__ = [
    "DEPTH_CAP",
    "PatternError",
    "ScanEngine",
    "ScanReport",
    "compile_address_filter",
    "filter_candidates",
    "limit_depth",
]
