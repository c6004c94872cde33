"""Per-candidate probing protocol.

Each candidate gets ``MAX_TRIES`` sequential attempts. The first attempt
runs with a deadline of ``multiplier * max_latency``; later attempts get 20%
more room. The average latency over all attempts decides admission together
with the number of attempts that counted as successful.

Which transport outcomes count as successful is decided by
``counts_as_success`` alone. Non-timeout failures (refused connections,
TLS errors...) currently count, matching the long-standing behavior of the
scanner; pass a different ``success_policy`` to ``CandidateProber`` to
tighten it.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from edgescan.logging_utils import perf
from edgescan.network.probe_client import ProbeClient, ProbeOutcome
from edgescan.scanner.state import ProgressColor
from edgescan.settings import MIN_HTTP_PORT, ScanSettings

LOGGER = logging.getLogger(__name__)

MAX_TRIES = 3
TRY_CHARS = ("", "|", "/", "-", "\\")
MIN_LATENCY_MS = 50
RETRY_TIMEOUT_FACTOR = 1.2

HTTP_PATH = "/cdn-cgi/trace"
HTTPS_PATH = "/__down"

_NS_PER_MS = 1_000_000


@dataclass(frozen=True)
class ProbeTarget:
    url: str
    path: str
    server_name: Optional[str]


@dataclass(frozen=True)
class AttemptProgress:
    """Published right before an attempt is sent."""

    address: str
    attempt: int
    indicator: str
    rolling_latency_ms: int
    color: ProgressColor
    deadline_ms: float


@dataclass(frozen=True)
class ProbeVerdict:
    address: str
    successes: int
    latency_ms: int
    passed: bool


def latency_multiplier(max_latency: int) -> float:
    """Give tight latency budgets proportionally more headroom."""
    if max_latency <= 500:
        return 1.5
    if max_latency <= 1000:
        return 1.2
    return 1.0


def attempt_timeout_ms(attempt: int, max_latency: int) -> float:
    base = latency_multiplier(max_latency) * max_latency
    if attempt == 0:
        return base
    return RETRY_TIMEOUT_FACTOR * base


def counts_as_success(outcome: ProbeOutcome) -> bool:
    """Only expired or aborted attempts are held against a candidate."""
    return outcome is not ProbeOutcome.TIMEOUT


def is_admissible(successes: int, latency_ms: int, max_latency: int) -> bool:
    return successes == MAX_TRIES and MIN_LATENCY_MS < latency_ms <= max_latency


def _host_literal(address: str) -> str:
    return f"[{address}]" if ":" in address else address


def build_target(address: str, settings: ScanSettings) -> ProbeTarget:
    """Pick scheme, port and diagnostic path for ``address``."""
    host = _host_literal(address)
    if settings.uses_tls:
        return ProbeTarget(
            url=f"https://{host}:{settings.port}",
            path=HTTPS_PATH,
            server_name=settings.sni_value,
        )
    port = max(settings.port, MIN_HTTP_PORT)
    return ProbeTarget(url=f"http://{host}:{port}", path=HTTP_PATH, server_name=None)


class CandidateProber:
    """Run the fixed-attempt protocol against one candidate at a time."""

    def __init__(
        self,
        client: ProbeClient,
        *,
        clock: Callable[[], int] = time.perf_counter_ns,
        success_policy: Callable[[ProbeOutcome], bool] = counts_as_success,
    ) -> None:
        """Initialize the prober.

        Args:
            client: Transport with a ``probe(url, path, server_name,
                deadline_ms, cancel_event)`` method.
            clock: Monotonic clock in nanoseconds.
            success_policy: Decides which outcomes count toward admission.
        """
        self._client = client
        self._clock = clock
        self._success_policy = success_policy

    @perf("scanner.probe_candidate", tags={"component": "scanner"}, level=logging.DEBUG)
    def probe(
        self,
        address: str,
        settings: ScanSettings,
        cancel_event: Optional[threading.Event] = None,
        on_attempt: Optional[Callable[[AttemptProgress], None]] = None,
    ) -> ProbeVerdict:
        """Probe ``address`` ``MAX_TRIES`` times and return the verdict.

        When ``cancel_event`` is set the remaining attempts are skipped and
        the candidate fails.
        """
        target = build_target(address, settings)
        successes = 0
        start_ns = self._clock()

        for attempt in range(MAX_TRIES):
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.debug("probe of %s cancelled before attempt %d", address, attempt)
                break

            deadline_ms = attempt_timeout_ms(attempt, settings.max_latency)
            if attempt == 0:
                color = ProgressColor.COLD
                rolling = 0
            else:
                color = ProgressColor.WARM
                rolling = (self._clock() - start_ns) // ((attempt + 1) * _NS_PER_MS)

            if on_attempt is not None:
                on_attempt(
                    AttemptProgress(
                        address=address,
                        attempt=attempt,
                        indicator=TRY_CHARS[attempt] if attempt < len(TRY_CHARS) else "",
                        rolling_latency_ms=rolling,
                        color=color,
                        deadline_ms=deadline_ms,
                    )
                )

            outcome = self._client.probe(
                target.url, target.path, target.server_name, deadline_ms, cancel_event
            )
            if self._success_policy(outcome):
                successes += 1
            LOGGER.debug(
                "attempt=%d address=%s outcome=%s deadline_ms=%.0f",
                attempt,
                address,
                outcome.value,
                deadline_ms,
            )

        latency_ms = (self._clock() - start_ns) // (MAX_TRIES * _NS_PER_MS)
        passed = is_admissible(successes, latency_ms, settings.max_latency)
        return ProbeVerdict(
            address=address,
            successes=successes,
            latency_ms=latency_ms,
            passed=passed,
        )


__all__ = [
    "AttemptProgress",
    "CandidateProber",
    "ProbeTarget",
    "ProbeVerdict",
    "MAX_TRIES",
    "MIN_LATENCY_MS",
    "TRY_CHARS",
    "attempt_timeout_ms",
    "build_target",
    "counts_as_success",
    "is_admissible",
    "latency_multiplier",
]
