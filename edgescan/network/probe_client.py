"""Timed HTTP/HTTPS reachability probes against a single address.

The scanner only needs to know whether a request came back before its
deadline, so every attempt is reduced to a ``ProbeOutcome``:

- ``SUCCESS``: any HTTP response arrived in time, whatever its status code.
- ``TIMEOUT``: the deadline expired, the response arrived late, or the
  attempt was cancelled.
- ``OTHER_FAILURE``: any other transport error (refused, reset, TLS...).

The deadline is a hard bound on the whole attempt. Socket timeouts in
Requests apply per connect and per read, so a server trickling its headers
could hold an attempt open indefinitely. ``AttemptGuard`` watches each
attempt and shuts down its sockets once the deadline passes or the cancel
event is set.

HTTPS probes can override the TLS server name (SNI) so an edge address can
be tested for a given hostname without DNS. ``ServerNameAdapter`` does this
at the urllib3 pool level; the ``Host`` header carries the same name.
"""

import enum
import logging
import socket
import threading
import time
from typing import List, Optional

import requests
from requests.adapters import DEFAULT_POOLBLOCK, HTTPAdapter
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

LOGGER = logging.getLogger(__name__)

HEADERS = {
    "user-agent": "edge-scan/1.0",
    "accept": "*/*",
    "cache-control": "no-cache",
}

_current = threading.local()


class ProbeOutcome(enum.Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    OTHER_FAILURE = "other_failure"


def _abort_connection(conn) -> None:
    sock = getattr(conn, "sock", None)
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as exc:
        LOGGER.debug("socket already closed: %s", exc)


class AttemptGuard:
    """Shut down the connections of one attempt at its deadline or on cancel.

    Connections checked out of a tracked pool on the calling thread are
    registered with the active guard. A watcher thread polls until the
    attempt finishes and aborts every registered socket once the attempt
    has expired, including sockets opened after that moment.
    """

    POLL_INTERVAL_S = 0.02

    def __init__(self, deadline_s: float, cancel_event: Optional[threading.Event] = None) -> None:
        self._deadline = time.monotonic() + deadline_s
        self._cancel_event = cancel_event
        self._finished = threading.Event()
        self._lock = threading.Lock()
        self._connections: List[object] = []
        self._thread = threading.Thread(target=self._watch, name="probe-deadline", daemon=True)
        self.fired = False

    @classmethod
    def active(cls) -> Optional["AttemptGuard"]:
        return getattr(_current, "guard", None)

    def __enter__(self) -> "AttemptGuard":
        _current.guard = self
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        _current.guard = None
        self._finished.set()
        self._thread.join()

    def track(self, conn) -> None:
        with self._lock:
            self._connections.append(conn)
            fired = self.fired
        if fired:
            _abort_connection(conn)

    def _expired(self) -> bool:
        if self._cancel_event is not None and self._cancel_event.is_set():
            return True
        return time.monotonic() >= self._deadline

    def _watch(self) -> None:
        while not self._finished.wait(self.POLL_INTERVAL_S):
            if not self._expired():
                continue
            with self._lock:
                self.fired = True
                connections = list(self._connections)
            for conn in connections:
                _abort_connection(conn)


class _TrackedPoolMixin:
    def _get_conn(self, timeout=None):
        conn = super()._get_conn(timeout=timeout)
        guard = AttemptGuard.active()
        if guard is not None:
            guard.track(conn)
        return conn


class TrackedHTTPConnectionPool(_TrackedPoolMixin, HTTPConnectionPool):
    pass


class TrackedHTTPSConnectionPool(_TrackedPoolMixin, HTTPSConnectionPool):
    pass


class ProbeAdapter(HTTPAdapter):
    """No-retry adapter whose connections can be aborted by ``AttemptGuard``."""

    def __init__(self, **kwargs) -> None:
        kwargs.setdefault("max_retries", 0)
        kwargs.setdefault("pool_maxsize", 2)
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=DEFAULT_POOLBLOCK, **pool_kwargs):
        super().init_poolmanager(connections, maxsize, block, **pool_kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": TrackedHTTPConnectionPool,
            "https": TrackedHTTPSConnectionPool,
        }


class ServerNameAdapter(ProbeAdapter):
    """ProbeAdapter that presents ``server_name`` during the TLS handshake.

    Certificate hostname checks are made against ``server_name`` instead of
    the IP address in the URL.
    """

    def __init__(self, server_name: str, **kwargs) -> None:
        self.server_name = server_name
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=DEFAULT_POOLBLOCK, **pool_kwargs):
        pool_kwargs["server_hostname"] = self.server_name
        pool_kwargs["assert_hostname"] = self.server_name
        super().init_poolmanager(connections, maxsize, block, **pool_kwargs)


class ProbeClient:
    """Issue single timed GET requests on behalf of the scanner."""

    def __init__(self, session: Optional[requests.Session] = None, verify: bool = True) -> None:
        """Initialize the client.

        Args:
            session: Optional pre-configured Requests session. Only sockets
                from ``ProbeAdapter`` pools are aborted at the deadline.
            verify: Verify TLS certificates (against the server name when one
                is given).
        """
        self._session = session or self._new_session()
        self._verify = verify
        self._https_server_name: Optional[str] = None

    @staticmethod
    def _new_session() -> requests.Session:
        session = requests.Session()
        session.trust_env = False
        session.mount("http://", ProbeAdapter())
        session.mount("https://", ProbeAdapter())
        return session

    def _use_server_name(self, server_name: Optional[str]) -> None:
        # One https adapter at a time, swapped only when the server name changes.
        if server_name == self._https_server_name:
            return
        previous = self._session.adapters.get("https://")
        adapter = ServerNameAdapter(server_name) if server_name else ProbeAdapter()
        self._session.mount("https://", adapter)
        self._https_server_name = server_name
        if previous is not None:
            previous.close()

    def probe(
        self,
        url: str,
        path: str,
        server_name: Optional[str],
        deadline_ms: float,
        cancel_event: Optional[threading.Event] = None,
    ) -> ProbeOutcome:
        """Send one GET to ``url + path`` and classify the result.

        Args:
            url: Scheme, address and port, e.g. ``https://104.16.1.2:443``.
            path: Request path, e.g. ``/cdn-cgi/trace``.
            server_name: Optional TLS server name / Host header value.
            deadline_ms: Hard limit for the attempt in milliseconds.
            cancel_event: When set, the attempt is skipped or aborted.
        """
        if cancel_event is not None and cancel_event.is_set():
            return ProbeOutcome.TIMEOUT

        headers = dict(HEADERS)
        if server_name:
            headers["host"] = server_name
        if url.startswith("https://"):
            self._use_server_name(server_name or None)

        deadline_s = max(deadline_ms, 1.0) / 1000.0
        start_ns = time.perf_counter_ns()
        with AttemptGuard(deadline_s, cancel_event) as guard:
            try:
                response = self._session.get(
                    url + path,
                    headers=headers,
                    timeout=(deadline_s, deadline_s),
                    verify=self._verify,
                    allow_redirects=False,
                    stream=True,
                )
            except requests.Timeout:
                return ProbeOutcome.TIMEOUT
            except requests.RequestException as exc:
                if guard.fired:
                    return ProbeOutcome.TIMEOUT
                LOGGER.debug("probe %s%s failed: %s", url, path, exc)
                return ProbeOutcome.OTHER_FAILURE
            response.close()

        elapsed_ms = (time.perf_counter_ns() - start_ns) / 1_000_000.0
        if guard.fired or elapsed_ms > deadline_ms:
            return ProbeOutcome.TIMEOUT
        return ProbeOutcome.SUCCESS

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "ProbeClient":
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()


__all__ = [
    "AttemptGuard",
    "HEADERS",
    "ProbeAdapter",
    "ProbeClient",
    "ProbeOutcome",
    "ServerNameAdapter",
]
