import socket
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from edgescan.network.probe_client import (
    HEADERS,
    AttemptGuard,
    ProbeAdapter,
    ProbeClient,
    ProbeOutcome,
    ServerNameAdapter,
    TrackedHTTPSConnectionPool,
)


@pytest.fixture
def mock_session():
    session = MagicMock()
    session.get.return_value = MagicMock(status_code=200)
    return session


def test_probe_builds_request(mock_session):
    client = ProbeClient(session=mock_session)

    outcome = client.probe("http://1.2.3.4:80", "/cdn-cgi/trace", None, 1500)

    assert outcome is ProbeOutcome.SUCCESS
    args, kwargs = mock_session.get.call_args
    assert args[0] == "http://1.2.3.4:80/cdn-cgi/trace"
    assert kwargs["headers"] == HEADERS
    assert kwargs["timeout"] == (1.5, 1.5)
    assert kwargs["stream"] is True
    assert kwargs["allow_redirects"] is False
    mock_session.get.return_value.close.assert_called_once()
    mock_session.mount.assert_not_called()


def test_error_status_still_counts_as_response(mock_session):
    mock_session.get.return_value = MagicMock(status_code=503)
    client = ProbeClient(session=mock_session)

    assert client.probe("http://1.2.3.4:80", "/", None, 1000) is ProbeOutcome.SUCCESS


@pytest.mark.parametrize(
    "exc",
    [requests.ReadTimeout("slow"), requests.ConnectTimeout("slow connect")],
)
def test_timeouts_are_classified_as_timeout(mock_session, exc):
    mock_session.get.side_effect = exc
    client = ProbeClient(session=mock_session)

    assert client.probe("http://1.2.3.4:80", "/", None, 1000) is ProbeOutcome.TIMEOUT


@pytest.mark.parametrize(
    "exc",
    [requests.ConnectionError("refused"), requests.exceptions.SSLError("bad cert")],
)
def test_other_transport_errors_are_classified_separately(mock_session, exc):
    mock_session.get.side_effect = exc
    client = ProbeClient(session=mock_session)

    assert client.probe("http://1.2.3.4:80", "/", None, 1000) is ProbeOutcome.OTHER_FAILURE


def test_late_response_counts_as_timeout(mock_session, monkeypatch):
    ticks = iter([0, 2_000_000_000])
    monkeypatch.setattr("edgescan.network.probe_client.time.perf_counter_ns", lambda: next(ticks))
    client = ProbeClient(session=mock_session)

    assert client.probe("http://1.2.3.4:80", "/", None, 1000) is ProbeOutcome.TIMEOUT


def test_cancelled_attempt_is_not_sent(mock_session):
    cancel = threading.Event()
    cancel.set()
    client = ProbeClient(session=mock_session)

    outcome = client.probe("http://1.2.3.4:80", "/", None, 1000, cancel)

    assert outcome is ProbeOutcome.TIMEOUT
    mock_session.get.assert_not_called()


def test_server_name_mounts_adapter_and_sets_host(mock_session):
    client = ProbeClient(session=mock_session)

    client.probe("https://1.2.3.4:443", "/__down", "edge.example", 1000)
    client.probe("https://1.2.3.5:8443", "/__down", "edge.example", 1000)

    mock_session.mount.assert_called_once()
    prefix, adapter = mock_session.mount.call_args[0]
    assert prefix == "https://"
    assert isinstance(adapter, ServerNameAdapter)
    _, kwargs = mock_session.get.call_args
    assert kwargs["headers"]["host"] == "edge.example"


def test_https_adapters_stay_bounded_across_addresses(monkeypatch):
    client = ProbeClient()
    monkeypatch.setattr(client._session, "get", MagicMock(return_value=MagicMock()))

    for port in range(2000, 2300):
        client.probe(f"https://10.0.0.1:{port}", "/__down", "edge.example", 1000)

    assert len(client._session.adapters) == 2
    first = client._session.adapters["https://"]
    assert first.server_name == "edge.example"

    client.probe("https://10.0.0.1:443", "/__down", "other.example", 1000)
    assert len(client._session.adapters) == 2
    assert client._session.adapters["https://"].server_name == "other.example"

    client.probe("https://10.0.0.1:443", "/__down", None, 1000)
    assert not isinstance(client._session.adapters["https://"], ServerNameAdapter)
    assert isinstance(client._session.adapters["https://"], ProbeAdapter)
    client.close()


def test_server_name_adapter_configures_pool_manager():
    adapter = ServerNameAdapter("edge.example")

    pool_kwargs = adapter.poolmanager.connection_pool_kw
    assert pool_kwargs["server_hostname"] == "edge.example"
    assert pool_kwargs["assert_hostname"] == "edge.example"


def test_client_closes_session(mock_session):
    with ProbeClient(session=mock_session):
        pass

    mock_session.close.assert_called_once()


def test_adapter_pools_register_connections_for_abort():
    adapter = ServerNameAdapter("edge.example")

    pool = adapter.poolmanager.connection_from_url("https://10.0.0.1:443")

    assert isinstance(pool, TrackedHTTPSConnectionPool)
    adapter.close()


def test_error_after_guard_fires_counts_as_timeout(mock_session):
    cancel = threading.Event()

    def hang_until_aborted(*args, **kwargs):
        guard = AttemptGuard.active()
        cancel.set()
        deadline = time.monotonic() + 5
        while not guard.fired and time.monotonic() < deadline:
            time.sleep(0.01)
        raise requests.ConnectionError("connection aborted")

    mock_session.get.side_effect = hang_until_aborted
    client = ProbeClient(session=mock_session)

    assert client.probe("http://1.2.3.4:80", "/", None, 10_000, cancel) is ProbeOutcome.TIMEOUT


@pytest.fixture
def slow_header_server():
    """Local server that answers one byte of its status line every 100 ms."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    listener.settimeout(5)
    stop = threading.Event()

    def serve():
        try:
            conn, _ = listener.accept()
        except OSError:
            return
        with conn:
            conn.recv(4096)
            for byte in b"HTTP/1.1 200 OK\r\nContent-Length: 0\r\n\r\n":
                if stop.wait(0.1):
                    return
                try:
                    conn.sendall(bytes([byte]))
                except OSError:
                    return

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield "http://127.0.0.1:%d" % listener.getsockname()[1]
    stop.set()
    thread.join(5)
    listener.close()


def test_trickling_headers_are_cut_off_at_deadline(slow_header_server):
    with ProbeClient() as client:
        started = time.monotonic()
        outcome = client.probe(slow_header_server, "/", None, 300)
        wall_ms = (time.monotonic() - started) * 1000

    assert outcome is ProbeOutcome.TIMEOUT
    assert wall_ms < 1000


def test_cancel_aborts_request_in_flight(slow_header_server):
    cancel = threading.Event()
    timer = threading.Timer(0.2, cancel.set)

    with ProbeClient() as client:
        started = time.monotonic()
        timer.start()
        try:
            outcome = client.probe(slow_header_server, "/", None, 10_000, cancel)
        finally:
            timer.cancel()
        wall_ms = (time.monotonic() - started) * 1000

    assert outcome is ProbeOutcome.TIMEOUT
    assert wall_ms < 2000
