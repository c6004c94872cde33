"""Network utilities for outbound HTTP probes.

Exports:
- ``ProbeClient``: one timed GET per call, classified as a ``ProbeOutcome``.
- ``ProbeAdapter``: no-retry Requests adapter with abortable connections.
- ``ServerNameAdapter``: ``ProbeAdapter`` overriding the TLS server name.
"""

from edgescan.network.probe_client import (
    ProbeAdapter,
    ProbeClient,
    ProbeOutcome,
    ServerNameAdapter,
)

__all__ = [
    "ProbeAdapter",
    "ProbeClient",
    "ProbeOutcome",
    "ServerNameAdapter",
]
