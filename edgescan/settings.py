"""Scan tuning values supplied by the caller.

``ScanSettings`` is immutable; the engine reads it once per run so a scan
never observes a settings change halfway through.
"""

from dataclasses import dataclass

HTTP_PORTS = (80, 8080, 2052, 2082, 2086, 2095)
HTTPS_PORTS = (443, 8443, 2053, 2083, 2087, 2096)
MIN_HTTP_PORT = 80


@dataclass(frozen=True)
class ScanSettings:
    """Caller-supplied scan parameters.

    Args:
        max_ip_count: Stop once this many candidates have been admitted.
        max_latency: Maximum acceptable average latency in milliseconds.
        ip_regex: Optional pattern every candidate address must fully match.
        sni_value: Optional TLS server name; enables HTTPS on HTTPS ports.
        port: Target TCP port.
    """

    max_ip_count: int = 5
    max_latency: int = 1500
    ip_regex: str = ""
    sni_value: str = ""
    port: int = 80

    def __post_init__(self) -> None:
        if self.max_ip_count <= 0:
            raise ValueError("max_ip_count must be positive")
        if self.max_latency <= 0:
            raise ValueError("max_latency must be positive")
        if self.port <= 0:
            raise ValueError("port must be positive")

    @property
    def uses_tls(self) -> bool:
        """True when probes go over HTTPS with a server-name override."""
        return bool(self.sni_value) and self.port in HTTPS_PORTS


__all__ = ["ScanSettings", "HTTP_PORTS", "HTTPS_PORTS", "MIN_HTTP_PORT"]
