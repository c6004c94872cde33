"""edge-scan: find the fastest responding edge addresses over HTTP(S)."""

__version__ = "1.0.0"
