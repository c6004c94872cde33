"""Configuration utilities for edge-scan runs.

This module reads environment variables (optionally from an `.env` file) and
produces an application configuration object consumed across the project.

See `.env.example` for supported keys: `LOG_DIR`, `LOG_LEVEL`, `APP_NAME`
and the scan defaults `SCAN_MAX_IP_COUNT`, `SCAN_MAX_LATENCY_MS`,
`SCAN_IP_REGEX`, `SCAN_SNI` and `SCAN_PORT`.

Usage example:

    from edgescan.config import load_config

    config = load_config()
    engine = ScanEngine(ProbeClient(), config.scan_settings)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, MutableMapping, Optional

from edgescan.settings import ScanSettings

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = REPO_ROOT / ".env"


def _load_env_file(path: Path) -> Dict[str, str]:
    """Parse a dotenv-style file into a dictionary."""
    if not path.exists():
        return {}

    data: Dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = value.strip().strip("\"'")
    return data


def _merge_envs(dotenv_values: Mapping[str, str], env: MutableMapping[str, str]) -> Dict[str, str]:
    """Merge dotenv values with the current environment, preferring os.environ."""
    merged = dict(dotenv_values)
    merged.update(env)  # os.environ wins
    return merged


def load_environment(env_file: Optional[Path] = None) -> Dict[str, str]:
    """Return the dotenv file merged with ``os.environ``."""
    target_file = env_file or DEFAULT_ENV_FILE
    return _merge_envs(_load_env_file(target_file), os.environ)


def _int_value(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def _scan_settings_from(values: Mapping[str, str]) -> ScanSettings:
    """Build scan defaults from ``SCAN_*`` keys, falling back to built-ins."""
    defaults = ScanSettings()
    return ScanSettings(
        max_ip_count=_int_value(values, "SCAN_MAX_IP_COUNT", defaults.max_ip_count),
        max_latency=_int_value(values, "SCAN_MAX_LATENCY_MS", defaults.max_latency),
        ip_regex=values.get("SCAN_IP_REGEX", defaults.ip_regex),
        sni_value=values.get("SCAN_SNI", defaults.sni_value).strip(),
        port=_int_value(values, "SCAN_PORT", defaults.port),
    )


@dataclass(frozen=True)
class AppConfig:
    """Application-level configuration values."""

    log_directory: Path
    log_level: str
    app_name: str = "edge-scan"
    scan_settings: ScanSettings = field(default_factory=ScanSettings)


def load_config(env_file: Optional[Path] = None) -> AppConfig:
    """Load configuration values using environment defaults."""
    merged = load_environment(env_file)

    log_directory = Path(merged.get("LOG_DIR", REPO_ROOT / "logs"))
    if not log_directory.is_absolute():
        log_directory = REPO_ROOT / log_directory

    log_level = merged.get("LOG_LEVEL", "INFO").upper()

    return AppConfig(
        log_directory=log_directory,
        log_level=log_level,
        app_name=merged.get("APP_NAME", "edge-scan"),
        scan_settings=_scan_settings_from(merged),
    )


__all__ = ["AppConfig", "load_config", "load_environment", "REPO_ROOT"]
