"""Command-line entrypoint for running an edge address scan."""

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from edgescan.candidates import DEFAULT_CANDIDATES_FILE, load_candidates
from edgescan.config import REPO_ROOT, AppConfig, load_config
from edgescan.logging_utils import configure_logging, perf_span
from edgescan.network import ProbeClient
from edgescan.scanner import PatternError, ProgressSnapshot, ScanEngine, ScanReport, ScanState
from edgescan.settings import ScanSettings

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_PATTERN_ERROR = 2


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find the lowest-latency edge addresses that answer HTTP(S) reliably."
    )
    parser.add_argument(
        "candidates",
        nargs="?",
        type=Path,
        default=DEFAULT_CANDIDATES_FILE,
        help="File with one address or CIDR network per line (default: data/cloudflare_ipv4.txt).",
    )
    parser.add_argument(
        "--max-ip-count",
        type=int,
        default=None,
        help="Stop after this many addresses pass (default: SCAN_MAX_IP_COUNT or 5).",
    )
    parser.add_argument(
        "--max-latency",
        type=int,
        default=None,
        help="Maximum average latency in ms (default: SCAN_MAX_LATENCY_MS or 1500).",
    )
    parser.add_argument(
        "--ip-regex",
        type=str,
        default=None,
        help="Only scan addresses fully matching this regular expression.",
    )
    parser.add_argument(
        "--sni",
        type=str,
        default=None,
        help="TLS server name; enables HTTPS probing on HTTPS ports.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Target port (default: SCAN_PORT or 80).",
    )
    parser.add_argument(
        "--deeper-rounds",
        type=int,
        default=0,
        help="Extra rounds to run automatically when the depth cap was hit (default: 0).",
    )
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Ask before each deeper search instead of stopping.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Do not print live progress to stderr.",
    )
    return parser.parse_args(argv)


def build_settings(base: ScanSettings, args: argparse.Namespace) -> ScanSettings:
    """Apply command-line overrides on top of the configured defaults."""
    overrides = {
        "max_ip_count": args.max_ip_count,
        "max_latency": args.max_latency,
        "ip_regex": args.ip_regex,
        "sni_value": args.sni,
        "port": args.port,
    }
    return dataclasses.replace(base, **{k: v for k, v in overrides.items() if v is not None})


def _print_progress(snapshot: ProgressSnapshot) -> None:
    if snapshot.scan_state is ScanState.IDLE:
        sys.stderr.write("\n")
    else:
        sys.stderr.write(
            f"\r[{snapshot.total_attempts:>4}] {snapshot.current_candidate:<39} "
            f"{snapshot.attempt_indicator:1} {snapshot.rolling_latency_ms:>5} ms "
            f"({snapshot.color.value})"
        )
    sys.stderr.flush()


def _confirm_deeper(depth_cap: int) -> bool:
    try:
        answer = input(
            f"In each search, only {depth_cap} addresses are evaluated. "
            "Do you want to search deeper? [y/N] "
        )
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _run_round(engine: ScanEngine, candidates: List[str], deeper: bool) -> Optional[ScanReport]:
    try:
        if deeper:
            return engine.rescan(candidates)
        return engine.scan(candidates)
    except KeyboardInterrupt:
        LOGGER.warning("Interrupted; stopping scan")
        engine.stop()
        engine.wait()
        return None


def run_scan(engine: ScanEngine, candidates: List[str], args: argparse.Namespace) -> Optional[ScanReport]:
    """Run the first round plus any deeper rounds the user asks for."""
    round_no = 0
    with perf_span("scan.round", tags={"round": round_no}, logger=LOGGER):
        report = _run_round(engine, candidates, deeper=False)

    while (
        report is not None
        and report.deeper_search_available
        and not report.stopped
        and len(report.results) < engine.settings.max_ip_count
    ):
        wanted = round_no < args.deeper_rounds or (args.interactive and _confirm_deeper(engine.depth_cap))
        if not wanted:
            break
        round_no += 1
        with perf_span("scan.round", tags={"round": round_no}, logger=LOGGER):
            report = _run_round(engine, candidates, deeper=True)
    return report


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config()
        settings = build_settings(config.scan_settings, args)
        candidates = load_candidates(args.candidates)
    except (OSError, ValueError) as exc:
        # Fall back to a default log location so failures are still captured per run.
        fallback = AppConfig(log_directory=REPO_ROOT / "logs", log_level="INFO")
        configure_logging(fallback)
        LOGGER.error("Failed to prepare scan: %s", exc)
        return EXIT_CONFIG_ERROR

    configure_logging(config, include_console=False)
    LOGGER.info("Loaded %d candidates from %s", len(candidates), args.candidates)

    with ProbeClient() as client:
        engine = ScanEngine(client, settings)
        if not args.quiet:
            engine.subscribe(_print_progress)
        try:
            report = run_scan(engine, candidates, args)
        except PatternError as exc:
            LOGGER.error("%s", exc)
            sys.stderr.write(f"{exc}\n")
            return EXIT_PATTERN_ERROR

    results = report.results if report is not None else engine.results()
    if not results:
        print("No address passed the latency check.")
    for result in results:
        print(f"{result.address}\t{result.latency_ms}")
    return EXIT_OK


__all__ = ["build_settings", "main", "parse_args", "run_scan"]
