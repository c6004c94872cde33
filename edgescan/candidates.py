"""Helpers for loading candidate address lists from the `data/` directory."""

import ipaddress
import random
from pathlib import Path
from typing import List, Optional

from edgescan.config import REPO_ROOT

DATA_DIR = REPO_ROOT / "data"
DEFAULT_CANDIDATES_FILE = DATA_DIR / "cloudflare_ipv4.txt"
MAX_EXPANDED_NETWORK = 256
SAMPLE_PREFIX = 24


def expand_entry(
    entry: str,
    rng: Optional[random.Random] = None,
    samples_per_block: int = 1,
) -> List[str]:
    """Turn one list entry into candidate addresses.

    A plain address is returned as is. A network with at most 256
    addresses expands to its hosts. Larger IPv4 networks are cut into /24
    blocks and ``samples_per_block`` random hosts are drawn from each.
    """
    if "/" not in entry:
        return [str(ipaddress.ip_address(entry))]

    network = ipaddress.ip_network(entry, strict=False)
    if network.num_addresses <= 2:
        return [str(ip) for ip in network]
    if network.num_addresses <= MAX_EXPANDED_NETWORK:
        return [str(ip) for ip in network.hosts()]
    if network.version != 4:
        raise ValueError(f"network too large to sample: {entry}")

    generator = rng or random
    addresses: List[str] = []
    for block in network.subnets(new_prefix=SAMPLE_PREFIX):
        # skip network and broadcast addresses
        offsets = generator.sample(range(1, block.num_addresses - 1), samples_per_block)
        addresses.extend(str(block.network_address + offset) for offset in sorted(offsets))
    return addresses


def load_candidates(
    path: Path = DEFAULT_CANDIDATES_FILE,
    *,
    rng: Optional[random.Random] = None,
    samples_per_block: int = 1,
) -> List[str]:
    """
    Return the candidate addresses listed in ``path``.

    One address or CIDR network per line. Lines beginning with `#` and blank
    lines are ignored; trailing `# comments` are stripped. Results preserve
    file order and duplicate addresses are collapsed.
    """
    if samples_per_block <= 0 or samples_per_block > 254:
        raise ValueError("samples_per_block must be between 1 and 254")
    if not path.exists():
        raise FileNotFoundError(f"Candidate list not found: {path}")

    seen = set()
    candidates: List[str] = []
    for line_no, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        entry = line.split("#", 1)[0].strip()
        if not entry:
            continue
        try:
            expanded = expand_entry(entry, rng=rng, samples_per_block=samples_per_block)
        except ValueError as exc:
            raise ValueError(f"{path}:{line_no}: invalid candidate {entry!r}: {exc}") from exc
        for address in expanded:
            if address not in seen:
                seen.add(address)
                candidates.append(address)
    return candidates


__all__ = ["DATA_DIR", "DEFAULT_CANDIDATES_FILE", "expand_entry", "load_candidates"]
