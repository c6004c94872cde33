"""Latency-ranked collection of admitted candidates."""

from dataclasses import dataclass
from typing import Iterator, List, Tuple


@dataclass(frozen=True)
class ValidResult:
    """A candidate that passed admission.

    Attributes:
        address: The probed address.
        latency_ms: Average latency over all attempts, in milliseconds.
    """

    address: str
    latency_ms: int


class ResultStore:
    """Results kept sorted ascending by latency.

    The store never evicts; the scan engine stops feeding it once the
    configured maximum is reached. Equal latencies keep insertion order.
    """

    def __init__(self) -> None:
        self._items: List[ValidResult] = []

    def insert(self, result: ValidResult) -> None:
        self._items.append(result)
        self._items.sort(key=lambda r: r.latency_ms)

    def clear(self) -> None:
        self._items = []

    def items(self) -> Tuple[ValidResult, ...]:
        """Return an immutable snapshot of the current ranking."""
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ValidResult]:
        return iter(self.items())


__all__ = ["ValidResult", "ResultStore"]
