"""Random ordering of candidate lists."""

import random
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")


def randomize_elements(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """Return a new list with ``items`` in uniformly random order.

    Fisher-Yates over a copy; ``items`` itself is left untouched.
    """
    generator = rng or random
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = generator.randrange(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


__all__ = ["randomize_elements"]
