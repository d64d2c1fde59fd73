"""
Bounded ledger of recently seen trade identities.
"""

from typing import Dict, Iterable


class SeenSet:
    """
    Insertion-ordered set with a hard ceiling.

    Once more than ``capacity`` keys are held, the oldest ones are dropped
    and only the most recent ``capacity // 2`` are kept.
    """

    def __init__(self, capacity: int = 10000):
        if capacity < 2:
            raise ValueError("capacity must be >= 2")
        self.capacity = capacity
        self._keys: Dict[str, None] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str) -> None:
        self._keys[key] = None
        self.prune()

    def add_all(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._keys[key] = None
        self.prune()

    def contains_any(self, keys: Iterable[str]) -> bool:
        return any(key in self._keys for key in keys)

    def prune(self) -> int:
        """Evict the oldest half once over capacity. Returns number evicted."""
        if len(self._keys) <= self.capacity:
            return 0
        keep = self.capacity // 2
        evicted = len(self._keys) - keep
        self._keys = dict.fromkeys(list(self._keys)[-keep:])
        return evicted
