from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator


class ExemptionSet:
    """Positional whitelist of prompt segments that are never filtered.

    Indices refer to the most recently observed prompt list. If the host adds,
    removes or reorders segments upstream, an index keeps pointing at the same
    position, not at the same content.
    """

    def __init__(self, indices: Iterable[int] = ()):
        self._lock = threading.Lock()
        self._indices: set[int] = set()
        for index in indices:
            self._indices.add(self._check_index(index))

    @staticmethod
    def _check_index(index: int) -> int:
        if isinstance(index, bool) or not isinstance(index, int):
            raise TypeError(f"Segment index must be an int, got {type(index).__name__}")
        if index < 0:
            raise ValueError(f"Segment index must be non-negative, got {index}")
        return index

    def set_exempt(self, index: int, exempt: bool) -> bool:
        """Add or remove ``index``. Returns True when membership changed."""
        index = self._check_index(index)
        with self._lock:
            if exempt:
                if index in self._indices:
                    return False
                self._indices.add(index)
                return True
            if index not in self._indices:
                return False
            self._indices.discard(index)
            return True

    def is_exempt(self, index: int) -> bool:
        with self._lock:
            return index in self._indices

    def snapshot(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._indices)

    def stale_indices(self, segment_count: int) -> list[int]:
        """Indices that do not exist in a prompt list of ``segment_count`` items."""
        with self._lock:
            return sorted(i for i in self._indices if i >= segment_count)

    def to_list(self) -> list[int]:
        return sorted(self.snapshot())

    def __contains__(self, index: object) -> bool:
        with self._lock:
            return index in self._indices

    def __iter__(self) -> Iterator[int]:
        return iter(self.to_list())

    def __len__(self) -> int:
        with self._lock:
            return len(self._indices)

    def __repr__(self) -> str:
        return f"ExemptionSet({self.to_list()!r})"
