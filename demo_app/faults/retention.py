"""
Bounded retention buffer backing the memory-retention route.

Simulates a leak that plateaus: RSS steps up with every retained block until
the buffer is full, after which each new block evicts the oldest one.
"""

import threading
from collections import deque
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class RetentionSnapshot:
    """Buffer state read under the lock, right after a mutation."""
    blocks: int
    nbytes: int
    evicted: int = 0


class RetentionBuffer:
    """
    Fixed-capacity FIFO of memory blocks, safe for concurrent requests.

    Invariant: len(buffer) <= capacity at all times.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1: {capacity}")
        self.capacity = capacity
        self._blocks = deque()
        self._nbytes = 0
        self._lock = threading.Lock()

    def make_room(self) -> int:
        """
        Evict the oldest blocks until one more fits.

        Called before allocating, so the new block never coexists with a full
        buffer. Returns the number of blocks evicted.
        """
        with self._lock:
            return self._evict_to(self.capacity - 1)

    def retain(self, block: bytearray) -> RetentionSnapshot:
        """
        Append a block, evicting the oldest ones first when full.

        Returns:
            Buffer state after the append, with the number of blocks evicted
        """
        with self._lock:
            evicted = self._evict_to(self.capacity - 1)
            self._blocks.append(block)
            self._nbytes += len(block)
            return RetentionSnapshot(blocks=len(self._blocks), nbytes=self._nbytes, evicted=evicted)

    def clear(self) -> int:
        """Drop every retained block and return how many there were."""
        with self._lock:
            dropped = len(self._blocks)
            self._blocks.clear()
            self._nbytes = 0
        return dropped

    def snapshot(self) -> RetentionSnapshot:
        with self._lock:
            return RetentionSnapshot(blocks=len(self._blocks), nbytes=self._nbytes)

    def blocks(self) -> Tuple[bytearray, ...]:
        with self._lock:
            return tuple(self._blocks)

    @property
    def nbytes(self) -> int:
        return self._nbytes

    def __len__(self) -> int:
        return len(self._blocks)

    def _evict_to(self, size: int) -> int:
        evicted = 0
        while len(self._blocks) > size:
            self._nbytes -= len(self._blocks.popleft())
            evicted += 1
        return evicted

    def __repr__(self) -> str:
        return f"RetentionBuffer(blocks={len(self)}/{self.capacity}, nbytes={self.nbytes})"
