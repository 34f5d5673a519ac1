"""
Point Id Generation

Strictly increasing integer ids for vector points.
"""

import threading
import time
from typing import Callable, Optional


class PointIdGenerator:
    """
    Thread-safe generator of strictly increasing integer ids.

    Ids are seeded from the wall clock in microseconds, so a later process
    continues above the ids of an earlier one, and never repeat within a
    process even when many threads ingest concurrently.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        """
        Initialize the generator.

        Args:
            clock: Returns the current time as an integer (default: microseconds since epoch)
        """
        self._clock = clock or (lambda: time.time_ns() // 1000)
        self._last_id = 0
        self._lock = threading.Lock()

    def next_id(self) -> int:
        """Return the next id."""
        with self._lock:
            self._last_id = max(self._clock(), self._last_id + 1)
            return self._last_id

    def reserve(self, count: int) -> list:
        """
        Reserve a contiguous block of ids.

        Args:
            count: Number of ids

        Returns:
            List of ``count`` increasing ids
        """
        if count < 0:
            raise ValueError(f"count must be non-negative, got {count}")
        if count == 0:
            return []

        with self._lock:
            first = max(self._clock(), self._last_id + 1)
            self._last_id = first + count - 1
            return list(range(first, first + count))
