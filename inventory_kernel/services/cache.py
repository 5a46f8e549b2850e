"""
ItemCache -- read-through, write-invalidate cache of item snapshots.

Responsibility:
    Holds InventoryItem snapshots keyed by item id for a bounded time.
    Every ledger mutation invalidates the item's entry before the mutation
    returns.

Invariants enforced:
    - A reader never re-populates an entry with a value it read before the
      latest invalidation.  Each key carries a generation counter; a loaded
      value is stored only if the generation is unchanged since the load
      began.
    - Entries expire after ``ttl_seconds`` (measured on the injected Clock).
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.types import InventoryItem


class ItemCache:
    """Thread-safe TTL cache with generation-checked population."""

    def __init__(self, ttl_seconds: int = 300, clock: Clock | None = None):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._entries: dict[UUID, tuple[InventoryItem, datetime]] = {}
        self._generations: dict[UUID, int] = {}

    def get_or_load(
        self,
        item_id: UUID,
        loader: Callable[[UUID], InventoryItem | None],
    ) -> InventoryItem | None:
        """Return the cached snapshot or load, store and return it."""
        now = self._clock.now()
        with self._lock:
            cached = self._entries.get(item_id)
            if cached is not None and cached[1] > now:
                return cached[0]
            generation = self._generations.get(item_id, 0)

        item = loader(item_id)
        if item is None:
            return None

        with self._lock:
            if self._generations.get(item_id, 0) == generation:
                self._entries[item_id] = (item, now + self._ttl)
        return item

    def invalidate(self, item_id: UUID) -> None:
        with self._lock:
            self._entries.pop(item_id, None)
            self._generations[item_id] = self._generations.get(item_id, 0) + 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            for key in list(self._generations):
                self._generations[key] += 1

    def __contains__(self, item_id: UUID) -> bool:
        with self._lock:
            return item_id in self._entries
