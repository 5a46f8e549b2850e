"""
KeyedLockRegistry -- per-key mutual exclusion for in-process serialization.

Responsibility:
    Hands out one re-entrant lock per key (item id, alert id, dedup key) so
    that check-then-act sequences on the same key are linearized while
    operations on different keys proceed in parallel.

Architecture position:
    Kernel > Services.  Used by StockLedger and FifoConsumptionEngine (per
    item) and by the alerting services (per alert, per dedup key).

Invariants enforced:
    - Two callers holding the same key never overlap.
    - Locks for idle keys are dropped once no holder or waiter remains, so
      the registry does not grow with the number of keys ever seen.

Non-goals:
    - Does NOT serialize across processes.  Multi-process deployments rely
      on SELECT ... FOR UPDATE and the item version column.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLockRegistry:
    """Registry of re-entrant locks keyed by an arbitrary hashable."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
