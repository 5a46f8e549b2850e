"""
PollingWorker -- in-process background loop shared by the periodic jobs.

Contract:
    Subclasses implement ``tick()``; the worker calls it every
    ``interval_seconds`` on a daemon thread until ``stop()`` is called.
    ``tick()`` is public so tests drive it directly with a deterministic
    clock instead of starting the thread.

Invariants enforced:
    - Graceful shutdown: the stop signal is checked between ticks and
      ``stop()`` joins the thread with a timeout.
    - An exception escaping ``tick()`` is logged and the loop carries on.

Non-goals:
    - NOT a distributed scheduler (no leader election).
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any

from inventory_kernel.logging_config import get_logger

logger = get_logger("alerts.worker")


class PollingWorker(ABC):
    """Base class for the rule engine, expiry monitor and reconciliation job."""

    name = "polling-worker"

    def __init__(self, interval_seconds: float = 60.0):
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @abstractmethod
    def tick(self) -> Any:
        """Run one polling pass (public for testing)."""
        ...

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """Start the worker in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=self.name,
            daemon=True,
        )
        self._thread.start()
        logger.info("worker_started", extra={"worker": self.name, "interval": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("worker_stopped", extra={"worker": self.name})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("worker_tick_exception", extra={"worker": self.name})
            self._stop_event.wait(timeout=self._interval)
