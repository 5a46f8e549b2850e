"""
Periodic ledger jobs -- lot expiry monitoring and reconciliation.

ExpiryMonitor (hourly by default):
    1. ``StockLedger.expire_lots(now)`` writes off lots past their expiry
       date (one ``loss`` movement each).
    2. Re-checks thresholds for every item with an active lot expiring
       inside the warning window, so expiry alerts are raised even when
       the item's stock never moves.  Threshold deduplication keeps
       repeated passes from raising duplicates.

ReconciliationJob (daily by default):
    Runs ``ReconciliationService.reconcile_all()``; mismatches are logged
    by the service and never corrected.

Both are PollingWorkers; ``tick()`` is public for tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from inventory_kernel.db.engine import session_scope
from inventory_kernel.exceptions import ItemNotFoundError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.services.reconciliation import (
    ReconciliationReport,
    ReconciliationService,
)
from inventory_kernel.services.stock_ledger import StockLedger

from inventory_alerts.services.worker import PollingWorker

logger = get_logger("alerts.expiry_monitor")


@dataclass(frozen=True)
class ExpirySweep:
    lots_expired: int
    items_checked: int
    alerts_requested: int


class ExpiryMonitor(PollingWorker):
    """Expires lots and raises expiry alerts on a fixed interval."""

    name = "expiry-monitor"

    def __init__(
        self,
        ledger: StockLedger,
        *,
        interval_seconds: float = 3600.0,
        expiry_warning_days: int = 7,
        actor: str = "expiry_monitor",
    ):
        super().__init__(interval_seconds)
        self._ledger = ledger
        self._warning_days = expiry_warning_days
        self._actor = actor

    def tick(self) -> ExpirySweep:
        now = self._ledger.clock.now()
        expired = self._ledger.expire_lots(now, actor=self._actor)

        horizon = (now + timedelta(days=self._warning_days)).date()
        with session_scope(self._ledger.session_factory) as session:
            item_ids = sorted(
                {lot.item_id for lot in InventorySelector(session).expiring_lots(horizon)},
                key=str,
            )

        requested = 0
        for item_id in item_ids:
            if self.stopping:
                break
            with LogContext.bind(item_id=str(item_id)):
                try:
                    requested += len(self._ledger.check_thresholds(item_id))
                except ItemNotFoundError:
                    # Retired items keep their lots but no longer alert
                    logger.warning("expiry_check_skipped", extra={"item_id": str(item_id)})

        sweep = ExpirySweep(len(expired), len(item_ids), requested)
        logger.info(
            "expiry_sweep_completed",
            extra={
                "lots_expired": sweep.lots_expired,
                "items_checked": sweep.items_checked,
                "alerts_requested": sweep.alerts_requested,
            },
        )
        return sweep


class ReconciliationJob(PollingWorker):
    """Sweeps every item through ReconciliationService on a fixed interval."""

    name = "reconciliation-job"

    def __init__(
        self,
        service: ReconciliationService,
        *,
        interval_seconds: float = 86400.0,
        store_id: str | None = None,
    ):
        super().__init__(interval_seconds)
        self._service = service
        self._store_id = store_id

    def tick(self) -> list[ReconciliationReport]:
        return self._service.reconcile_all(self._store_id)
