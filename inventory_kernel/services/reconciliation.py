"""
ReconciliationService -- consistency backstop for the cached stock projection.

Responsibility:
    Compares each item's stored current_stock with the signed sum of its
    movement log and, for lot-tracked items, with the sum of its active lot
    quantities.  Discrepancies are logged and returned; nothing is
    auto-corrected.

Architecture position:
    Kernel > Services.  Read-only; uses InventorySelector.  Driven
    periodically by the ReconciliationJob in the alerting runtime.

Invariants checked:
    - current_stock == sum(movement.quantity)       (ledger_movement_mismatch)
    - current_stock == sum(active lot quantity)     (lot_sum_mismatch, lot-
      tracked items only; lot tracking is advisory)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_kernel.db.engine import session_scope
from inventory_kernel.exceptions import ItemNotFoundError, PersistenceFailureError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.selectors.inventory_selector import InventorySelector

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class ReconciliationReport:
    item_id: UUID
    current_stock: int
    movement_sum: int
    lot_tracked: bool
    active_lot_sum: int | None

    @property
    def ledger_consistent(self) -> bool:
        return self.current_stock == self.movement_sum

    @property
    def lots_consistent(self) -> bool:
        return not self.lot_tracked or self.active_lot_sum == self.current_stock

    @property
    def is_consistent(self) -> bool:
        return self.ledger_consistent and self.lots_consistent


class ReconciliationService:
    """Compares the cached projection against the movement log and lots."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def reconcile_item(self, item_id: UUID) -> ReconciliationReport:
        try:
            with session_scope(self._session_factory) as session:
                report = self._reconcile(InventorySelector(session), item_id)
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("reconcile_item", str(exc)) from exc
        self._log(report)
        return report

    def reconcile_all(self, store_id: str | None = None) -> list[ReconciliationReport]:
        """Reconcile every non-retired item; returns only the discrepancies."""
        try:
            with session_scope(self._session_factory) as session:
                selector = InventorySelector(session)
                reports = [
                    self._reconcile(selector, item.item_id)
                    for item in selector.list_items(store_id)
                ]
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("reconcile_all", str(exc)) from exc

        mismatches = [r for r in reports if not r.is_consistent]
        for report in mismatches:
            self._log(report)
        logger.info(
            "reconciliation_completed",
            extra={"items_checked": len(reports), "mismatches": len(mismatches)},
        )
        return mismatches

    def _reconcile(self, selector: InventorySelector, item_id: UUID) -> ReconciliationReport:
        item = selector.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))
        lot_tracked = selector.is_lot_tracked(item_id)
        return ReconciliationReport(
            item_id=item_id,
            current_stock=item.current_stock,
            movement_sum=selector.movement_sum(item_id),
            lot_tracked=lot_tracked,
            active_lot_sum=selector.active_lot_sum(item_id) if lot_tracked else None,
        )

    def _log(self, report: ReconciliationReport) -> None:
        if not report.ledger_consistent:
            logger.error(
                "ledger_movement_mismatch",
                extra={
                    "item_id": str(report.item_id),
                    "current_stock": report.current_stock,
                    "movement_sum": report.movement_sum,
                },
            )
        if not report.lots_consistent:
            logger.warning(
                "lot_sum_mismatch",
                extra={
                    "item_id": str(report.item_id),
                    "current_stock": report.current_stock,
                    "active_lot_sum": report.active_lot_sum,
                },
            )
