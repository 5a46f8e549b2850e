"""
FifoConsumptionEngine -- depletes an item's lots oldest-received first.

Responsibility:
    Given a quantity to consume, walks the item's active lots in receipt
    order, takes min(remaining, lot.quantity) from each, writes one ``out``
    movement per lot touched and marks emptied lots ``consumed``.

Architecture position:
    Kernel > Services.  Runs inside StockLedger.mutate_item, so it shares
    the ledger's per-item lock, transaction, cache invalidation and
    threshold evaluation.

Invariants enforced:
    - All-or-nothing: the active-lot total is checked BEFORE any lot is
      touched, and every lot and movement write shares one transaction.
    - Each lot movement goes through MovementWriter, so current_stock drops
      by exactly the consumed total.
    - Lot order is (received_at, lot_number).

Failure modes:
    - InsufficientStockError: the active-lot total is below the request;
      nothing is written.
    - ItemNotFoundError / InvalidMovementError / PersistenceFailureError as
      for any ledger mutation.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.types import (
    FifoConsumptionResult,
    LotConsumption,
    LotStatus,
    MovementKind,
)
from inventory_kernel.exceptions import InsufficientStockError, InvalidMovementError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.lot import LotModel
from inventory_kernel.services.movement_writer import MovementWriter
from inventory_kernel.services.stock_ledger import StockLedger, as_item_id

logger = get_logger("services.fifo")


class FifoConsumptionEngine:
    """Oldest-lot-first consumption on top of the stock ledger."""

    def __init__(self, ledger: StockLedger):
        self._ledger = ledger

    def consume_fifo(
        self,
        item_id: UUID | str,
        quantity: int,
        order_id: str | None = None,
        actor: str = "system",
    ) -> FifoConsumptionResult:
        """
        Consume ``quantity`` units across active lots, oldest first.

        Raises:
            InsufficientStockError: active lots hold less than ``quantity``.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidMovementError(
                str(item_id), MovementKind.OUT.value, quantity, "quantity must be a positive integer",
            )

        reason = f"fifo_consumption:{order_id}" if order_id else "fifo_consumption"

        def work(session: Session, writer: MovementWriter) -> FifoConsumptionResult:
            item = writer.load_item_for_update(as_item_id(item_id))
            lots = session.execute(
                select(LotModel)
                .where(
                    LotModel.item_id == item.id,
                    LotModel.status == LotStatus.ACTIVE.value,
                )
                .order_by(LotModel.received_at, LotModel.lot_number)
                .with_for_update()
            ).scalars().all()

            available = sum(lot.quantity for lot in lots)
            if available < quantity:
                logger.info(
                    "fifo_consumption_rejected",
                    extra={"requested": quantity, "lot_total": available},
                )
                raise InsufficientStockError(str(item.id), quantity, available)

            remaining = quantity
            consumptions: list[LotConsumption] = []
            for lot in lots:
                if remaining == 0:
                    break
                if lot.quantity == 0:
                    continue

                take = min(remaining, lot.quantity)
                lot.quantity -= take
                if lot.quantity == 0:
                    lot.status = LotStatus.CONSUMED.value

                movement = writer.write(
                    item,
                    MovementKind.OUT,
                    take,
                    reason,
                    actor,
                    {
                        "reference": order_id,
                        "lot_number": lot.lot_number,
                        "expiry_date": lot.expiry_date,
                        "unit_cost": lot.unit_cost,
                    },
                )
                consumptions.append(
                    LotConsumption(
                        lot_id=lot.id,
                        lot_number=lot.lot_number,
                        quantity=take,
                        unit_cost=lot.unit_cost,
                        remaining_after=lot.quantity,
                        movement_id=movement.id,
                    )
                )
                remaining -= take

            return FifoConsumptionResult(
                item_id=item.id,
                requested=quantity,
                consumptions=tuple(consumptions),
            )

        with LogContext.bind(order_id=order_id):
            result = self._ledger.mutate_item(item_id, "consume_fifo", work)

        logger.info(
            "fifo_consumption_completed",
            extra={
                "item_id": str(result.item_id),
                "requested": quantity,
                "lots_touched": [c.lot_number for c in result.consumptions],
                "total_cost": result.total_cost,
            },
        )
        return result
