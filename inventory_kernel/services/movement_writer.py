"""
MovementWriter -- appends stock movements and applies their deltas.

Responsibility:
    The single place where a StockMovementModel row is inserted and the
    owning item's current_stock is moved by the same signed delta.  Both
    writes are flushed in the caller's transaction, so they commit or roll
    back together.

Architecture position:
    Kernel > Services.  Session-scoped, flush-only (see BaseService).
    Called by StockLedger and FifoConsumptionEngine while they hold the
    per-item lock.

Invariants enforced:
    - current_stock == sum(movement.quantity) per item after every commit.
    - in/out/loss take a positive magnitude; adjustment takes a non-zero
      signed delta.
    - Retired items accept no movements.

Failure modes:
    - ItemNotFoundError: unknown or retired item.
    - InvalidMovementError: bad quantity for the kind, unknown metadata key.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.types import MovementKind
from inventory_kernel.exceptions import InvalidMovementError, ItemNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.item import InventoryItemModel
from inventory_kernel.models.movement import StockMovementModel
from inventory_kernel.services.base import BaseService

logger = get_logger("services.movement_writer")

MOVEMENT_METADATA_KEYS = frozenset(
    {"reference", "lot_number", "expiry_date", "unit_cost", "notes"}
)


def signed_delta(item_id: UUID, kind: MovementKind, quantity: int) -> int:
    """Validate a caller-supplied quantity and return the signed ledger delta."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidMovementError(
            str(item_id), kind.value, quantity, "quantity must be an integer",
        )
    if kind == MovementKind.ADJUSTMENT:
        if quantity == 0:
            raise InvalidMovementError(
                str(item_id), kind.value, quantity, "adjustment must be non-zero",
            )
        return quantity
    if quantity <= 0:
        raise InvalidMovementError(
            str(item_id), kind.value, quantity, "quantity must be positive",
        )
    return kind.signed(quantity)


class MovementWriter(BaseService):
    """Flush-only writer for item rows and their movement log."""

    def __init__(self, session: Session, now: datetime):
        super().__init__(session)
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now

    def load_item_for_update(
        self, item_id: UUID, *, include_retired: bool = False,
    ) -> InventoryItemModel:
        """Lock and return the item row (FOR UPDATE; a no-op on SQLite)."""
        item = self.session.execute(
            select(InventoryItemModel)
            .where(InventoryItemModel.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if item is None or (item.is_retired and not include_retired):
            raise ItemNotFoundError(str(item_id))
        return item

    def write(
        self,
        item: InventoryItemModel,
        kind: MovementKind | str,
        quantity: int,
        reason: str,
        actor: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> StockMovementModel:
        """
        Append one movement and move the item's current_stock by its delta.

        Postconditions:
            - The movement row and the item update are flushed together.
        """
        kind = MovementKind(kind)
        delta = signed_delta(item.id, kind, quantity)
        meta = dict(metadata or {})

        unknown = set(meta) - MOVEMENT_METADATA_KEYS
        if unknown:
            raise InvalidMovementError(
                str(item.id), kind.value, quantity,
                f"unknown metadata keys: {', '.join(sorted(unknown))}",
            )

        expiry = meta.get("expiry_date")
        if isinstance(expiry, str):
            expiry = date.fromisoformat(expiry)
        unit_cost = meta.get("unit_cost")
        if unit_cost is not None:
            unit_cost = Decimal(str(unit_cost))

        movement = StockMovementModel(
            item_id=item.id,
            store_id=item.store_id,
            kind=kind.value,
            quantity=delta,
            reason=reason,
            reference=meta.get("reference"),
            lot_number=meta.get("lot_number"),
            expiry_date=expiry,
            unit_cost=unit_cost,
            notes=meta.get("notes"),
            actor=actor,
            occurred_at=self._now,
        )
        self.session.add(movement)

        previous = item.current_stock
        item.current_stock = previous + delta
        item.last_updated = self._now
        self.session.flush()

        logger.info(
            "stock_movement_recorded",
            extra={
                "item_id": str(item.id),
                "movement_id": str(movement.id),
                "kind": kind.value,
                "delta": delta,
                "previous_stock": previous,
                "current_stock": item.current_stock,
                "reason": reason,
                "reference": movement.reference,
                "lot_number": movement.lot_number,
            },
        )
        return movement
