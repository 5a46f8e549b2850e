"""
Module: inventory_kernel.models.movement
Responsibility: ORM persistence for stock movements -- the append-only log
    whose signed quantities sum to each item's current stock.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - Append-only: rows are inserted by the ledger's movement writer and never
      updated or deleted (enforced by the ORM listener below).
    - quantity is the signed ledger delta (in: +, out/loss: -, adjustment: +/-).
    - (item_id, occurred_at) index supports history and windowed metrics.

Failure modes:
    - ValueError from the before_update/before_delete listener on any attempt
      to modify a persisted movement.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.clock import as_utc
from inventory_kernel.domain.types import MovementKind, StockMovement


class StockMovementModel(Base):
    """
    Immutable stock movement fact.

    Guarantees:
        - sum(quantity) over an item's rows equals the item's current_stock
          once the writing transaction commits.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_stock_movement_item_time", "item_id", "occurred_at"),
        Index("idx_stock_movement_store_time", "store_id", "occurred_at"),
        Index("idx_stock_movement_reference", "reference"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_items.id"),
        nullable=False,
    )
    store_id: Mapped[str] = mapped_column(String(100), nullable=False)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    # Signed delta
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def to_dto(self) -> StockMovement:
        return StockMovement(
            movement_id=self.id,
            item_id=self.item_id,
            store_id=self.store_id,
            kind=MovementKind(self.kind),
            quantity=self.quantity,
            reason=self.reason,
            actor=self.actor,
            occurred_at=as_utc(self.occurred_at),
            reference=self.reference,
            lot_number=self.lot_number,
            expiry_date=self.expiry_date,
            unit_cost=Decimal(self.unit_cost) if self.unit_cost is not None else None,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<StockMovement {self.id}: item={self.item_id} {self.kind} {self.quantity:+d}>"


@event.listens_for(StockMovementModel, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ValueError(f"Stock movement {target.id} is immutable and cannot be updated")


@event.listens_for(StockMovementModel, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ValueError(f"Stock movement {target.id} is immutable and cannot be deleted")
