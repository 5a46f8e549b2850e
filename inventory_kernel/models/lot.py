"""
Module: inventory_kernel.models.lot
Responsibility: ORM persistence for lots -- batches of stock received together,
    tracked for FIFO consumption and expiry.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - quantity (remaining) >= 0 and <= original_quantity (check constraints).
    - original_quantity and unit_cost are frozen at receipt.
    - (item_id, status, received_at) index supports oldest-first selection of
      active lots.
    - Lot numbers are unique per item.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.clock import as_utc
from inventory_kernel.domain.types import Lot, LotStatus


class LotModel(Base):
    """Persistent lot with its remaining quantity and status."""

    __tablename__ = "inventory_lots"

    __table_args__ = (
        UniqueConstraint("item_id", "lot_number", name="uq_inventory_lot_item_number"),
        CheckConstraint("quantity >= 0", name="ck_inventory_lot_quantity_non_negative"),
        CheckConstraint(
            "quantity <= original_quantity", name="ck_inventory_lot_quantity_bounded",
        ),
        # Query: active lots for an item, oldest first (FIFO)
        Index("idx_inventory_lot_item_status_received", "item_id", "status", "received_at"),
        # Query: lots expiring soon
        Index("idx_inventory_lot_expiry", "status", "expiry_date"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_items.id"),
        nullable=False,
    )
    store_id: Mapped[str] = mapped_column(String(100), nullable=False)
    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    original_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LotStatus.ACTIVE.value,
    )
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def to_dto(self) -> Lot:
        return Lot(
            lot_id=self.id,
            item_id=self.item_id,
            store_id=self.store_id,
            lot_number=self.lot_number,
            quantity=self.quantity,
            original_quantity=self.original_quantity,
            unit_cost=Decimal(self.unit_cost),
            received_at=as_utc(self.received_at),
            status=LotStatus(self.status),
            expiry_date=self.expiry_date,
            location=self.location,
        )

    def __repr__(self) -> str:
        return (
            f"<Lot {self.lot_number}: item={self.item_id} "
            f"qty={self.quantity}/{self.original_quantity} {self.status}>"
        )
