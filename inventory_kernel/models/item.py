"""
Module: inventory_kernel.models.item
Responsibility: ORM persistence for inventory items -- the cached projection
    of each item's ledger state (current and reserved stock) plus thresholds
    and valuation.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - One item per (store_id, product_id) (unique constraint).
    - reserved_stock >= 0 (check constraint).
    - available_stock is NOT a column; it is derived on the DTO.
    - current_stock is the running sum of the item's stock movements; the
      ledger updates both in the same transaction.
    - version is an optimistic concurrency column: a flush against a row
      modified since it was read raises StaleDataError.
    - Items are never deleted; retirement is a flag.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase
from inventory_kernel.domain.clock import as_utc
from inventory_kernel.domain.types import InventoryItem


class InventoryItemModel(TrackedBase):
    """
    Persistent ledger state of one inventory item.

    Contract:
        Rows are mutated only by StockLedger under the per-item lock.
        current_stock changes only together with a StockMovementModel insert.

    Non-goals:
        - Does NOT store available_stock or value; both are derived.
    """

    __tablename__ = "inventory_items"

    __table_args__ = (
        UniqueConstraint("store_id", "product_id", name="uq_inventory_item_store_product"),
        CheckConstraint("reserved_stock >= 0", name="ck_inventory_item_reserved_non_negative"),
        Index("idx_inventory_item_store", "store_id"),
    )

    store_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="unit")

    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    min_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(18, 4), nullable=False, default=Decimal("0"),
    )

    # Domain timestamp from the injected Clock (created_at is audit metadata)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    is_retired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> InventoryItem:
        return InventoryItem(
            item_id=self.id,
            store_id=self.store_id,
            product_id=self.product_id,
            current_stock=self.current_stock,
            reserved_stock=self.reserved_stock,
            min_threshold=self.min_threshold,
            max_threshold=self.max_threshold,
            unit_cost=Decimal(self.unit_cost),
            unit=self.unit,
            is_retired=self.is_retired,
            version=self.version,
            created_at=self.created_at,
            last_updated=as_utc(self.last_updated),
        )

    def __repr__(self) -> str:
        return (
            f"<InventoryItem {self.id}: {self.store_id}/{self.product_id} "
            f"stock={self.current_stock} reserved={self.reserved_stock}>"
        )
