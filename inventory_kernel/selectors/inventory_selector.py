"""
Module: inventory_kernel.selectors.inventory_selector
Responsibility: Read-only queries over items, movements and lots -- listings,
    ledger sums used by reconciliation, windowed movement totals used by the
    rule engine's metrics, and the inventory analytics summary.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only (see BaseSelector).
    - Active lots are always returned oldest-received first, ties broken by
      lot number, so FIFO order is deterministic.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from inventory_kernel.domain.types import (
    InventoryItem,
    Lot,
    LotStatus,
    MovementKind,
    StockMovement,
)
from inventory_kernel.models.item import InventoryItemModel
from inventory_kernel.models.lot import LotModel
from inventory_kernel.models.movement import StockMovementModel
from inventory_kernel.selectors.base import BaseSelector

ANALYTICS_WINDOW_DAYS = 30


@dataclass(frozen=True)
class MovementTotals:
    """Absolute quantities moved per kind over a window, for one item."""

    quantity_in: int = 0
    quantity_out: int = 0
    quantity_loss: int = 0
    quantity_adjusted: int = 0
    movement_count: int = 0


@dataclass(frozen=True)
class InventoryAnalytics:
    """Store-level inventory summary."""

    store_id: str | None
    as_of: datetime
    total_value: Decimal
    total_items: int
    low_stock_items: int
    out_of_stock_items: int
    expiring_items: int
    rotation_rate: Decimal
    turnover_days: Decimal | None
    waste_percentage: Decimal
    top_moving_products: tuple[str, ...] = field(default_factory=tuple)


class InventorySelector(BaseSelector):
    """Read-only queries over the stock ledger."""

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def get_item(self, item_id: UUID) -> InventoryItem | None:
        model = self.session.get(InventoryItemModel, item_id)
        return model.to_dto() if model is not None else None

    def find_by_product(self, store_id: str, product_id: str) -> InventoryItem | None:
        model = self.session.execute(
            select(InventoryItemModel).where(
                InventoryItemModel.store_id == store_id,
                InventoryItemModel.product_id == product_id,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_items(
        self,
        store_id: str | None = None,
        *,
        low_stock_only: bool = False,
        min_stock: int | None = None,
        max_stock: int | None = None,
        item_ids: Iterable[UUID] | None = None,
        product_ids: Iterable[str] | None = None,
        store_ids: Iterable[str] | None = None,
        include_retired: bool = False,
    ) -> list[InventoryItem]:
        """List items, ordered by store then product."""
        query = select(InventoryItemModel)
        if not include_retired:
            query = query.where(InventoryItemModel.is_retired == False)  # noqa: E712
        if store_id is not None:
            query = query.where(InventoryItemModel.store_id == store_id)
        if store_ids is not None:
            query = query.where(InventoryItemModel.store_id.in_(list(store_ids)))
        if item_ids is not None:
            query = query.where(InventoryItemModel.id.in_(list(item_ids)))
        if product_ids is not None:
            query = query.where(InventoryItemModel.product_id.in_(list(product_ids)))
        if low_stock_only:
            query = query.where(
                InventoryItemModel.current_stock <= InventoryItemModel.min_threshold
            )
        if min_stock is not None:
            query = query.where(InventoryItemModel.current_stock >= min_stock)
        if max_stock is not None:
            query = query.where(InventoryItemModel.current_stock <= max_stock)

        query = query.order_by(InventoryItemModel.store_id, InventoryItemModel.product_id)
        return [m.to_dto() for m in self.session.execute(query).scalars()]

    # -------------------------------------------------------------------------
    # Movements
    # -------------------------------------------------------------------------

    def list_movements(
        self,
        store_id: str | None = None,
        item_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = 100,
    ) -> list[StockMovement]:
        """Movements, newest first."""
        query = select(StockMovementModel)
        if store_id is not None:
            query = query.where(StockMovementModel.store_id == store_id)
        if item_id is not None:
            query = query.where(StockMovementModel.item_id == item_id)
        if start is not None:
            query = query.where(StockMovementModel.occurred_at >= start)
        if end is not None:
            query = query.where(StockMovementModel.occurred_at <= end)
        query = query.order_by(
            StockMovementModel.occurred_at.desc(), StockMovementModel.id,
        )
        if limit is not None:
            query = query.limit(limit)
        return [m.to_dto() for m in self.session.execute(query).scalars()]

    def movement_sum(self, item_id: UUID) -> int:
        """Signed sum of every movement recorded for the item."""
        total = self.session.execute(
            select(func.coalesce(func.sum(StockMovementModel.quantity), 0)).where(
                StockMovementModel.item_id == item_id
            )
        ).scalar_one()
        return int(total)

    def movement_totals(
        self,
        item_ids: Iterable[UUID],
        since: datetime,
    ) -> dict[UUID, MovementTotals]:
        """Per-item absolute quantities by kind for movements at or after ``since``."""
        ids = list(item_ids)
        if not ids:
            return {}

        rows = self.session.execute(
            select(
                StockMovementModel.item_id,
                StockMovementModel.kind,
                func.sum(StockMovementModel.quantity),
                func.count(StockMovementModel.id),
            )
            .where(
                StockMovementModel.item_id.in_(ids),
                StockMovementModel.occurred_at >= since,
            )
            .group_by(StockMovementModel.item_id, StockMovementModel.kind)
        ).all()

        acc: dict[UUID, dict[str, int]] = {}
        for item_id, kind, total, count in rows:
            bucket = acc.setdefault(
                item_id,
                {"in": 0, "out": 0, "loss": 0, "adjustment": 0, "count": 0},
            )
            bucket[kind] = abs(int(total or 0))
            bucket["count"] += int(count)

        return {
            item_id: MovementTotals(
                quantity_in=b["in"],
                quantity_out=b["out"],
                quantity_loss=b["loss"],
                quantity_adjusted=b["adjustment"],
                movement_count=b["count"],
            )
            for item_id, b in acc.items()
        }

    # -------------------------------------------------------------------------
    # Lots
    # -------------------------------------------------------------------------

    def lots(self, item_id: UUID, status: LotStatus | None = None) -> tuple[Lot, ...]:
        query = select(LotModel).where(LotModel.item_id == item_id)
        if status is not None:
            query = query.where(LotModel.status == status.value)
        query = query.order_by(LotModel.received_at, LotModel.lot_number)
        return tuple(m.to_dto() for m in self.session.execute(query).scalars())

    def active_lots(self, item_id: UUID) -> tuple[Lot, ...]:
        """Active lots, oldest received first."""
        return self.lots(item_id, LotStatus.ACTIVE)

    def active_lots_by_item(self, item_ids: Iterable[UUID]) -> dict[UUID, tuple[Lot, ...]]:
        ids = list(item_ids)
        if not ids:
            return {}
        models = self.session.execute(
            select(LotModel)
            .where(
                LotModel.item_id.in_(ids),
                LotModel.status == LotStatus.ACTIVE.value,
            )
            .order_by(LotModel.received_at, LotModel.lot_number)
        ).scalars()

        grouped: dict[UUID, list[Lot]] = {}
        for model in models:
            grouped.setdefault(model.item_id, []).append(model.to_dto())
        return {item_id: tuple(lots) for item_id, lots in grouped.items()}

    def active_lot_sum(self, item_id: UUID) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(LotModel.quantity), 0)).where(
                LotModel.item_id == item_id,
                LotModel.status == LotStatus.ACTIVE.value,
            )
        ).scalar_one()
        return int(total)

    def is_lot_tracked(self, item_id: UUID) -> bool:
        """True once any lot has been received for the item."""
        found = self.session.execute(
            select(LotModel.id).where(LotModel.item_id == item_id).limit(1)
        ).first()
        return found is not None

    def expiring_lots(self, on_or_before: date) -> list[Lot]:
        """Active lots whose expiry date is on or before the given date."""
        models = self.session.execute(
            select(LotModel)
            .where(
                LotModel.status == LotStatus.ACTIVE.value,
                LotModel.expiry_date.is_not(None),
                LotModel.expiry_date <= on_or_before,
            )
            .order_by(LotModel.expiry_date, LotModel.lot_number)
        ).scalars()
        return [m.to_dto() for m in models]

    # -------------------------------------------------------------------------
    # Analytics
    # -------------------------------------------------------------------------

    def inventory_analytics(
        self,
        as_of: datetime,
        store_id: str | None = None,
        expiry_warning_days: int = 7,
    ) -> InventoryAnalytics:
        """
        Store-level summary over the trailing 30 days.

        rotation_rate = units moved out / units on hand; turnover_days is the
        window length divided by the rotation rate; waste_percentage is the
        share of loss in everything that left the shelf.
        """
        items = self.list_items(store_id)
        item_ids = [i.item_id for i in items]

        total_value = sum((i.value for i in items), Decimal("0"))
        out_of_stock = sum(1 for i in items if i.current_stock <= 0)
        low_stock = sum(
            1 for i in items if 0 < i.current_stock <= i.min_threshold
        )

        horizon = (as_of + timedelta(days=expiry_warning_days)).date()
        lots_by_item = self.active_lots_by_item(item_ids)
        expiring = sum(
            1
            for lots in lots_by_item.values()
            if any(l.expiry_date is not None and l.expiry_date <= horizon for l in lots)
        )

        since = as_of - timedelta(days=ANALYTICS_WINDOW_DAYS)
        totals = self.movement_totals(item_ids, since)
        units_out = sum(t.quantity_out for t in totals.values())
        units_lost = sum(t.quantity_loss for t in totals.values())
        on_hand = sum(max(i.current_stock, 0) for i in items)

        rotation = (
            (Decimal(units_out) / Decimal(on_hand)).quantize(Decimal("0.0001"))
            if on_hand > 0 else Decimal("0")
        )
        turnover = (
            (Decimal(ANALYTICS_WINDOW_DAYS) / rotation).quantize(Decimal("0.01"))
            if rotation > 0 else None
        )
        left_shelf = units_out + units_lost
        waste = (
            (Decimal(units_lost) * 100 / Decimal(left_shelf)).quantize(Decimal("0.01"))
            if left_shelf > 0 else Decimal("0")
        )

        by_product = {i.item_id: i.product_id for i in items}
        top = sorted(
            (t.quantity_out, by_product[item_id])
            for item_id, t in totals.items()
            if t.quantity_out > 0
        )
        top_products = tuple(p for _, p in reversed(top[-5:]))

        return InventoryAnalytics(
            store_id=store_id,
            as_of=as_of,
            total_value=total_value,
            total_items=len(items),
            low_stock_items=low_stock,
            out_of_stock_items=out_of_stock,
            expiring_items=expiring,
            rotation_rate=rotation,
            turnover_days=turnover,
            waste_percentage=waste,
            top_moving_products=top_products,
        )
