"""
Item metrics -- the values rule conditions are evaluated against.

ZERO I/O.  The rule engine loads the item, its active lots and its windowed
movement totals, then calls ``item_metrics`` to flatten them into the
``{metric_name: value}`` mapping that conditions read.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from inventory_kernel.domain.clock import as_utc
from inventory_kernel.domain.types import InventoryItem, Lot

DEFAULT_WINDOW_MINUTES = 24 * 60

WINDOWED_METRICS = frozenset({
    "quantity_in",
    "quantity_out",
    "quantity_loss",
    "movement_count",
})


def item_metrics(
    item: InventoryItem,
    lots: Sequence[Lot],
    as_of: datetime,
    expiry_warning_days: int = 7,
) -> dict[str, Any]:
    """Point-in-time metrics of one item (everything except windowed totals)."""
    today = as_utc(as_of).date()
    horizon = today + timedelta(days=expiry_warning_days)
    expiries = [lot.expiry_date for lot in lots if lot.is_active and lot.expiry_date is not None]

    return {
        "store_id": item.store_id,
        "product_id": item.product_id,
        "unit": item.unit,
        "current_stock": item.current_stock,
        "reserved_stock": item.reserved_stock,
        "available_stock": item.available_stock,
        "min_threshold": item.min_threshold,
        "max_threshold": item.max_threshold,
        "unit_cost": item.unit_cost,
        "stock_value": item.value,
        "active_lots": sum(1 for lot in lots if lot.is_active),
        "expiring_lots": sum(1 for d in expiries if d <= horizon),
        "days_to_expiry": (min(expiries) - today).days if expiries else None,
    }


def windowed_metrics(totals: Any | None) -> dict[str, int]:
    """Flatten a MovementTotals (or None for no movements) into metrics."""
    if totals is None:
        return {name: 0 for name in WINDOWED_METRICS}
    return {
        "quantity_in": totals.quantity_in,
        "quantity_out": totals.quantity_out,
        "quantity_loss": totals.quantity_loss,
        "movement_count": totals.movement_count,
    }
