"""Read-only selectors over the stock ledger."""

from inventory_kernel.selectors.inventory_selector import (
    InventoryAnalytics,
    InventorySelector,
    MovementTotals,
)

__all__ = [
    "InventoryAnalytics",
    "InventorySelector",
    "MovementTotals",
]
