"""ORM models for the stock ledger."""

from inventory_kernel.models.item import InventoryItemModel
from inventory_kernel.models.lot import LotModel
from inventory_kernel.models.movement import StockMovementModel

__all__ = [
    "InventoryItemModel",
    "LotModel",
    "StockMovementModel",
]
