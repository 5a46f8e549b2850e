"""
inventory_kernel.domain -- Pure types and calculations.

ZERO I/O.  All value objects are frozen dataclasses.
"""

from inventory_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
    as_utc,
)
from inventory_kernel.domain.thresholds import (
    ThresholdPolicy,
    evaluate_thresholds,
)
from inventory_kernel.domain.types import (
    AlertSeverity,
    AlertType,
    FifoConsumptionResult,
    InventoryItem,
    Lot,
    LotConsumption,
    LotStatus,
    MovementKind,
    StockMovement,
    ThresholdAlertRequest,
)

__all__ = [
    "AlertSeverity",
    "AlertType",
    "Clock",
    "DeterministicClock",
    "FifoConsumptionResult",
    "InventoryItem",
    "Lot",
    "LotConsumption",
    "LotStatus",
    "MovementKind",
    "StockMovement",
    "SystemClock",
    "ThresholdAlertRequest",
    "ThresholdPolicy",
    "as_utc",
    "evaluate_thresholds",
]
