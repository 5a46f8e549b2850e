"""
inventory_kernel.domain.types -- Pure frozen dataclasses for the stock ledger.

ZERO I/O.  Services read ORM rows and hand these snapshots to callers and to
the pure evaluators; nothing outside the services layer sees an ORM model.

Invariants enforced:
    - InventoryItem.available_stock is derived (current - reserved), never stored.
    - InventoryItem.value is derived (current_stock * unit_cost).
    - StockMovement.quantity is signed: the item's current stock is the running
      sum of its movements.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class MovementKind(str, Enum):
    """Kind of stock movement."""

    IN = "in"  # Receipt, release back to shelf
    OUT = "out"  # Consumption, sale
    ADJUSTMENT = "adjustment"  # Signed correction (counts, opening balance)
    LOSS = "loss"  # Waste, spoilage, expiry

    def signed(self, quantity: int) -> int:
        """Signed ledger delta for a caller-supplied quantity."""
        if self in (MovementKind.OUT, MovementKind.LOSS):
            return -quantity
        return quantity


class LotStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    RESERVED = "reserved"
    CONSUMED = "consumed"


class AlertType(str, Enum):
    """Alert kinds.  Threshold alerts use the first five; rule alerts use RULE."""

    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"
    OVERSTOCK = "overstock"
    EXPIRY_WARNING = "expiry_warning"
    EXPIRY_CRITICAL = "expiry_critical"
    RULE = "rule"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# =============================================================================
# Ledger snapshots
# =============================================================================


@dataclass(frozen=True)
class InventoryItem:
    """Immutable snapshot of one inventory item's ledger state."""

    item_id: UUID
    store_id: str
    product_id: str
    current_stock: int
    reserved_stock: int
    min_threshold: int
    max_threshold: int
    unit_cost: Decimal
    unit: str = "unit"
    is_retired: bool = False
    version: int = 1
    created_at: datetime | None = None
    last_updated: datetime | None = None

    @property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock

    @property
    def value(self) -> Decimal:
        return Decimal(self.current_stock) * self.unit_cost


@dataclass(frozen=True)
class StockMovement:
    """Immutable movement fact.  ``quantity`` is the signed ledger delta."""

    movement_id: UUID
    item_id: UUID
    store_id: str
    kind: MovementKind
    quantity: int
    reason: str
    actor: str
    occurred_at: datetime
    reference: str | None = None
    lot_number: str | None = None
    expiry_date: date | None = None
    unit_cost: Decimal | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Lot:
    """Immutable snapshot of a lot (batch of stock received together)."""

    lot_id: UUID
    item_id: UUID
    store_id: str
    lot_number: str
    quantity: int  # remaining
    original_quantity: int
    unit_cost: Decimal
    received_at: datetime
    status: LotStatus
    expiry_date: date | None = None
    location: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == LotStatus.ACTIVE

    @property
    def remaining_value(self) -> Decimal:
        return Decimal(self.quantity) * self.unit_cost


# =============================================================================
# FIFO results
# =============================================================================


@dataclass(frozen=True)
class LotConsumption:
    """Quantity taken from one lot by a FIFO consumption."""

    lot_id: UUID
    lot_number: str
    quantity: int
    unit_cost: Decimal
    remaining_after: int
    movement_id: UUID

    @property
    def total_cost(self) -> Decimal:
        return Decimal(self.quantity) * self.unit_cost


@dataclass(frozen=True)
class FifoConsumptionResult:
    """Result of consuming stock oldest-lot-first."""

    item_id: UUID
    requested: int
    consumptions: tuple[LotConsumption, ...] = field(default_factory=tuple)

    @property
    def total_cost(self) -> Decimal:
        return sum((c.total_cost for c in self.consumptions), Decimal("0"))

    @property
    def movement_ids(self) -> tuple[UUID, ...]:
        return tuple(c.movement_id for c in self.consumptions)


# =============================================================================
# Threshold alert requests
# =============================================================================


@dataclass(frozen=True)
class ThresholdAlertRequest:
    """
    A request, emitted by the threshold evaluator, to raise an alert.

    The alert pipeline deduplicates on ``dedup_key``: stock-level alerts are
    keyed per (item, type), expiry alerts per (item, type, lot).
    """

    item_id: UUID
    store_id: str
    product_id: str
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    current_value: int
    threshold: int | None = None
    lot_number: str | None = None

    @property
    def category(self) -> str:
        if self.alert_type in (AlertType.EXPIRY_WARNING, AlertType.EXPIRY_CRITICAL):
            return "expiry"
        return "stock"

    @property
    def dedup_key(self) -> str:
        key = f"{self.item_id}:{self.alert_type.value}"
        if self.lot_number is not None:
            key = f"{key}:{self.lot_number}"
        return key
