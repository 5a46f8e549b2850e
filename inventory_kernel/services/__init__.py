"""Ledger services -- the imperative shell around the pure domain."""

from inventory_kernel.services.cache import ItemCache
from inventory_kernel.services.fifo import FifoConsumptionEngine
from inventory_kernel.services.locks import KeyedLockRegistry
from inventory_kernel.services.movement_writer import MovementWriter
from inventory_kernel.services.reconciliation import (
    ReconciliationReport,
    ReconciliationService,
)
from inventory_kernel.services.stock_ledger import StockLedger, ThresholdAlertSink

__all__ = [
    "FifoConsumptionEngine",
    "ItemCache",
    "KeyedLockRegistry",
    "MovementWriter",
    "ReconciliationReport",
    "ReconciliationService",
    "StockLedger",
    "ThresholdAlertSink",
]
