"""
Inventory Kernel - stock ledger and threshold evaluation.

A transactional stock ledger with:
- Append-only movement log (current stock is its running sum)
- Lot tracking with FIFO consumption
- Per-item serialized reservations (no oversell)
- Synchronous threshold evaluation after every mutation
"""

__version__ = "0.1.0"
