"""
BaseService -- abstract base for session-scoped kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for the
    services that write inside a caller's transaction.  They use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services.  The orchestrating services (StockLedger,
    FifoConsumptionEngine) own the transaction and the per-item lock; the
    session-scoped services below them only flush.

Failure modes:
    - If a subclass calls ``session.commit()``, the atomicity of a
      multi-row operation (movement + stock update, FIFO lots + movements)
      is broken.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for session-scoped services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``; the caller controls transaction boundaries.
    """

    def __init__(self, session: Session):
        self.session = session
