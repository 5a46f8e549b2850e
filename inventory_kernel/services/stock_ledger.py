"""
StockLedger -- the authoritative mutation surface of the inventory ledger.

Responsibility:
    Owns every mutation of an item's quantities: movements, reservations,
    releases, lot receipts and lot expiry.  Each mutation runs in one
    database transaction under the item's in-process lock, invalidates the
    item's cached snapshot, and then hands the committed state to the
    threshold evaluator, whose alert requests go to the configured
    ThresholdAlertSink before the call returns.

Architecture position:
    Kernel > Services -- the orchestrating service.  Owns transactions
    (via session_scope) and the per-item lock; delegates row writes to
    MovementWriter.  Never imports the alerting packages: alerts leave the
    kernel only through the ThresholdAlertSink protocol.

Invariants enforced:
    - Ledger consistency: a movement insert and its current_stock update
      commit together or not at all.
    - Non-oversell: reserve() checks available stock and increments
      reserved_stock under the per-item lock, with the row locked FOR UPDATE
      and the item's version column checked on flush.
    - reserved_stock never goes below zero; over-release is clamped and
      logged as ``reservation_release_clamped``.
    - Cache write-invalidate: the item's cache entry is invalidated before
      the mutation starts and again after it commits, still under the lock.

Failure modes:
    - ItemNotFoundError, InsufficientStockError, InvalidMovementError:
      returned to the caller, never retried.
    - ConcurrencyConflictError: lost update detected on flush; the whole
      mutation is retried up to ``max_conflict_retries`` times.
    - PersistenceFailureError: the database call failed; nothing is assumed
      to have been applied.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.db.engine import session_scope
from inventory_kernel.domain.clock import Clock, SystemClock, as_utc
from inventory_kernel.domain.thresholds import ThresholdPolicy, evaluate_thresholds
from inventory_kernel.domain.types import (
    InventoryItem,
    Lot,
    LotStatus,
    MovementKind,
    ThresholdAlertRequest,
)
from inventory_kernel.exceptions import (
    ConcurrencyConflictError,
    DuplicateItemError,
    InsufficientStockError,
    InvalidMovementError,
    ItemNotFoundError,
    PersistenceFailureError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.item import InventoryItemModel
from inventory_kernel.models.lot import LotModel
from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.services.cache import ItemCache
from inventory_kernel.services.locks import KeyedLockRegistry
from inventory_kernel.services.movement_writer import MovementWriter

logger = get_logger("services.stock_ledger")

T = TypeVar("T")


class ThresholdAlertSink(Protocol):
    """Receiver of threshold alert requests (implemented by the alert pipeline)."""

    def submit(self, requests: Sequence[ThresholdAlertRequest]) -> None:
        ...


def as_item_id(item_id: UUID | str) -> UUID:
    if isinstance(item_id, UUID):
        return item_id
    try:
        return UUID(str(item_id))
    except ValueError:
        raise ItemNotFoundError(str(item_id)) from None


class StockLedger:
    """
    Transactional stock ledger with per-item serialization.

    Contract:
        - ``apply_movement``, ``reserve``, ``release``, ``receive_lot`` and
          ``expire_lots`` are the mutation entry points; FifoConsumptionEngine
          mutates through ``mutate_item``.
        - ``get_item`` / ``find_item`` read through the item cache.

    Non-goals:
        - Does NOT decide whether an alert is a duplicate or how it is
          delivered; that is the sink's job.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        *,
        threshold_sink: ThresholdAlertSink | None = None,
        threshold_policy: ThresholdPolicy | None = None,
        cache: ItemCache | None = None,
        locks: KeyedLockRegistry | None = None,
        max_conflict_retries: int = 3,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._sink = threshold_sink
        self._policy = threshold_policy or ThresholdPolicy()
        self._cache = cache or ItemCache(clock=self._clock)
        self._locks = locks or KeyedLockRegistry()
        self._max_conflict_retries = max(1, max_conflict_retries)

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def session_factory(self) -> Callable[[], Session]:
        return self._session_factory

    @property
    def cache(self) -> ItemCache:
        return self._cache

    def set_threshold_sink(self, sink: ThresholdAlertSink | None) -> None:
        self._sink = sink

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find_item(self, item_id: UUID | str) -> InventoryItem | None:
        """Cached snapshot of the item, or None.  Retired items are returned."""
        try:
            key = as_item_id(item_id)
        except ItemNotFoundError:
            return None
        return self._cache.get_or_load(key, self._load_item)

    def get_item(self, item_id: UUID | str) -> InventoryItem:
        item = self.find_item(item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item

    def _load_item(self, item_id: UUID) -> InventoryItem | None:
        try:
            with session_scope(self._session_factory) as session:
                return InventorySelector(session).get_item(item_id)
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("get_item", str(exc)) from exc

    # -------------------------------------------------------------------------
    # Item registration
    # -------------------------------------------------------------------------

    def register_item(
        self,
        store_id: str,
        product_id: str,
        *,
        min_threshold: int = 0,
        max_threshold: int = 0,
        unit_cost: Decimal | str | int = Decimal("0"),
        unit: str = "unit",
        opening_stock: int = 0,
        actor: str = "system",
    ) -> InventoryItem:
        """
        Create the item for a (store, product) pair.

        A non-zero opening balance is written as an ``adjustment`` movement
        so the movement log sums to current_stock from the first commit.
        """
        if min_threshold < 0 or max_threshold < 0:
            raise ValueError("thresholds must be non-negative")
        if max_threshold and max_threshold < min_threshold:
            raise ValueError("max_threshold must not be below min_threshold")

        now = self._clock.now()

        def work(session: Session) -> tuple[InventoryItem, tuple[Lot, ...]]:
            existing = InventorySelector(session).find_by_product(store_id, product_id)
            if existing is not None:
                raise DuplicateItemError(store_id, product_id)

            model = InventoryItemModel(
                store_id=store_id,
                product_id=product_id,
                unit=unit,
                current_stock=0,
                reserved_stock=0,
                min_threshold=min_threshold,
                max_threshold=max_threshold,
                unit_cost=Decimal(str(unit_cost)),
                last_updated=now,
                created_by=actor,
            )
            session.add(model)
            session.flush()

            if opening_stock:
                MovementWriter(session, now).write(
                    model,
                    MovementKind.ADJUSTMENT,
                    opening_stock,
                    "opening_balance",
                    actor,
                )
            return model.to_dto(), ()

        try:
            item, lots = self._transact("register_item", None, work)
        except PersistenceFailureError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise DuplicateItemError(store_id, product_id) from exc
            raise

        logger.info(
            "inventory_item_registered",
            extra={
                "item_id": str(item.item_id),
                "store_id": store_id,
                "product_id": product_id,
                "opening_stock": opening_stock,
            },
        )
        self._evaluate(item, lots)
        return item

    def retire_item(self, item_id: UUID | str, actor: str = "system") -> InventoryItem:
        """Soft-retire the item.  Its rows and history remain."""

        def work(session: Session, writer: MovementWriter) -> InventoryItem:
            model = writer.load_item_for_update(as_item_id(item_id), include_retired=True)
            model.is_retired = True
            model.last_updated = writer.now
            session.flush()
            logger.info(
                "inventory_item_retired",
                extra={"item_id": str(model.id), "actor": actor},
            )
            return model.to_dto()

        return self.mutate_item(item_id, "retire_item", work, evaluate=False)

    def update_thresholds(
        self,
        item_id: UUID | str,
        *,
        min_threshold: int | None = None,
        max_threshold: int | None = None,
        actor: str = "system",
    ) -> InventoryItem:
        def work(session: Session, writer: MovementWriter) -> InventoryItem:
            model = writer.load_item_for_update(as_item_id(item_id))
            new_min = model.min_threshold if min_threshold is None else min_threshold
            new_max = model.max_threshold if max_threshold is None else max_threshold
            if new_min < 0 or new_max < 0 or (new_max and new_max < new_min):
                raise ValueError(
                    f"invalid thresholds min={new_min} max={new_max}"
                )
            model.min_threshold = new_min
            model.max_threshold = new_max
            model.last_updated = writer.now
            session.flush()
            logger.info(
                "inventory_thresholds_updated",
                extra={
                    "item_id": str(model.id),
                    "min_threshold": new_min,
                    "max_threshold": new_max,
                    "actor": actor,
                },
            )
            return model.to_dto()

        return self.mutate_item(item_id, "update_thresholds", work)

    # -------------------------------------------------------------------------
    # Movements and reservations
    # -------------------------------------------------------------------------

    def apply_movement(
        self,
        item_id: UUID | str,
        kind: MovementKind | str,
        quantity: int,
        reason: str,
        actor: str = "system",
        metadata: Mapping[str, Any] | None = None,
    ) -> UUID:
        """
        Append a movement and move current_stock by its signed delta.

        Returns:
            The new movement's id.
        """

        def work(session: Session, writer: MovementWriter) -> UUID:
            model = writer.load_item_for_update(as_item_id(item_id))
            movement = writer.write(model, kind, quantity, reason, actor, metadata)
            return movement.id

        return self.mutate_item(item_id, "apply_movement", work)

    def reserve(self, item_id: UUID | str, quantity: int, order_id: str) -> None:
        """
        Reserve stock for an order.

        Raises:
            InsufficientStockError: quantity exceeds available stock; nothing
                is changed.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidMovementError(
                str(item_id), "reserve", quantity, "quantity must be a positive integer",
            )

        def work(session: Session, writer: MovementWriter) -> None:
            model = writer.load_item_for_update(as_item_id(item_id))
            available = model.current_stock - model.reserved_stock
            if quantity > available:
                logger.info(
                    "reservation_rejected",
                    extra={
                        "item_id": str(model.id),
                        "requested": quantity,
                        "available": available,
                    },
                )
                raise InsufficientStockError(str(model.id), quantity, available)

            model.reserved_stock += quantity
            model.last_updated = writer.now
            session.flush()
            logger.info(
                "stock_reserved",
                extra={
                    "item_id": str(model.id),
                    "quantity": quantity,
                    "reserved_stock": model.reserved_stock,
                    "available_stock": model.current_stock - model.reserved_stock,
                },
            )

        with LogContext.bind(order_id=order_id):
            self.mutate_item(item_id, "reserve", work)

    def release(self, item_id: UUID | str, quantity: int, order_id: str) -> None:
        """
        Release a reservation.  Never fails on quantity: releasing more than
        is reserved clamps reserved_stock at zero.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise InvalidMovementError(
                str(item_id), "release", quantity, "quantity must be a non-negative integer",
            )

        def work(session: Session, writer: MovementWriter) -> None:
            model = writer.load_item_for_update(as_item_id(item_id))
            previous = model.reserved_stock
            if quantity > previous:
                logger.warning(
                    "reservation_release_clamped",
                    extra={
                        "item_id": str(model.id),
                        "requested": quantity,
                        "reserved_stock": previous,
                    },
                )
            model.reserved_stock = max(0, previous - quantity)
            model.last_updated = writer.now
            session.flush()
            logger.info(
                "stock_released",
                extra={
                    "item_id": str(model.id),
                    "quantity": previous - model.reserved_stock,
                    "reserved_stock": model.reserved_stock,
                },
            )

        with LogContext.bind(order_id=order_id):
            self.mutate_item(item_id, "release", work)

    # -------------------------------------------------------------------------
    # Lots
    # -------------------------------------------------------------------------

    def receive_lot(
        self,
        item_id: UUID | str,
        lot_number: str,
        quantity: int,
        unit_cost: Decimal | str | int,
        *,
        received_at: datetime | None = None,
        expiry_date: date | None = None,
        location: str | None = None,
        reference: str | None = None,
        actor: str = "system",
    ) -> Lot:
        """Record a supplier receipt: a new active lot plus its ``in`` movement."""
        cost = Decimal(str(unit_cost))
        if cost < 0:
            raise InvalidMovementError(
                str(item_id), MovementKind.IN.value, quantity, "unit cost must be non-negative",
            )

        def work(session: Session, writer: MovementWriter) -> Lot:
            model = writer.load_item_for_update(as_item_id(item_id))

            duplicate = session.execute(
                select(LotModel.id).where(
                    LotModel.item_id == model.id,
                    LotModel.lot_number == lot_number,
                )
            ).first()
            if duplicate is not None:
                raise InvalidMovementError(
                    str(model.id), MovementKind.IN.value, quantity,
                    f"lot {lot_number} already received",
                )

            writer.write(
                model,
                MovementKind.IN,
                quantity,
                "lot_receipt",
                actor,
                {
                    "reference": reference,
                    "lot_number": lot_number,
                    "expiry_date": expiry_date,
                    "unit_cost": cost,
                },
            )

            lot = LotModel(
                item_id=model.id,
                store_id=model.store_id,
                lot_number=lot_number,
                quantity=quantity,
                original_quantity=quantity,
                unit_cost=cost,
                received_at=received_at or writer.now,
                expiry_date=expiry_date,
                status=LotStatus.ACTIVE.value,
                location=location,
            )
            session.add(lot)
            session.flush()

            logger.info(
                "lot_received",
                extra={
                    "item_id": str(model.id),
                    "lot_number": lot_number,
                    "quantity": quantity,
                    "expiry_date": expiry_date,
                },
            )
            return lot.to_dto()

        return self.mutate_item(item_id, "receive_lot", work)

    def expire_lots(self, as_of: datetime | None = None, actor: str = "system") -> list[Lot]:
        """
        Expire every active lot whose expiry date is before ``as_of``.

        Each expired lot's remaining quantity is written off with a ``loss``
        movement in the same transaction as the status change.
        """
        as_of = as_of or self._clock.now()
        cutoff = as_utc(as_of).date()

        try:
            with session_scope(self._session_factory) as session:
                candidates = session.execute(
                    select(LotModel.item_id)
                    .where(
                        LotModel.status == LotStatus.ACTIVE.value,
                        LotModel.expiry_date.is_not(None),
                        LotModel.expiry_date < cutoff,
                    )
                    .distinct()
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("expire_lots", str(exc)) from exc

        expired: list[Lot] = []
        for candidate in candidates:

            def work(session: Session, writer: MovementWriter) -> list[Lot]:
                model = writer.load_item_for_update(candidate, include_retired=True)
                lots = session.execute(
                    select(LotModel)
                    .where(
                        LotModel.item_id == model.id,
                        LotModel.status == LotStatus.ACTIVE.value,
                        LotModel.expiry_date.is_not(None),
                        LotModel.expiry_date < cutoff,
                    )
                    .order_by(LotModel.received_at, LotModel.lot_number)
                ).scalars().all()

                done: list[Lot] = []
                for lot in lots:
                    if lot.quantity > 0:
                        writer.write(
                            model,
                            MovementKind.LOSS,
                            lot.quantity,
                            "lot_expired",
                            actor,
                            {"lot_number": lot.lot_number, "expiry_date": lot.expiry_date},
                        )
                    lot.status = LotStatus.EXPIRED.value
                    lot.quantity = 0
                    session.flush()
                    logger.info(
                        "lot_expired",
                        extra={
                            "item_id": str(model.id),
                            "lot_number": lot.lot_number,
                            "expiry_date": lot.expiry_date,
                        },
                    )
                    done.append(lot.to_dto())
                return done

            expired.extend(self.mutate_item(candidate, "expire_lots", work))
        return expired

    # -------------------------------------------------------------------------
    # Thresholds
    # -------------------------------------------------------------------------

    def check_thresholds(self, item_id: UUID | str) -> tuple[ThresholdAlertRequest, ...]:
        """Re-run the threshold evaluator on the item without mutating it."""
        key = as_item_id(item_id)
        try:
            with session_scope(self._session_factory) as session:
                selector = InventorySelector(session)
                item = selector.get_item(key)
                if item is None or item.is_retired:
                    raise ItemNotFoundError(str(item_id))
                lots = selector.active_lots(key)
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("check_thresholds", str(exc)) from exc
        return self._evaluate(item, lots)

    # -------------------------------------------------------------------------
    # Mutation pipeline
    # -------------------------------------------------------------------------

    def mutate_item(
        self,
        item_id: UUID | str,
        operation: str,
        work: Callable[[Session, MovementWriter], T],
        *,
        evaluate: bool = True,
    ) -> T:
        """
        Run ``work`` as one serialized, transactional mutation of the item.

        Holds the item's lock for the whole transaction, retries on lost
        update, invalidates the cache on both sides of the commit and, after
        releasing the lock, evaluates thresholds on the committed state.
        """
        key = as_item_id(item_id)

        with LogContext.bind(item_id=str(key)):
            with self._locks.hold(key):
                self._cache.invalidate(key)
                try:
                    result, item, lots = self._with_retry(key, operation, work)
                finally:
                    self._cache.invalidate(key)

            if evaluate and not item.is_retired:
                self._evaluate(item, lots)
        return result

    def _with_retry(
        self,
        item_id: UUID,
        operation: str,
        work: Callable[[Session, MovementWriter], T],
    ) -> tuple[T, InventoryItem, tuple[Lot, ...]]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._transact(operation, item_id, work)
            except ConcurrencyConflictError:
                if attempt >= self._max_conflict_retries:
                    logger.warning(
                        "concurrency_conflict_exhausted",
                        extra={"operation": operation, "attempts": attempt},
                    )
                    raise ConcurrencyConflictError("inventory_item", str(item_id), attempt)
                logger.info(
                    "concurrency_conflict_retry",
                    extra={"operation": operation, "attempt": attempt},
                )

    def _transact(self, operation: str, item_id: UUID | None, work: Callable) -> Any:
        now = self._clock.now()
        try:
            with session_scope(self._session_factory) as session:
                if item_id is None:
                    return work(session)

                result = work(session, MovementWriter(session, now))
                session.flush()
                model = session.get(InventoryItemModel, item_id)
                item = model.to_dto()
                lots = InventorySelector(session).active_lots(item_id)
                return result, item, lots
        except StaleDataError as exc:
            raise ConcurrencyConflictError(
                "inventory_item", str(item_id),
            ) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "ledger_persistence_failure",
                extra={"operation": operation, "error": str(exc)},
            )
            raise PersistenceFailureError(operation, str(exc)) from exc

    def _evaluate(
        self,
        item: InventoryItem,
        lots: Sequence[Lot],
    ) -> tuple[ThresholdAlertRequest, ...]:
        requests = evaluate_thresholds(item, lots, self._clock.now(), self._policy)
        if not requests:
            return requests

        logger.info(
            "threshold_breaches_detected",
            extra={
                "item_id": str(item.item_id),
                "alert_types": [r.alert_type.value for r in requests],
            },
        )
        if self._sink is not None:
            try:
                self._sink.submit(requests)
            except Exception:
                # The ledger mutation has committed; alert delivery is best-effort.
                logger.exception(
                    "threshold_alert_submit_failed",
                    extra={"item_id": str(item.item_id)},
                )
        return requests
