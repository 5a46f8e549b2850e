"""
Tests for StockLedger: movements, reservations, lots, expiry and threshold
hand-off to the alert sink.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from inventory_kernel.domain.types import AlertType, LotStatus, MovementKind
from inventory_kernel.exceptions import (
    DuplicateItemError,
    InsufficientStockError,
    InvalidMovementError,
    ItemNotFoundError,
)
from inventory_kernel.models.movement import StockMovementModel
from inventory_kernel.selectors.inventory_selector import InventorySelector


class RecordingSink:
    def __init__(self):
        self.batches = []

    def submit(self, requests):
        self.batches.append(tuple(requests))

    @property
    def alert_types(self):
        return [r.alert_type for batch in self.batches for r in batch]


class FailingSink:
    def submit(self, requests):
        raise RuntimeError("alert pipeline unavailable")


@pytest.fixture
def sink(ledger):
    recorder = RecordingSink()
    ledger.set_threshold_sink(recorder)
    return recorder


@pytest.fixture
def item(ledger):
    return ledger.register_item(
        "store-1", "tomatoes", min_threshold=5, unit_cost="2.50", opening_stock=10,
    )


def _movements(session_factory, item_id):
    with session_factory() as session:
        return InventorySelector(session).list_movements(item_id=item_id, limit=None)


def _movement_sum(session_factory, item_id):
    with session_factory() as session:
        return InventorySelector(session).movement_sum(item_id)


class TestRegisterItem:

    def test_opening_balance_is_an_adjustment_movement(self, ledger, item, session_factory):
        assert item.current_stock == 10
        assert item.available_stock == 10
        (movement,) = _movements(session_factory, item.item_id)
        assert movement.kind == MovementKind.ADJUSTMENT
        assert movement.quantity == 10
        assert movement.reason == "opening_balance"

    def test_duplicate_store_product_rejected(self, ledger, item):
        with pytest.raises(DuplicateItemError) as exc_info:
            ledger.register_item("store-1", "tomatoes")
        assert exc_info.value.code == "DUPLICATE_ITEM"

    def test_same_product_in_another_store_allowed(self, ledger, item):
        other = ledger.register_item("store-2", "tomatoes", opening_stock=1)
        assert other.item_id != item.item_id

    def test_zero_opening_stock_raises_out_of_stock(self, ledger, sink):
        ledger.register_item("store-1", "basil", min_threshold=2)
        assert sink.alert_types == [AlertType.OUT_OF_STOCK]

    def test_max_below_min_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.register_item("store-1", "x", min_threshold=10, max_threshold=5)


class TestApplyMovement:

    def test_out_movement_reduces_stock(self, ledger, item, session_factory):
        ledger.apply_movement(item.item_id, MovementKind.OUT, 3, "sale")
        assert ledger.get_item(item.item_id).current_stock == 7
        assert _movement_sum(session_factory, item.item_id) == 7

    def test_loss_is_negative(self, ledger, item, session_factory):
        movement_id = ledger.apply_movement(item.item_id, "loss", 2, "spoilage")
        movement = next(m for m in _movements(session_factory, item.item_id)
                        if m.movement_id == movement_id)
        assert movement.quantity == -2

    def test_negative_adjustment(self, ledger, item):
        ledger.apply_movement(item.item_id, MovementKind.ADJUSTMENT, -4, "count")
        assert ledger.get_item(item.item_id).current_stock == 6

    def test_stock_may_go_negative_on_out(self, ledger, item):
        ledger.apply_movement(item.item_id, MovementKind.OUT, 12, "sale")
        assert ledger.get_item(item.item_id).current_stock == -2

    @pytest.mark.parametrize("kind, quantity", [
        (MovementKind.OUT, 0),
        (MovementKind.IN, -1),
        (MovementKind.ADJUSTMENT, 0),
    ])
    def test_invalid_quantity_rejected(self, ledger, item, session_factory, kind, quantity):
        with pytest.raises(InvalidMovementError):
            ledger.apply_movement(item.item_id, kind, quantity, "bad")
        assert len(_movements(session_factory, item.item_id)) == 1

    def test_unknown_metadata_key_rejected(self, ledger, item):
        with pytest.raises(InvalidMovementError):
            ledger.apply_movement(item.item_id, "in", 1, "r", metadata={"colour": "red"})

    def test_unknown_item(self, ledger):
        with pytest.raises(ItemNotFoundError):
            ledger.apply_movement(uuid4(), "in", 1, "r")

    def test_metadata_recorded(self, ledger, item, session_factory):
        ledger.apply_movement(
            item.item_id, "in", 5, "delivery",
            metadata={"reference": "PO-1", "unit_cost": "2.40", "notes": "late"},
        )
        (latest,) = [m for m in _movements(session_factory, item.item_id) if m.reason == "delivery"]
        assert latest.reference == "PO-1"
        assert latest.unit_cost == Decimal("2.40")

    def test_movement_log_is_append_only(self, ledger, item, session_factory):
        with pytest.raises(ValueError, match="immutable"):
            with session_factory() as session:
                movement = session.execute(select(StockMovementModel)).scalars().first()
                movement.quantity = 999
                session.commit()
        assert _movement_sum(session_factory, item.item_id) == 10


class TestThresholdHandOff:

    def test_sale_below_min_raises_one_low_stock_warning(self, ledger, item, sink):
        ledger.apply_movement(item.item_id, MovementKind.OUT, 6, "sale")

        (batch,) = sink.batches
        (request,) = batch
        assert request.alert_type == AlertType.LOW_STOCK
        assert request.severity.value == "warning"
        assert request.current_value == 4

    def test_healthy_mutation_submits_nothing(self, ledger, item, sink):
        ledger.apply_movement(item.item_id, MovementKind.OUT, 1, "sale")
        assert sink.batches == []

    def test_sink_failure_does_not_undo_mutation(self, ledger, item, captured_logs):
        ledger.set_threshold_sink(FailingSink())
        ledger.apply_movement(item.item_id, MovementKind.OUT, 10, "sale")

        assert ledger.get_item(item.item_id).current_stock == 0
        assert any(r["message"] == "threshold_alert_submit_failed" for r in captured_logs())

    def test_check_thresholds_re_evaluates(self, ledger, item, sink):
        ledger.apply_movement(item.item_id, MovementKind.OUT, 10, "sale")
        requests = ledger.check_thresholds(item.item_id)
        assert [r.alert_type for r in requests] == [AlertType.OUT_OF_STOCK]
        assert len(sink.batches) == 2


class TestReservations:

    def test_reserve_reduces_available_only(self, ledger, item):
        ledger.reserve(item.item_id, 4, order_id="ORD-1")
        snapshot = ledger.get_item(item.item_id)
        assert snapshot.current_stock == 10
        assert snapshot.reserved_stock == 4
        assert snapshot.available_stock == 6

    def test_over_reserve_fails_and_changes_nothing(self, ledger, item):
        ledger.reserve(item.item_id, 6, order_id="ORD-1")

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.reserve(item.item_id, 5, order_id="ORD-2")

        assert exc_info.value.requested == 5
        assert exc_info.value.available == 4
        assert ledger.get_item(item.item_id).reserved_stock == 6

    def test_reserve_exactly_available(self, ledger, item):
        ledger.reserve(item.item_id, 10, order_id="ORD-1")
        assert ledger.get_item(item.item_id).available_stock == 0

    def test_reserve_rejects_non_positive(self, ledger, item):
        with pytest.raises(InvalidMovementError):
            ledger.reserve(item.item_id, 0, order_id="ORD-1")

    def test_release(self, ledger, item):
        ledger.reserve(item.item_id, 5, order_id="ORD-1")
        ledger.release(item.item_id, 3, order_id="ORD-1")
        assert ledger.get_item(item.item_id).reserved_stock == 2

    def test_over_release_clamps_at_zero(self, ledger, item, captured_logs):
        ledger.reserve(item.item_id, 2, order_id="ORD-1")
        ledger.release(item.item_id, 5, order_id="ORD-1")

        assert ledger.get_item(item.item_id).reserved_stock == 0
        clamped = [r for r in captured_logs() if r["message"] == "reservation_release_clamped"]
        assert clamped and clamped[0]["order_id"] == "ORD-1"

    def test_reservations_write_no_movements(self, ledger, item, session_factory):
        ledger.reserve(item.item_id, 2, order_id="ORD-1")
        ledger.release(item.item_id, 2, order_id="ORD-1")
        assert len(_movements(session_factory, item.item_id)) == 1


class TestLots:

    def test_receive_lot_writes_in_movement(self, ledger, item, session_factory):
        lot = ledger.receive_lot(
            item.item_id, "LOT-A", 20, "2.10", expiry_date=date(2026, 3, 1),
        )
        assert lot.status == LotStatus.ACTIVE
        assert lot.quantity == lot.original_quantity == 20
        assert ledger.get_item(item.item_id).current_stock == 30

        (latest,) = [m for m in _movements(session_factory, item.item_id) if m.reason == "lot_receipt"]
        assert latest.kind == MovementKind.IN
        assert latest.lot_number == "LOT-A"
        assert latest.expiry_date == date(2026, 3, 1)

    def test_duplicate_lot_number_rejected(self, ledger, item):
        ledger.receive_lot(item.item_id, "LOT-A", 5, "2")
        with pytest.raises(InvalidMovementError):
            ledger.receive_lot(item.item_id, "LOT-A", 5, "2")
        assert ledger.get_item(item.item_id).current_stock == 15

    def test_negative_cost_rejected(self, ledger, item):
        with pytest.raises(InvalidMovementError):
            ledger.receive_lot(item.item_id, "LOT-A", 5, "-1")

    def test_expire_lots_writes_off_remaining(self, ledger, item, deterministic_clock, session_factory):
        today = deterministic_clock.now().date()
        ledger.receive_lot(item.item_id, "OLD", 4, "2", expiry_date=today - timedelta(days=1))
        ledger.receive_lot(item.item_id, "FRESH", 6, "2", expiry_date=today + timedelta(days=30))

        expired = ledger.expire_lots()

        assert [lot.lot_number for lot in expired] == ["OLD"]
        assert expired[0].status == LotStatus.EXPIRED
        assert expired[0].quantity == 0
        assert ledger.get_item(item.item_id).current_stock == 16

        (loss,) = [m for m in _movements(session_factory, item.item_id) if m.kind == MovementKind.LOSS]
        assert loss.kind == MovementKind.LOSS
        assert loss.quantity == -4
        assert loss.reason == "lot_expired"

    def test_lot_expiring_today_is_not_expired(self, ledger, item, deterministic_clock):
        today = deterministic_clock.now().date()
        ledger.receive_lot(item.item_id, "TODAY", 4, "2", expiry_date=today)
        assert ledger.expire_lots() == []

    def test_expire_lots_is_idempotent(self, ledger, item, deterministic_clock):
        today = deterministic_clock.now().date()
        ledger.receive_lot(item.item_id, "OLD", 4, "2", expiry_date=today - timedelta(days=2))
        ledger.expire_lots()
        assert ledger.expire_lots() == []
        assert ledger.get_item(item.item_id).current_stock == 10


class TestRetiredItems:

    def test_retired_item_is_readable_but_immutable(self, ledger, item):
        ledger.retire_item(item.item_id)

        assert ledger.get_item(item.item_id).is_retired
        with pytest.raises(ItemNotFoundError):
            ledger.apply_movement(item.item_id, "in", 1, "delivery")
        with pytest.raises(ItemNotFoundError):
            ledger.reserve(item.item_id, 1, order_id="ORD-1")

    def test_retired_item_has_no_threshold_checks(self, ledger, item):
        ledger.retire_item(item.item_id)
        with pytest.raises(ItemNotFoundError):
            ledger.check_thresholds(item.item_id)


class TestUpdateThresholds:

    def test_raising_min_triggers_low_stock(self, ledger, item, sink):
        updated = ledger.update_thresholds(item.item_id, min_threshold=12, max_threshold=50)
        assert updated.min_threshold == 12
        assert sink.alert_types == [AlertType.LOW_STOCK]

    def test_invalid_thresholds_rejected(self, ledger, item):
        with pytest.raises(ValueError):
            ledger.update_thresholds(item.item_id, max_threshold=2)
        assert ledger.get_item(item.item_id).max_threshold == 0
