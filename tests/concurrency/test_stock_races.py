"""
Concurrent reservation, consumption and alert dedup races.

Threads are released together by a Barrier so that every caller reaches the
check-then-act window at the same time.  The per-item lock (and, for alerts,
the per-dedup-key lock) must linearize them:

- Non-oversell: N reservations summing to more than available stock never
  reserve more than was available.
- FIFO consumers racing reservations never drive the lots below zero.
- Concurrent breaches of the same threshold open exactly one alert.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from sqlalchemy import func, select

from inventory_kernel.exceptions import InsufficientStockError
from inventory_kernel.selectors.inventory_selector import InventorySelector

from inventory_alerts.models.alert import AlertModel

pytestmark = pytest.mark.slow


def _run_concurrently(count, fn):
    barrier = Barrier(count)

    def task(index):
        barrier.wait()
        try:
            fn(index)
            return "ok"
        except InsufficientStockError:
            return "insufficient"

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(task, range(count)))


class TestNonOversell:

    @pytest.mark.parametrize("threads, quantity", [(10, 2), (8, 3)])
    def test_concurrent_reservations_never_exceed_available(self, ledger, threads, quantity):
        item = ledger.register_item("store-1", "bread", opening_stock=10)

        outcomes = _run_concurrently(
            threads,
            lambda i: ledger.reserve(item.item_id, quantity, order_id=f"ORD-{i}"),
        )

        succeeded = outcomes.count("ok")
        final = ledger.get_item(item.item_id)
        assert succeeded == 10 // quantity
        assert final.reserved_stock == succeeded * quantity
        assert final.reserved_stock <= final.current_stock
        assert final.available_stock >= 0

    def test_reserve_and_release_interleaved(self, ledger):
        item = ledger.register_item("store-1", "bread", opening_stock=6)
        ledger.reserve(item.item_id, 6, order_id="ORD-0")

        def work(i):
            if i % 2 == 0:
                ledger.release(item.item_id, 1, order_id="ORD-0")
            else:
                ledger.reserve(item.item_id, 1, order_id=f"ORD-{i}")

        _run_concurrently(8, work)

        final = ledger.get_item(item.item_id)
        assert 0 <= final.reserved_stock <= 6


class TestFifoRaces:

    def test_concurrent_fifo_never_overdraws_lots(self, ledger, fifo, session_factory):
        item = ledger.register_item("store-1", "cheese")
        ledger.receive_lot(item.item_id, "L1", 5, "3")
        ledger.receive_lot(item.item_id, "L2", 5, "3")

        outcomes = _run_concurrently(
            6, lambda i: fifo.consume_fifo(item.item_id, 3, order_id=f"ORD-{i}"),
        )

        assert outcomes.count("ok") == 3
        with session_factory() as session:
            selector = InventorySelector(session)
            assert selector.active_lot_sum(item.item_id) == 1
            assert selector.movement_sum(item.item_id) == 1
        assert ledger.get_item(item.item_id).current_stock == 1


class TestAlertDedupRace:

    def test_concurrent_breaches_open_one_alert(self, ledger, alert_service, session_factory):
        item = ledger.register_item("store-1", "yoghurt", min_threshold=5, opening_stock=20)

        _run_concurrently(
            6, lambda i: ledger.apply_movement(item.item_id, "out", 3, "sale"),
        )

        with session_factory() as session:
            low_stock = session.execute(
                select(func.count(AlertModel.id)).where(
                    AlertModel.dedup_key == f"{item.item_id}:low_stock",
                )
            ).scalar_one()
        assert ledger.get_item(item.item_id).current_stock == 2
        assert low_stock == 1
