"""
Tests for AlertRuleEngine.

The engine is driven through ``tick()`` with the DeterministicClock; the
background thread is never started here.
"""

import threading
from datetime import date, timedelta

import pytest

from inventory_alerts.selectors.alert_selector import AlertSelector
from inventory_alerts.services.rule_engine import AlertRuleEngine

LOW_STOCK = {"metric": "current_stock", "operator": "lte", "value": "min_threshold"}


def _rule(name="Low stock", conditions=(LOW_STOCK,), **schedule):
    return {
        "name": name,
        "category": "stock",
        "severity": "warning",
        "conditions": list(conditions),
        "actions": [{"type": "notification", "channels": [{"type": "push"}]}],
        "schedule": {"cooldown_minutes": 30, **schedule},
    }


def _rule_alerts(session_factory, rule_id):
    with session_factory() as session:
        return AlertSelector(session).list_alerts(rule_id=rule_id)


@pytest.fixture
def low_item(ledger):
    return ledger.register_item("store-1", "milk", min_threshold=5, opening_stock=3)


class TestTick:

    def test_cooldown_between_firings(
        self, rule_engine, rule_service, low_item, deterministic_clock, session_factory,
    ):
        rule = rule_service.create_rule(_rule())

        assert rule_engine.tick() == 1
        deterministic_clock.advance(minutes=10)
        assert rule_engine.tick() == 0
        deterministic_clock.advance(minutes=21)
        assert rule_engine.tick() == 1

        assert len(_rule_alerts(session_factory, rule.rule_id)) == 2

    def test_rule_alert_carries_the_match(
        self, rule_engine, rule_service, low_item, session_factory, dispatcher,
    ):
        rule = rule_service.create_rule(_rule())
        rule_engine.tick()

        (alert,) = _rule_alerts(session_factory, rule.rule_id)
        assert alert.item_id == low_item.item_id
        assert alert.store_id == "store-1"
        assert alert.current_value == 3
        assert len(dispatcher.for_alert(alert.alert_id)) == 1

    def test_no_match_raises_nothing(self, rule_engine, rule_service, ledger, session_factory):
        ledger.register_item("store-1", "milk", min_threshold=5, opening_stock=50)
        rule = rule_service.create_rule(_rule())

        assert rule_engine.tick() == 0
        assert _rule_alerts(session_factory, rule.rule_id) == []

    def test_inactive_rules_are_not_evaluated(self, rule_engine, rule_service, low_item):
        rule = rule_service.create_rule(_rule())
        rule_service.deactivate_rule(rule.rule_id)
        assert rule_engine.tick() == 0

    def test_outside_schedule_window(self, rule_engine, rule_service, low_item, captured_logs):
        # Clock is Monday 12:00 UTC
        rule_service.create_rule(_rule(
            enabled=True,
            time_windows=[{"start": "08:00", "end": "10:00", "days": [1]}],
        ))

        assert rule_engine.tick() == 0
        assert any(r["message"] == "rule_outside_schedule" for r in captured_logs())

    def test_inside_schedule_window(self, rule_engine, rule_service, low_item):
        rule_service.create_rule(_rule(
            enabled=True,
            time_windows=[{"start": "11:00", "end": "13:00", "days": [1]}],
        ))
        assert rule_engine.tick() == 1

    def test_failing_rule_does_not_stop_the_others(
        self, rule_engine, rule_service, low_item, monkeypatch, captured_logs,
    ):
        rule_service.create_rule(_rule("A broken rule"))
        rule_service.create_rule(_rule("B healthy rule"))
        original = rule_engine.evaluate_rule

        def evaluate(rule, now):
            if rule.name == "A broken rule":
                raise RuntimeError("metric backend unavailable")
            return original(rule, now)

        monkeypatch.setattr(rule_engine, "evaluate_rule", evaluate)

        assert rule_engine.tick() == 1
        failed = [r for r in captured_logs() if r["message"] == "rule_evaluation_failed"]
        assert failed[0]["rule_name"] == "A broken rule"
        completed = [r for r in captured_logs() if r["message"] == "rule_engine_tick_completed"]
        assert completed[-1]["rules_evaluated"] == 2
        assert completed[-1]["alerts_raised"] == 1

    def test_slow_rule_times_out(
        self, session_factory, alert_service, deterministic_clock, rule_service, low_item,
        captured_logs,
    ):
        engine = AlertRuleEngine(
            session_factory, alert_service, deterministic_clock, rule_timeout_seconds=0.2,
        )
        rule_service.create_rule(_rule("A slow rule"))
        rule_service.create_rule(_rule("B fast rule"))
        release = threading.Event()
        original = engine.evaluate_rule

        def evaluate(rule, now):
            if rule.name == "A slow rule":
                release.wait(timeout=5)
                return []
            return original(rule, now)

        engine.evaluate_rule = evaluate
        try:
            assert engine.tick() == 1
        finally:
            release.set()
            engine.stop(timeout=5)

        timeouts = [r for r in captured_logs() if r["message"] == "rule_evaluation_timeout"]
        assert [r["rule_name"] for r in timeouts] == ["A slow rule"]

    def test_hung_rules_do_not_starve_the_pool(
        self, session_factory, alert_service, deterministic_clock, rule_service, low_item,
        captured_logs,
    ):
        engine = AlertRuleEngine(
            session_factory, alert_service, deterministic_clock,
            rule_timeout_seconds=0.2, max_workers=2,
        )
        rule_service.create_rule(_rule("A hung rule"))
        rule_service.create_rule(_rule("B hung rule"))
        healthy = rule_service.create_rule(_rule("C fast rule"))
        release = threading.Event()
        calls = []
        original = engine.evaluate_rule

        def evaluate(rule, now):
            calls.append(rule.name)
            if "hung" in rule.name:
                release.wait(timeout=10)
                return []
            return original(rule, now)

        engine.evaluate_rule = evaluate
        try:
            assert engine.tick() == 1
            assert len(_rule_alerts(session_factory, healthy.rule_id)) == 1

            deterministic_clock.advance(minutes=31)
            assert engine.tick() == 1
        finally:
            release.set()
            engine.stop(timeout=5)

        assert calls.count("A hung rule") == 1
        assert calls.count("B hung rule") == 1
        still_running = [
            r["rule_name"] for r in captured_logs()
            if r["message"] == "rule_evaluation_still_running"
        ]
        assert still_running == ["A hung rule", "B hung rule"]


class TestEvaluateRule:

    def _create(self, rule_service, conditions):
        return rule_service.create_rule(_rule(conditions=conditions))

    def test_store_scope(self, rule_engine, rule_service, ledger, deterministic_clock):
        ledger.register_item("store-1", "milk", min_threshold=5, opening_stock=1)
        ledger.register_item("store-2", "milk", min_threshold=5, opening_stock=1)
        rule = self._create(rule_service, [{**LOW_STOCK, "store_ids": ["store-2"]}])

        matches = rule_engine.evaluate_rule(rule, deterministic_clock.now())

        assert [m.store_id for m in matches] == ["store-2"]
        assert matches[0].metrics["current_stock"] == 1

    def test_product_scope(self, rule_engine, rule_service, ledger, deterministic_clock):
        ledger.register_item("store-1", "milk", min_threshold=5, opening_stock=1)
        ledger.register_item("store-1", "bread", min_threshold=5, opening_stock=1)
        rule = self._create(rule_service, [{**LOW_STOCK, "product_ids": ["bread"]}])

        matches = rule_engine.evaluate_rule(rule, deterministic_clock.now())
        assert [m.product_id for m in matches] == ["bread"]

    def test_conditions_are_anded(self, rule_engine, rule_service, ledger, deterministic_clock):
        ledger.register_item("store-1", "milk", min_threshold=5, opening_stock=1)
        ledger.register_item("store-1", "bread", min_threshold=5, opening_stock=4)
        rule = self._create(rule_service, [
            LOW_STOCK,
            {"metric": "current_stock", "operator": "lt", "value": 2},
        ])

        matches = rule_engine.evaluate_rule(rule, deterministic_clock.now())
        assert [m.product_id for m in matches] == ["milk"]

    def test_windowed_loss_metric(self, rule_engine, rule_service, ledger, deterministic_clock):
        item = ledger.register_item("store-1", "lettuce", opening_stock=20)
        ledger.apply_movement(item.item_id, "loss", 4, "spoiled")
        rule = self._create(rule_service, [
            {"metric": "quantity_loss", "operator": "gte", "value": 3, "time_window_minutes": 60},
        ])

        (match,) = rule_engine.evaluate_rule(rule, deterministic_clock.now())
        assert match.item_id == item.item_id

        later = deterministic_clock.now() + timedelta(hours=2)
        assert rule_engine.evaluate_rule(rule, later) == []

    def test_days_to_expiry_metric(self, rule_engine, rule_service, ledger, deterministic_clock):
        item = ledger.register_item("store-1", "yoghurt")
        ledger.receive_lot(item.item_id, "L1", 10, "0.80", expiry_date=date(2026, 1, 7))
        ledger.receive_lot(item.item_id, "L2", 10, "0.80", expiry_date=date(2026, 1, 20))
        rule = self._create(rule_service, [
            {"metric": "days_to_expiry", "operator": "lte", "value": 2},
        ])

        (match,) = rule_engine.evaluate_rule(rule, deterministic_clock.now())
        assert match.metrics["days_to_expiry"] == 2
        assert match.metrics["active_lots"] == 2
        assert match.metrics["expiring_lots"] == 1

    def test_items_without_lots_have_no_expiry(
        self, rule_engine, rule_service, ledger, deterministic_clock,
    ):
        ledger.register_item("store-1", "salt", opening_stock=5)
        rule = self._create(rule_service, [
            {"metric": "days_to_expiry", "operator": "lte", "value": 2},
        ])
        assert rule_engine.evaluate_rule(rule, deterministic_clock.now()) == []
