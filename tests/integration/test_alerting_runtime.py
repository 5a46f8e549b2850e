"""
End-to-end tests for AlertingRuntime built from the packaged settings.

The runtime is wired with the test session factory, DeterministicClock,
RecordingDispatcher, ManualTimerFactory and an httpx MockTransport, so a
stock breach can be followed through alert, notification and escalation
without wall-clock waits or network access.
"""

import json
from dataclasses import replace

import httpx
import pytest

from inventory_config import get_settings

from inventory_alerts.domain.codec import action_from_dict
from inventory_alerts.domain.types import ChannelType, EscalationStatus
from inventory_alerts.runtime import AlertingRuntime
from inventory_alerts.selectors.alert_selector import AlertSelector

pytestmark = pytest.mark.integration


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.delenv("INVENTORY_CONFIG_PATH", raising=False)
    monkeypatch.delenv("INVENTORY_DATABASE_URL", raising=False)
    return get_settings()


@pytest.fixture
def webhook_requests():
    return []


@pytest.fixture
def build_runtime(session_factory, deterministic_clock, dispatcher, timer_factory, webhook_requests):
    built = []

    def handler(request):
        webhook_requests.append(request)
        return httpx.Response(202)

    def build(settings):
        runtime = AlertingRuntime.build(
            settings,
            session_factory,
            deterministic_clock,
            dispatcher,
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
            timer_factory=timer_factory,
        )
        built.append(runtime)
        return runtime

    yield build
    for runtime in built:
        runtime.stop(timeout=5)


@pytest.fixture
def runtime(build_runtime, settings):
    return build_runtime(settings)


def _alerts_for(session_factory, item_id):
    with session_factory() as session:
        return AlertSelector(session).list_alerts(item_id=item_id)


class TestLifecycle:

    def test_start_seeds_rules_and_stop_joins_workers(self, runtime):
        runtime.start()
        try:
            assert runtime.is_running
            assert [r.name for r in runtime.rules.list_rules()] == [
                "Low stock", "Out of stock critical",
            ]
            assert all(w.is_running for w in runtime.workers)
        finally:
            runtime.stop(timeout=5)

        assert not runtime.is_running
        assert not any(w.is_running for w in runtime.workers)

    def test_reconciliation_job_is_optional(self, build_runtime, settings):
        disabled = replace(settings, reconciliation=replace(settings.reconciliation, enabled=False))
        assert len(build_runtime(disabled).workers) == 2
        assert len(build_runtime(settings).workers) == 3


class TestStockBreachPipeline:

    def test_out_of_stock_notifies_then_escalates(
        self, runtime, dispatcher, timer_factory, deterministic_clock, session_factory,
    ):
        item = runtime.ledger.register_item("store-1", "milk", min_threshold=5, opening_stock=10)
        runtime.ledger.apply_movement(item.item_id, "out", 10, "sale")

        (alert,) = _alerts_for(session_factory, item.item_id)
        assert alert.alert_type == "out_of_stock"
        sent = dispatcher.for_alert(alert.alert_id)
        assert [c.type for _, c, _ in sent] == [ChannelType.EMAIL, ChannelType.SMS]
        assert sent[0][2].template_id == "stock_critical"

        deterministic_clock.advance(minutes=60)
        (timer,) = timer_factory.live
        assert timer.delay == 3600.0
        timer.fire()

        (_, channel, template) = dispatcher.for_alert(alert.alert_id)[-1]
        assert channel.type == ChannelType.SMS
        assert template.template_id == "escalation"
        with session_factory() as session:
            (escalation,) = AlertSelector(session).escalations_for(alert.alert_id)
        assert escalation.status == EscalationStatus.FIRED
        assert escalation.performed_by == "escalation_scheduler"

    def test_acknowledging_stops_the_escalation(
        self, runtime, dispatcher, timer_factory, session_factory,
    ):
        item = runtime.ledger.register_item("store-1", "milk", opening_stock=1)
        runtime.ledger.apply_movement(item.item_id, "out", 1, "sale")
        (alert,) = _alerts_for(session_factory, item.item_id)

        runtime.alerts.acknowledge(alert.alert_id, "manager")

        assert timer_factory.live == []
        assert runtime.escalations.fire_due() == 0

    def test_escalation_disabled_in_settings(self, build_runtime, settings, session_factory):
        runtime = build_runtime(replace(settings, escalation=replace(settings.escalation, enabled=False)))
        item = runtime.ledger.register_item("store-1", "milk", opening_stock=1)
        runtime.ledger.apply_movement(item.item_id, "out", 1, "sale")

        (alert,) = _alerts_for(session_factory, item.item_id)
        with session_factory() as session:
            assert AlertSelector(session).escalations_for(alert.alert_id) == []

    def test_stock_adjustment_action(self, runtime, session_factory):
        item = runtime.ledger.register_item("store-1", "milk", opening_stock=1)
        runtime.ledger.apply_movement(item.item_id, "out", 1, "sale")
        (alert,) = _alerts_for(session_factory, item.item_id)

        (outcome,) = runtime.executor.execute(
            alert, [action_from_dict({"type": "stock_adjustment", "new_stock_level": 12})],
        )

        assert outcome.succeeded
        assert runtime.ledger.get_item(item.item_id).current_stock == 12


class TestRulePipeline:

    def test_default_rules_fire_on_tick(self, runtime, session_factory):
        runtime.rules.seed_default_rules(runtime.settings.default_rules)
        runtime.ledger.register_item("store-1", "milk", min_threshold=5, opening_stock=0)

        # Monday 12:00 UTC is inside both rules' windows
        assert runtime.rule_engine.tick() == 2
        with session_factory() as session:
            rule_alerts = [a for a in AlertSelector(session).list_alerts() if a.rule_id]
        assert sorted(a.title for a in rule_alerts) == ["Low stock", "Out of stock critical"]

    def test_webhook_rule_posts_through_the_client(self, runtime, webhook_requests):
        runtime.rules.create_rule({
            "name": "Zero stock webhook",
            "category": "stock",
            "severity": "critical",
            "conditions": [{"metric": "current_stock", "operator": "lte", "value": 0}],
            "actions": [{"type": "webhook", "webhook_url": "https://hooks.example.com/inventory"}],
        })
        runtime.ledger.register_item("store-1", "milk")

        assert runtime.rule_engine.tick() == 1

        (request,) = webhook_requests
        assert str(request.url) == "https://hooks.example.com/inventory"
        body = json.loads(request.content)
        assert body["title"] == "Zero stock webhook"
        assert body["store_id"] == "store-1"
