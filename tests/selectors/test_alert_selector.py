"""Tests for AlertSelector queries and alert analytics."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.types import AlertSeverity, AlertType, ThresholdAlertRequest

from inventory_alerts.domain.codec import action_from_dict
from inventory_alerts.domain.types import AlertStatus, EscalationStatus
from inventory_alerts.selectors.alert_selector import AlertSelector
from inventory_alerts.services.alert_service import AlertService


def _request(alert_type, severity, store_id="store-1"):
    return ThresholdAlertRequest(
        item_id=uuid4(),
        store_id=store_id,
        product_id="milk",
        alert_type=alert_type,
        severity=severity,
        title=alert_type.value,
        message=f"milk: {alert_type.value}",
        current_value=0,
    )


@pytest.fixture
def service(session_factory, deterministic_clock, executor, escalations, locks):
    return AlertService(
        session_factory,
        deterministic_clock,
        executor=executor,
        escalations=escalations,
        threshold_actions={"out_of_stock": (
            action_from_dict({"type": "sms", "recipients": ["+15550100"],
                              "escalate_after_minutes": 60}),
        )},
        locks=locks,
    )


@pytest.fixture
def history(service, escalations, deterministic_clock):
    """
    t0:     out_of_stock (store-1), low_stock (store-1), low_stock (store-2)
    t0+30:  store-1 low_stock acknowledged, store-2 low_stock resolved
    t0+60:  the out_of_stock escalation fires
    """
    t0 = deterministic_clock.now()
    out = service.raise_alert(_request(AlertType.OUT_OF_STOCK, AlertSeverity.CRITICAL))
    low = service.raise_alert(_request(AlertType.LOW_STOCK, AlertSeverity.WARNING))
    other = service.raise_alert(_request(AlertType.LOW_STOCK, AlertSeverity.WARNING, "store-2"))

    deterministic_clock.advance(minutes=30)
    service.acknowledge(low.alert_id, "manager")
    service.resolve(other.alert_id, "manager")

    deterministic_clock.advance(minutes=30)
    assert escalations.fire_due() == 1
    return {"t0": t0, "out": out, "low": low, "other": other}


@pytest.fixture
def selector(session_factory):
    session = session_factory()
    yield AlertSelector(session)
    session.close()


class TestQueries:

    def test_list_alerts_filters(self, selector, history):
        assert len(selector.list_alerts()) == 3
        assert [a.alert_id for a in selector.list_alerts(AlertStatus.RESOLVED)] == [
            history["other"].alert_id,
        ]
        assert {a.alert_id for a in selector.list_alerts(open_only=True)} == {
            history["out"].alert_id, history["low"].alert_id,
        }
        assert {a.alert_id for a in selector.list_alerts(store_id="store-2")} == {
            history["other"].alert_id,
        }
        assert len(selector.list_alerts(limit=1)) == 1

    def test_open_alert_for(self, selector, history):
        low = history["low"]
        assert selector.open_alert_for(low.dedup_key).alert_id == low.alert_id
        assert selector.open_alert_for(history["other"].dedup_key) is None

    def test_escalations(self, selector, history):
        (escalation,) = selector.escalations_for(history["out"].alert_id)
        assert escalation.status == EscalationStatus.FIRED
        assert selector.pending_escalations() == []

    def test_get_alert(self, selector, history):
        assert selector.get_alert(history["low"].alert_id).status == AlertStatus.ACKNOWLEDGED
        assert selector.get_alert(uuid4()) is None


class TestAlertAnalytics:

    def test_all_stores(self, selector, history):
        analytics = selector.alert_analytics()

        assert analytics.total_alerts == 3
        assert analytics.active_alerts == 1
        assert analytics.by_severity == {"critical": 1, "warning": 2}
        assert analytics.by_category == {"stock": 3}
        assert analytics.resolution_rate == Decimal("33.33")
        assert analytics.escalation_rate == Decimal("33.33")
        assert analytics.mean_acknowledge_minutes == Decimal("30.00")

    def test_one_store(self, selector, history):
        analytics = selector.alert_analytics("store-1")

        assert analytics.total_alerts == 2
        assert analytics.resolution_rate == Decimal("0")
        assert analytics.escalation_rate == Decimal("50.00")

    def test_since(self, selector, history):
        analytics = selector.alert_analytics(since=history["t0"] + timedelta(minutes=1))
        assert analytics.total_alerts == 0
        assert analytics.mean_acknowledge_minutes is None
        assert analytics.resolution_rate == Decimal("0")
