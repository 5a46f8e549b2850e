"""
Pytest fixtures for the inventory ledger and alerting test suite.

Provides:
- A file-backed SQLite database per test (threads share it through the
  session factory; SQLite ignores FOR UPDATE, the in-process locks and the
  version column still serialize mutations)
- DeterministicClock
- Ledger, alert and rule services wired the way the runtime wires them
- Captured structured logs as parsed JSON dicts
- A recording notification dispatcher and a manual timer factory, so
  escalations are driven by the test instead of wall-clock timers
"""

import json
import logging
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from inventory_kernel.db.engine import build_engine, create_tables
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_kernel.services.cache import ItemCache
from inventory_kernel.services.fifo import FifoConsumptionEngine
from inventory_kernel.services.locks import KeyedLockRegistry
from inventory_kernel.services.stock_ledger import StockLedger

from inventory_alerts.services.actions import ActionExecutor
from inventory_alerts.services.alert_service import AlertService
from inventory_alerts.services.escalation import EscalationScheduler
from inventory_alerts.services.rule_engine import AlertRuleEngine
from inventory_alerts.services.rule_service import AlertRuleService


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as racing real threads"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as wiring the full alerting runtime"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture inventory_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.reserve(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_reserved" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'inventory.db'}")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def tableless_session_factory(tmp_path):
    """Sessions on a database without the schema: every query fails."""
    engine = build_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


# =============================================================================
# Clock fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Monday 2026-01-05 12:00 UTC."""
    return DeterministicClock()


# =============================================================================
# Notification doubles
# =============================================================================


class RecordingDispatcher:
    """NotificationDispatcher that records every dispatch."""

    def __init__(self):
        self.sent = []
        self.fail_channels = set()

    def dispatch(self, alert, channel, template=None):
        if channel.type in self.fail_channels:
            raise RuntimeError(f"{channel.type.value} is down")
        self.sent.append((alert, channel, template))

    def for_alert(self, alert_id):
        return [entry for entry in self.sent if entry[0].alert_id == alert_id]


class ManualTimer:
    """Timer double: records the delay, fires only when the test says so."""

    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


class ManualTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback):
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def live(self):
        return [t for t in self.timers if t.started and not t.cancelled]


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def timer_factory():
    return ManualTimerFactory()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def locks():
    return KeyedLockRegistry()


@pytest.fixture
def ledger(session_factory, deterministic_clock, locks):
    """StockLedger with no alert sink attached."""
    return StockLedger(
        session_factory,
        deterministic_clock,
        cache=ItemCache(300, deterministic_clock),
        locks=locks,
    )


@pytest.fixture
def fifo(ledger):
    return FifoConsumptionEngine(ledger)


@pytest.fixture
def executor(dispatcher):
    return ActionExecutor(dispatcher)


@pytest.fixture
def escalations(session_factory, executor, deterministic_clock, locks, timer_factory):
    return EscalationScheduler(
        session_factory,
        executor,
        deterministic_clock,
        locks=locks,
        timer_factory=timer_factory,
    )


@pytest.fixture
def alert_service(session_factory, deterministic_clock, executor, escalations, locks, ledger):
    """AlertService installed as the ledger's threshold sink."""
    service = AlertService(
        session_factory,
        deterministic_clock,
        executor=executor,
        escalations=escalations,
        locks=locks,
    )
    ledger.set_threshold_sink(service)
    return service


@pytest.fixture
def rule_service(session_factory):
    return AlertRuleService(session_factory)


@pytest.fixture
def rule_engine(session_factory, alert_service, deterministic_clock):
    engine = AlertRuleEngine(
        session_factory,
        alert_service,
        deterministic_clock,
        rule_timeout_seconds=10,
    )
    yield engine
    engine.stop(timeout=5)
