"""
AlertingRuntime -- wires the ledger and the alerting pipeline together.

Responsibility:
    Builds every service from InventorySettings with explicit constructor
    injection (no module-level singletons): the stock ledger and FIFO
    engine, the action executor and notification dispatcher, the
    escalation scheduler, the alert service (installed as the ledger's
    threshold sink), rule administration, and the three polling workers
    (rule engine, expiry monitor, reconciliation job).

Lifecycle:
    ``start()`` seeds the configured default rules, recovers pending
    escalations (past-due ones fire immediately) and starts the pollers.
    ``stop()`` stops the pollers, cancels every armed timer and closes the
    webhook client.  Pending escalations stay in the database for the next
    ``start()``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import Any

import httpx
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.thresholds import ThresholdPolicy
from inventory_kernel.domain.types import MovementKind
from inventory_kernel.logging_config import get_logger
from inventory_kernel.services.cache import ItemCache
from inventory_kernel.services.fifo import FifoConsumptionEngine
from inventory_kernel.services.locks import KeyedLockRegistry
from inventory_kernel.services.reconciliation import ReconciliationService
from inventory_kernel.services.stock_ledger import StockLedger

from inventory_alerts.domain.codec import action_from_dict
from inventory_alerts.domain.types import ActionType, Alert, AlertAction, AlertTemplate
from inventory_alerts.services.actions import ActionCallback, ActionExecutor
from inventory_alerts.services.alert_service import AlertService
from inventory_alerts.services.dispatch import (
    ChannelDispatcher,
    NotificationDispatcher,
    WebhookSender,
)
from inventory_alerts.services.escalation import EscalationScheduler, TimerFactory
from inventory_alerts.services.expiry_monitor import ExpiryMonitor, ReconciliationJob
from inventory_alerts.services.rule_engine import AlertRuleEngine
from inventory_alerts.services.rule_service import AlertRuleService
from inventory_alerts.services.worker import PollingWorker
from inventory_config.schema import InventorySettings

logger = get_logger("alerts.runtime")


def stock_adjustment_callback(ledger: StockLedger) -> ActionCallback:
    """Callback that sets the alert's item to ``action.new_stock_level``."""

    def adjust(alert: Alert, action: AlertAction) -> None:
        if alert.item_id is None:
            raise ValueError("stock_adjustment needs an alert bound to one item")
        if action.new_stock_level is None:
            raise ValueError("stock_adjustment needs new_stock_level")
        item = ledger.get_item(alert.item_id)
        delta = action.new_stock_level - item.current_stock
        if delta == 0:
            return
        ledger.apply_movement(
            alert.item_id,
            MovementKind.ADJUSTMENT,
            delta,
            "alert_stock_adjustment",
            actor="alert_action",
            metadata={"reference": str(alert.alert_id)},
        )

    return adjust


class AlertingRuntime:
    """Holds the wired services and drives their lifecycle."""

    def __init__(
        self,
        *,
        settings: InventorySettings,
        clock: Clock,
        ledger: StockLedger,
        fifo: FifoConsumptionEngine,
        executor: ActionExecutor,
        escalations: EscalationScheduler,
        alerts: AlertService,
        rules: AlertRuleService,
        reconciliation: ReconciliationService,
        workers: tuple[PollingWorker, ...],
        webhook_sender: WebhookSender,
    ):
        self.settings = settings
        self.clock = clock
        self.ledger = ledger
        self.fifo = fifo
        self.executor = executor
        self.escalations = escalations
        self.alerts = alerts
        self.rules = rules
        self.reconciliation = reconciliation
        self.workers = workers
        self._webhook_sender = webhook_sender
        self._started = False

    @classmethod
    def build(
        cls,
        settings: InventorySettings,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        dispatcher: NotificationDispatcher | None = None,
        *,
        http_client: httpx.Client | None = None,
        timer_factory: TimerFactory | None = None,
        callbacks: dict[ActionType, ActionCallback] | None = None,
    ) -> AlertingRuntime:
        clock = clock or SystemClock()
        locks = KeyedLockRegistry()

        policy = ThresholdPolicy(
            expiry_critical_days=settings.thresholds.expiry_critical_days,
            expiry_warning_days=settings.thresholds.expiry_warning_days,
        )
        ledger = StockLedger(
            session_factory,
            clock,
            threshold_policy=policy,
            cache=ItemCache(settings.ledger.cache_ttl_seconds, clock),
            locks=locks,
            max_conflict_retries=settings.ledger.max_conflict_retries,
        )

        webhook_sender = WebhookSender(
            http_client, timeout_seconds=settings.alerting.webhook_timeout_seconds,
        )
        templates = {
            t.template_id: AlertTemplate(
                template_id=t.template_id,
                name=t.name,
                subject=t.subject,
                message=t.message,
                category=t.category,
                severity=t.severity,
            )
            for t in settings.templates
        }
        executor = ActionExecutor(
            dispatcher or ChannelDispatcher(),
            webhook_sender=webhook_sender,
            templates=templates,
        )
        executor.register_callback(ActionType.STOCK_ADJUSTMENT, stock_adjustment_callback(ledger))
        for action_type, callback in (callbacks or {}).items():
            executor.register_callback(action_type, callback)

        escalations = EscalationScheduler(
            session_factory,
            executor,
            clock,
            locks=locks,
            timer_factory=timer_factory,
            actor=settings.escalation.actor,
        )
        threshold_actions = {
            alert_type: tuple(action_from_dict(a) for a in actions)
            for alert_type, actions in settings.alerting.threshold_actions.items()
        }
        if not settings.escalation.enabled:
            threshold_actions = {
                k: tuple(_without_escalation(a) for a in v) for k, v in threshold_actions.items()
            }
        alerts = AlertService(
            session_factory,
            clock,
            executor=executor,
            escalations=escalations,
            threshold_actions=threshold_actions,
            locks=locks,
        )
        ledger.set_threshold_sink(alerts)

        reconciliation = ReconciliationService(session_factory)
        workers: list[PollingWorker] = [
            AlertRuleEngine(
                session_factory,
                alerts,
                clock,
                interval_seconds=settings.alerting.rule_interval_seconds,
                rule_timeout_seconds=settings.alerting.rule_timeout_seconds,
                max_workers=settings.alerting.rule_workers,
                expiry_warning_days=settings.thresholds.expiry_warning_days,
            ),
            ExpiryMonitor(
                ledger,
                interval_seconds=settings.thresholds.expiry_check_interval_seconds,
                expiry_warning_days=settings.thresholds.expiry_warning_days,
            ),
        ]
        if settings.reconciliation.enabled:
            workers.append(
                ReconciliationJob(
                    reconciliation,
                    interval_seconds=settings.reconciliation.interval_seconds,
                )
            )

        return cls(
            settings=settings,
            clock=clock,
            ledger=ledger,
            fifo=FifoConsumptionEngine(ledger),
            executor=executor,
            escalations=escalations,
            alerts=alerts,
            rules=AlertRuleService(session_factory),
            reconciliation=reconciliation,
            workers=tuple(workers),
            webhook_sender=webhook_sender,
        )

    def worker(self, worker_type: type) -> Any:
        for worker in self.workers:
            if isinstance(worker, worker_type):
                return worker
        raise LookupError(worker_type.__name__)

    @property
    def rule_engine(self) -> AlertRuleEngine:
        return self.worker(AlertRuleEngine)

    @property
    def expiry_monitor(self) -> ExpiryMonitor:
        return self.worker(ExpiryMonitor)

    def start(self) -> None:
        if self._started:
            return
        self.rules.seed_default_rules(self.settings.default_rules)
        self.escalations.recover()
        for worker in self.workers:
            worker.start()
        self._started = True
        logger.info("alerting_runtime_started", extra={"workers": len(self.workers)})

    def stop(self, timeout: float = 30.0) -> None:
        for worker in self.workers:
            worker.stop(timeout)
        self.escalations.shutdown()
        self._webhook_sender.close()
        self._started = False
        logger.info("alerting_runtime_stopped")

    @property
    def is_running(self) -> bool:
        return self._started


def _without_escalation(action: AlertAction) -> AlertAction:
    return replace(action, escalate_after_minutes=None)
