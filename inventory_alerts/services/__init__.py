"""Alerting services -- alert lifecycle, rules, actions, escalation and jobs."""

from inventory_alerts.services.actions import ActionExecutor
from inventory_alerts.services.alert_service import AlertService, RuleMatch
from inventory_alerts.services.dispatch import (
    ChannelDispatcher,
    ChannelSender,
    LoggingSender,
    Notification,
    NotificationDispatcher,
    WebhookSender,
)
from inventory_alerts.services.escalation import EscalationScheduler
from inventory_alerts.services.expiry_monitor import ExpiryMonitor, ReconciliationJob
from inventory_alerts.services.rule_engine import AlertRuleEngine
from inventory_alerts.services.rule_service import AlertRuleService
from inventory_alerts.services.worker import PollingWorker

__all__ = [
    "ActionExecutor",
    "AlertRuleEngine",
    "AlertRuleService",
    "AlertService",
    "ChannelDispatcher",
    "ChannelSender",
    "EscalationScheduler",
    "ExpiryMonitor",
    "LoggingSender",
    "Notification",
    "NotificationDispatcher",
    "PollingWorker",
    "ReconciliationJob",
    "RuleMatch",
    "WebhookSender",
]
