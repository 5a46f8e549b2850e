"""
inventory_alerts.domain.types -- Pure frozen dataclasses for alerting.

ZERO I/O.  Rule definitions, alert and escalation snapshots, notification
channels and templates.  ORM models convert to and from these; services
hand them to callers.

Invariants enforced:
    - Alert status moves active -> acknowledged -> resolved or
      active -> resolved; resolved is terminal.
    - TimeWindow days use 0=Sunday .. 6=Saturday.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class RuleCategory(str, Enum):
    STOCK = "stock"
    EXPIRY = "expiry"
    SUPPLIER = "supplier"
    COST = "cost"
    QUALITY = "quality"


class ConditionOperator(str, Enum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    CONTAINS = "contains"
    IN = "in"


class ActionType(str, Enum):
    NOTIFICATION = "notification"
    WEBHOOK = "webhook"
    AUTO_ORDER = "auto_order"
    STOCK_ADJUSTMENT = "stock_adjustment"
    # Shorthands for a notification over a single channel type
    EMAIL = "email"
    SMS = "sms"


class ChannelType(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    SLACK = "slack"
    TEAMS = "teams"
    WEBHOOK = "webhook"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


ALERT_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.ACTIVE: frozenset({AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED}),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.RESOLVED: frozenset(),
}

OPEN_ALERT_STATUSES = (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED)


class EscalationStatus(str, Enum):
    PENDING = "pending"
    FIRED = "fired"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


# =============================================================================
# Rule definition
# =============================================================================


@dataclass(frozen=True)
class NotificationChannel:
    type: ChannelType
    recipients: tuple[str, ...] = ()
    webhook_url: str | None = None
    channel_id: str | None = None


@dataclass(frozen=True)
class AlertCondition:
    """
    One condition of a rule.

    ``value`` is a number, a string, or a sequence (for ``in``).  A string
    value that names an item metric (e.g. ``min_threshold``) is compared
    against that metric.  Scope filters narrow the items the condition is
    evaluated for; rule scope is the intersection across conditions.
    """

    metric: str
    operator: ConditionOperator
    value: Any
    time_window_minutes: int | None = None
    store_ids: tuple[str, ...] | None = None
    product_ids: tuple[str, ...] | None = None
    item_ids: tuple[UUID, ...] | None = None


@dataclass(frozen=True)
class AlertAction:
    type: ActionType
    channels: tuple[NotificationChannel, ...] = ()
    recipients: tuple[str, ...] = ()
    template: str | None = None
    webhook_url: str | None = None
    auto_order_quantity: int | None = None
    new_stock_level: int | None = None
    escalate_after_minutes: int | None = None

    @property
    def escalates(self) -> bool:
        return bool(self.escalate_after_minutes and self.escalate_after_minutes > 0)


@dataclass(frozen=True)
class TimeWindow:
    """Daily window [start, end] on the listed weekdays (0=Sun .. 6=Sat)."""

    start: time
    end: time
    days: frozenset[int] = frozenset(range(7))
    timezone: str = "UTC"


@dataclass(frozen=True)
class RuleSchedule:
    enabled: bool = False
    time_windows: tuple[TimeWindow, ...] = ()
    cooldown_minutes: int = 0


@dataclass(frozen=True)
class AlertRuleDef:
    """Immutable snapshot of an alert rule."""

    rule_id: UUID | None
    name: str
    category: RuleCategory
    severity: str
    conditions: tuple[AlertCondition, ...]
    actions: tuple[AlertAction, ...] = ()
    schedule: RuleSchedule = field(default_factory=RuleSchedule)
    description: str = ""
    is_active: bool = True
    last_triggered_at: datetime | None = None
    created_by: str = "system"


# =============================================================================
# Alerts and escalations
# =============================================================================


@dataclass(frozen=True)
class Alert:
    """Immutable snapshot of one alert occurrence."""

    alert_id: UUID
    alert_type: str
    category: str
    severity: str
    title: str
    message: str
    status: AlertStatus
    created_at: datetime
    rule_id: UUID | None = None
    item_id: UUID | None = None
    store_id: str | None = None
    threshold: int | None = None
    current_value: int | None = None
    context: dict[str, Any] = field(default_factory=dict)
    dedup_key: str | None = None
    is_read: bool = False
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    acknowledged_notes: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolved_notes: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ALERT_STATUSES

    def payload(self) -> dict[str, Any]:
        """JSON-safe representation used for webhooks."""
        return {
            "alert_id": str(self.alert_id),
            "rule_id": str(self.rule_id) if self.rule_id else None,
            "alert_type": self.alert_type,
            "category": self.category,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "status": self.status.value,
            "item_id": str(self.item_id) if self.item_id else None,
            "store_id": self.store_id,
            "threshold": self.threshold,
            "current_value": self.current_value,
            "context": self.context,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Escalation:
    escalation_id: UUID
    alert_id: UUID
    level: int
    escalate_after_minutes: int
    fire_at: datetime
    actions: tuple[AlertAction, ...]
    status: EscalationStatus
    performed_at: datetime | None = None
    performed_by: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == EscalationStatus.PENDING


@dataclass(frozen=True)
class AlertTemplate:
    """Notification template with ``{variable}`` placeholders."""

    template_id: str
    name: str
    subject: str
    message: str
    category: str | None = None
    severity: str | None = None
    channels: tuple[NotificationChannel, ...] = ()


@dataclass(frozen=True)
class ActionOutcome:
    action_type: str
    succeeded: bool
    detail: str | None = None
