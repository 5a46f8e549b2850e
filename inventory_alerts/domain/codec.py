"""
Rule codec -- conversion between rule dataclasses and plain dicts.

ZERO I/O.  The same dict shape is used for the JSON columns of the rule and
escalation tables and for the default rules in the YAML configuration.

Shape:
    {"name": ..., "category": "stock", "severity": "warning",
     "conditions": [{"metric": "current_stock", "operator": "lte",
                     "value": "min_threshold", "store_ids": [...]}],
     "actions": [{"type": "notification", "channels": [{"type": "email",
                  "recipients": [...]}], "escalate_after_minutes": 60}],
     "schedule": {"enabled": true, "cooldown_minutes": 30,
                  "time_windows": [{"start": "08:00", "end": "22:00",
                                    "days": [1, 2, 3], "timezone": "UTC"}]}}

Failure modes:
    - KeyError for missing required keys, ValueError for bad enum values or
      times.  validate_rule() collects semantic problems instead of raising.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import time
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfoNotFoundError

from inventory_kernel.domain.types import AlertSeverity

from inventory_alerts.domain.conditions import zone
from inventory_alerts.domain.types import (
    ActionType,
    AlertAction,
    AlertCondition,
    AlertRuleDef,
    ChannelType,
    ConditionOperator,
    NotificationChannel,
    RuleCategory,
    RuleSchedule,
    TimeWindow,
)

# Metrics the rule engine computes for every item
NUMERIC_METRICS = frozenset({
    "current_stock",
    "reserved_stock",
    "available_stock",
    "min_threshold",
    "max_threshold",
    "unit_cost",
    "stock_value",
    "days_to_expiry",
    "expiring_lots",
    "active_lots",
    "quantity_in",
    "quantity_out",
    "quantity_loss",
    "movement_count",
})
STRING_METRICS = frozenset({"store_id", "product_id", "unit"})
KNOWN_METRICS = NUMERIC_METRICS | STRING_METRICS


def _tuple_or_none(values: Iterable[Any] | None) -> tuple | None:
    return tuple(values) if values is not None else None


def parse_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, int):
        # YAML 1.1 reads unquoted HH:MM as sexagesimal minutes
        return time(value // 60, value % 60)
    hours, minutes = str(value).split(":")
    return time(int(hours), int(minutes))


def channel_from_dict(data: Mapping[str, Any]) -> NotificationChannel:
    return NotificationChannel(
        type=ChannelType(data["type"]),
        recipients=tuple(data.get("recipients") or ()),
        webhook_url=data.get("webhook_url"),
        channel_id=data.get("channel_id"),
    )


def channel_to_dict(channel: NotificationChannel) -> dict[str, Any]:
    return {
        "type": channel.type.value,
        "recipients": list(channel.recipients),
        "webhook_url": channel.webhook_url,
        "channel_id": channel.channel_id,
    }


def condition_from_dict(data: Mapping[str, Any]) -> AlertCondition:
    value = data["value"]
    if isinstance(value, list):
        value = tuple(value)
    item_ids = data.get("item_ids")
    return AlertCondition(
        metric=data["metric"],
        operator=ConditionOperator(data["operator"]),
        value=value,
        time_window_minutes=data.get("time_window_minutes"),
        store_ids=_tuple_or_none(data.get("store_ids")),
        product_ids=_tuple_or_none(data.get("product_ids")),
        item_ids=tuple(UUID(str(i)) for i in item_ids) if item_ids is not None else None,
    )


def condition_to_dict(condition: AlertCondition) -> dict[str, Any]:
    value = condition.value
    if isinstance(value, (tuple, set, frozenset)):
        value = list(value)
    return {
        "metric": condition.metric,
        "operator": condition.operator.value,
        "value": value,
        "time_window_minutes": condition.time_window_minutes,
        "store_ids": list(condition.store_ids) if condition.store_ids is not None else None,
        "product_ids": list(condition.product_ids) if condition.product_ids is not None else None,
        "item_ids": [str(i) for i in condition.item_ids] if condition.item_ids is not None else None,
    }


def action_from_dict(data: Mapping[str, Any]) -> AlertAction:
    return AlertAction(
        type=ActionType(data["type"]),
        channels=tuple(channel_from_dict(c) for c in data.get("channels") or ()),
        recipients=tuple(data.get("recipients") or ()),
        template=data.get("template"),
        webhook_url=data.get("webhook_url"),
        auto_order_quantity=data.get("auto_order_quantity"),
        new_stock_level=data.get("new_stock_level"),
        escalate_after_minutes=data.get("escalate_after_minutes"),
    )


def action_to_dict(action: AlertAction) -> dict[str, Any]:
    return {
        "type": action.type.value,
        "channels": [channel_to_dict(c) for c in action.channels],
        "recipients": list(action.recipients),
        "template": action.template,
        "webhook_url": action.webhook_url,
        "auto_order_quantity": action.auto_order_quantity,
        "new_stock_level": action.new_stock_level,
        "escalate_after_minutes": action.escalate_after_minutes,
    }


def window_from_dict(data: Mapping[str, Any]) -> TimeWindow:
    days = data.get("days")
    return TimeWindow(
        start=parse_time(data["start"]),
        end=parse_time(data["end"]),
        days=frozenset(int(d) for d in days) if days is not None else frozenset(range(7)),
        timezone=data.get("timezone", "UTC"),
    )


def window_to_dict(window: TimeWindow) -> dict[str, Any]:
    return {
        "start": window.start.strftime("%H:%M"),
        "end": window.end.strftime("%H:%M"),
        "days": sorted(window.days),
        "timezone": window.timezone,
    }


def schedule_from_dict(data: Mapping[str, Any] | None) -> RuleSchedule:
    if not data:
        return RuleSchedule()
    return RuleSchedule(
        enabled=bool(data.get("enabled", False)),
        time_windows=tuple(window_from_dict(w) for w in data.get("time_windows") or ()),
        cooldown_minutes=int(data.get("cooldown_minutes", 0)),
    )


def schedule_to_dict(schedule: RuleSchedule) -> dict[str, Any]:
    return {
        "enabled": schedule.enabled,
        "time_windows": [window_to_dict(w) for w in schedule.time_windows],
        "cooldown_minutes": schedule.cooldown_minutes,
    }


def rule_from_dict(data: Mapping[str, Any]) -> AlertRuleDef:
    """Build a rule definition (without id) from a config/API dict."""
    return AlertRuleDef(
        rule_id=None,
        name=data["name"],
        description=data.get("description", ""),
        category=RuleCategory(data["category"]),
        severity=AlertSeverity(data["severity"]).value,
        conditions=tuple(condition_from_dict(c) for c in data.get("conditions") or ()),
        actions=tuple(action_from_dict(a) for a in data.get("actions") or ()),
        schedule=schedule_from_dict(data.get("schedule")),
        is_active=bool(data.get("is_active", True)),
        created_by=data.get("created_by", "system"),
    )


def rule_to_dict(rule: AlertRuleDef) -> dict[str, Any]:
    return {
        "name": rule.name,
        "description": rule.description,
        "category": rule.category.value,
        "severity": rule.severity,
        "conditions": [condition_to_dict(c) for c in rule.conditions],
        "actions": [action_to_dict(a) for a in rule.actions],
        "schedule": schedule_to_dict(rule.schedule),
        "is_active": rule.is_active,
        "created_by": rule.created_by,
    }


def validate_rule(rule: AlertRuleDef) -> list[str]:
    """Semantic checks on a rule.  Returns a list of problems (empty when valid)."""
    errors: list[str] = []

    if not rule.name or not rule.name.strip():
        errors.append("name is required")
    if not rule.conditions:
        errors.append("at least one condition is required")

    for index, condition in enumerate(rule.conditions):
        if condition.metric not in KNOWN_METRICS:
            errors.append(f"condition {index}: unknown metric '{condition.metric}'")
        if condition.operator == ConditionOperator.IN and not isinstance(
            condition.value, (list, tuple, set, frozenset)
        ):
            errors.append(f"condition {index}: 'in' requires a list value")
        if (
            condition.metric in NUMERIC_METRICS
            and condition.operator in (
                ConditionOperator.GT, ConditionOperator.GTE,
                ConditionOperator.LT, ConditionOperator.LTE,
            )
            and isinstance(condition.value, str)
            and condition.value not in NUMERIC_METRICS
        ):
            try:
                float(condition.value)
            except ValueError:
                errors.append(
                    f"condition {index}: value '{condition.value}' is neither a "
                    f"number nor a numeric metric"
                )
        if condition.time_window_minutes is not None and condition.time_window_minutes <= 0:
            errors.append(f"condition {index}: time_window_minutes must be positive")

    for index, action in enumerate(rule.actions):
        if action.type == ActionType.WEBHOOK and not action.webhook_url:
            errors.append(f"action {index}: webhook requires webhook_url")
        if action.type == ActionType.NOTIFICATION and not action.channels:
            errors.append(f"action {index}: notification requires at least one channel")
        if action.escalate_after_minutes is not None and action.escalate_after_minutes < 0:
            errors.append(f"action {index}: escalate_after_minutes must not be negative")
        for channel in action.channels:
            if channel.type == ChannelType.WEBHOOK and not channel.webhook_url:
                errors.append(f"action {index}: webhook channel requires webhook_url")

    if rule.schedule.cooldown_minutes < 0:
        errors.append("cooldown_minutes must not be negative")
    if rule.schedule.enabled and not rule.schedule.time_windows:
        errors.append("an enabled schedule needs at least one time window")
    for window in rule.schedule.time_windows:
        if not window.days or any(d < 0 or d > 6 for d in window.days):
            errors.append("time window days must be within 0 (Sunday) .. 6 (Saturday)")
        try:
            zone(window.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"unknown timezone '{window.timezone}'")

    return errors
