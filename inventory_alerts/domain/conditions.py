"""
Rule evaluation -- pure functions over metrics, schedules and cooldowns.

ZERO I/O.  ``now`` always comes from the caller's Clock.

Rules:
    - Conditions are AND-ed.  A condition whose metric is unknown, or whose
      values cannot be compared, does not hold.
    - A string condition value naming a metric compares against that metric.
    - A disabled schedule is always open; an enabled schedule is open when
      ``now`` (in the window's timezone) falls inside any window.
      Windows whose end is before their start wrap past midnight; the
      weekday is the day the window started.
    - A rule is in cooldown while last_triggered_at + cooldown > now.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any
from zoneinfo import ZoneInfo

from inventory_kernel.domain.clock import as_utc
from inventory_kernel.domain.types import InventoryItem

from inventory_alerts.domain.types import (
    AlertCondition,
    AlertRuleDef,
    ConditionOperator,
    RuleSchedule,
    TimeWindow,
)


def _as_number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            return None
    return None


def compare(actual: Any, operator: ConditionOperator, expected: Any) -> bool:
    """Apply one comparison operator.  Incomparable values never match."""
    if actual is None:
        return False

    if operator == ConditionOperator.CONTAINS:
        if isinstance(actual, str):
            return str(expected).lower() in actual.lower()
        if isinstance(actual, (list, tuple, set, frozenset)):
            return expected in actual
        return False

    if operator == ConditionOperator.IN:
        if not isinstance(expected, (list, tuple, set, frozenset)):
            return False
        return actual in expected or str(actual) in {str(e) for e in expected}

    left = _as_number(actual)
    right = _as_number(expected)
    if left is None or right is None:
        if operator == ConditionOperator.EQ:
            return str(actual) == str(expected)
        return False

    if operator == ConditionOperator.GT:
        return left > right
    if operator == ConditionOperator.GTE:
        return left >= right
    if operator == ConditionOperator.LT:
        return left < right
    if operator == ConditionOperator.LTE:
        return left <= right
    if operator == ConditionOperator.EQ:
        return left == right
    return False


def resolve_expected(value: Any, metrics: Mapping[str, Any]) -> Any:
    """Replace a metric-name value with that metric's current value."""
    if isinstance(value, str) and value in metrics:
        return metrics[value]
    return value


def condition_holds(condition: AlertCondition, metrics: Mapping[str, Any]) -> bool:
    if condition.metric not in metrics:
        return False
    expected = resolve_expected(condition.value, metrics)
    return compare(metrics[condition.metric], condition.operator, expected)


def evaluate_conditions(
    conditions: Iterable[AlertCondition],
    metrics: Mapping[str, Any],
) -> bool:
    """True when every condition holds.  An empty condition list never fires."""
    conditions = tuple(conditions)
    if not conditions:
        return False
    return all(condition_holds(c, metrics) for c in conditions)


def item_in_scope(conditions: Iterable[AlertCondition], item: InventoryItem) -> bool:
    """True when the item passes every condition's scope filters."""
    for condition in conditions:
        if condition.store_ids is not None and item.store_id not in condition.store_ids:
            return False
        if condition.product_ids is not None and item.product_id not in condition.product_ids:
            return False
        if condition.item_ids is not None and item.item_id not in condition.item_ids:
            return False
    return True


def zone(name: str) -> tzinfo:
    """Resolve a timezone name; UTC needs no tz database."""
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _window_open(window: TimeWindow, now: datetime) -> bool:
    local = as_utc(now).astimezone(zone(window.timezone))
    current = local.time().replace(second=0, microsecond=0)
    day = (local.weekday() + 1) % 7  # 0=Sunday

    if window.start <= window.end:
        return day in window.days and window.start <= current <= window.end

    # Wraps past midnight: the late part belongs to today, the early part
    # to the window that started yesterday.
    if current >= window.start:
        return day in window.days
    if current <= window.end:
        return (day - 1) % 7 in window.days
    return False


def is_within_schedule(schedule: RuleSchedule, now: datetime) -> bool:
    if not schedule.enabled:
        return True
    return any(_window_open(w, now) for w in schedule.time_windows)


def cooldown_ends_at(rule: AlertRuleDef) -> datetime | None:
    if rule.last_triggered_at is None or rule.schedule.cooldown_minutes <= 0:
        return None
    return as_utc(rule.last_triggered_at) + timedelta(minutes=rule.schedule.cooldown_minutes)


def is_in_cooldown(rule: AlertRuleDef, now: datetime) -> bool:
    ends = cooldown_ends_at(rule)
    return ends is not None and ends > as_utc(now)
