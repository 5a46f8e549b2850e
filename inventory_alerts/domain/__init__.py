"""
inventory_alerts.domain -- Pure alerting types and evaluation.

ZERO I/O.  Rule evaluation, schedule windows, cooldowns, the rule codec and
template rendering.
"""

from inventory_alerts.domain.codec import (
    KNOWN_METRICS,
    rule_from_dict,
    validate_rule,
)
from inventory_alerts.domain.conditions import (
    compare,
    evaluate_conditions,
    is_in_cooldown,
    is_within_schedule,
    item_in_scope,
)
from inventory_alerts.domain.templates import render, render_template
from inventory_alerts.domain.types import (
    ActionOutcome,
    ActionType,
    Alert,
    AlertAction,
    AlertCondition,
    AlertRuleDef,
    AlertStatus,
    AlertTemplate,
    ChannelType,
    ConditionOperator,
    Escalation,
    EscalationStatus,
    NotificationChannel,
    RuleCategory,
    RuleSchedule,
    TimeWindow,
)

__all__ = [
    "KNOWN_METRICS",
    "ActionOutcome",
    "ActionType",
    "Alert",
    "AlertAction",
    "AlertCondition",
    "AlertRuleDef",
    "AlertStatus",
    "AlertTemplate",
    "ChannelType",
    "ConditionOperator",
    "Escalation",
    "EscalationStatus",
    "NotificationChannel",
    "RuleCategory",
    "RuleSchedule",
    "TimeWindow",
    "compare",
    "evaluate_conditions",
    "is_in_cooldown",
    "is_within_schedule",
    "item_in_scope",
    "render",
    "render_template",
    "rule_from_dict",
    "validate_rule",
]
