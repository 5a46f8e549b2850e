"""Tests for the rule codec, rule validation and template rendering."""

from datetime import datetime, time, timezone
from uuid import uuid4

import pytest

from inventory_alerts.domain.codec import (
    action_from_dict,
    parse_time,
    rule_from_dict,
    rule_to_dict,
    validate_rule,
)
from inventory_alerts.domain.templates import render, render_template
from inventory_alerts.domain.types import (
    ActionType,
    Alert,
    AlertStatus,
    AlertTemplate,
    ChannelType,
    ConditionOperator,
    RuleCategory,
)

OUT_OF_STOCK_RULE = {
    "name": "Out of stock critical",
    "category": "stock",
    "severity": "critical",
    "conditions": [
        {"metric": "current_stock", "operator": "lte", "value": 0,
         "store_ids": ["store-1"]},
    ],
    "actions": [
        {"type": "notification",
         "channels": [{"type": "email", "recipients": ["manager@example.com"]}],
         "escalate_after_minutes": 60},
    ],
    "schedule": {
        "enabled": True,
        "cooldown_minutes": 30,
        "time_windows": [{"start": "08:00", "end": "22:00", "days": [1, 2, 3, 4, 5, 6]}],
    },
}


class TestRuleFromDict:

    def test_full_rule(self):
        rule = rule_from_dict(OUT_OF_STOCK_RULE)

        assert rule.rule_id is None
        assert rule.category == RuleCategory.STOCK
        assert rule.severity == "critical"
        (condition,) = rule.conditions
        assert condition.operator == ConditionOperator.LTE
        assert condition.store_ids == ("store-1",)
        assert condition.product_ids is None
        (action,) = rule.actions
        assert action.channels[0].type == ChannelType.EMAIL
        assert action.escalates
        assert rule.schedule.enabled
        assert rule.schedule.cooldown_minutes == 30
        assert rule.schedule.time_windows[0].start == time(8, 0)
        assert rule.schedule.time_windows[0].timezone == "UTC"

    def test_missing_schedule_is_disabled(self):
        data = dict(OUT_OF_STOCK_RULE)
        del data["schedule"]
        rule = rule_from_dict(data)
        assert not rule.schedule.enabled
        assert rule.schedule.cooldown_minutes == 0

    def test_unknown_operator_raises(self):
        data = dict(OUT_OF_STOCK_RULE, conditions=[
            {"metric": "current_stock", "operator": "between", "value": 0},
        ])
        with pytest.raises(ValueError):
            rule_from_dict(data)

    def test_missing_name_raises_key_error(self):
        data = dict(OUT_OF_STOCK_RULE)
        del data["name"]
        with pytest.raises(KeyError):
            rule_from_dict(data)

    def test_dict_form_is_stable(self):
        rule = rule_from_dict(OUT_OF_STOCK_RULE)
        assert rule_from_dict(rule_to_dict(rule)) == rule


class TestParseTime:

    def test_string(self):
        assert parse_time("07:30") == time(7, 30)

    def test_yaml_sexagesimal_int(self):
        # YAML 1.1 reads 08:00 as 480
        assert parse_time(480) == time(8, 0)


class TestActionShorthands:

    def test_sms_shorthand(self):
        action = action_from_dict({"type": "sms", "recipients": ["+15550100"]})
        assert action.type == ActionType.SMS
        assert action.recipients == ("+15550100",)
        assert not action.escalates


class TestValidateRule:

    def test_valid_rule_has_no_errors(self):
        assert validate_rule(rule_from_dict(OUT_OF_STOCK_RULE)) == []

    def test_no_conditions(self):
        rule = rule_from_dict(dict(OUT_OF_STOCK_RULE, conditions=[]))
        assert "at least one condition is required" in validate_rule(rule)

    def test_unknown_metric(self):
        rule = rule_from_dict(dict(OUT_OF_STOCK_RULE, conditions=[
            {"metric": "temperature", "operator": "gt", "value": 4},
        ]))
        assert any("unknown metric" in e for e in validate_rule(rule))

    def test_in_requires_list(self):
        rule = rule_from_dict(dict(OUT_OF_STOCK_RULE, conditions=[
            {"metric": "store_id", "operator": "in", "value": "store-1"},
        ]))
        assert any("'in' requires a list" in e for e in validate_rule(rule))

    def test_numeric_comparison_against_non_numeric_string(self):
        rule = rule_from_dict(dict(OUT_OF_STOCK_RULE, conditions=[
            {"metric": "current_stock", "operator": "lte", "value": "plenty"},
        ]))
        assert any("neither a number" in e for e in validate_rule(rule))

    def test_metric_reference_is_valid(self):
        rule = rule_from_dict(dict(OUT_OF_STOCK_RULE, conditions=[
            {"metric": "current_stock", "operator": "lte", "value": "min_threshold"},
        ]))
        assert validate_rule(rule) == []

    def test_webhook_action_needs_url(self):
        rule = rule_from_dict(dict(OUT_OF_STOCK_RULE, actions=[{"type": "webhook"}]))
        assert any("webhook requires webhook_url" in e for e in validate_rule(rule))

    def test_enabled_schedule_without_windows(self):
        rule = rule_from_dict(dict(OUT_OF_STOCK_RULE, schedule={"enabled": True}))
        assert "an enabled schedule needs at least one time window" in validate_rule(rule)

    def test_bad_weekday(self):
        rule = rule_from_dict(dict(OUT_OF_STOCK_RULE, schedule={
            "enabled": True,
            "time_windows": [{"start": "08:00", "end": "09:00", "days": [7]}],
        }))
        assert any("0 (Sunday) .. 6 (Saturday)" in e for e in validate_rule(rule))


def _alert(**overrides):
    fields = dict(
        alert_id=uuid4(),
        alert_type="low_stock",
        category="stock",
        severity="warning",
        title="Low stock",
        message="tomatoes is low",
        status=AlertStatus.ACTIVE,
        created_at=datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc),
        store_id="store-1",
        threshold=5,
        current_value=4,
        context={"product_id": "tomatoes"},
    )
    fields.update(overrides)
    return Alert(**fields)


class TestTemplates:

    def test_render_substitutes_alert_fields(self):
        template = AlertTemplate(
            template_id="stock_warning",
            name="Stock warning",
            subject="Low stock: {product_name}",
            message="{product_name} at {store_name}: {current_stock} left (min {min_threshold})",
        )
        subject, body = render_template(template, _alert())
        assert subject == "Low stock: tomatoes"
        assert body == "tomatoes at store-1: 4 left (min 5)"

    def test_unknown_placeholder_left_in_place(self):
        assert render("Hello {who}, {missing}", {"who": "ops"}) == "Hello ops, {missing}"

    def test_stray_braces_do_not_raise(self):
        assert render("{title} {", {"title": "Out"}) == "Out {"

    def test_payload_is_json_safe(self):
        alert = _alert()
        payload = alert.payload()
        assert payload["alert_id"] == str(alert.alert_id)
        assert payload["status"] == "active"
        assert payload["created_at"] == "2026-01-05T12:00:00+00:00"
