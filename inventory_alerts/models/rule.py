"""
ORM model for alert rules.

Contract:
    AlertRuleModel persists one configurable rule.  Conditions, actions and
    the schedule are JSON columns in the dict shape of
    inventory_alerts.domain.codec.  ``to_dto()`` returns an AlertRuleDef.

Invariants enforced:
    - Rule names are unique.
    - Rules are never deleted; deactivation clears is_active.
    - last_triggered_at is written only by the rule engine when the rule
      fires, in the same transaction as the alert it raised.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase
from inventory_kernel.domain.clock import as_utc

from inventory_alerts.domain.codec import (
    action_from_dict,
    action_to_dict,
    condition_from_dict,
    condition_to_dict,
    schedule_from_dict,
    schedule_to_dict,
)
from inventory_alerts.domain.types import AlertRuleDef, RuleCategory


class AlertRuleModel(TrackedBase):
    """Persistent alert rule."""

    __tablename__ = "alert_rules"

    __table_args__ = (
        Index("ix_alert_rules_active", "is_active"),
        Index("ix_alert_rules_category", "category"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)

    conditions: Mapped[list] = mapped_column(JSON, nullable=False)
    actions: Mapped[list] = mapped_column(JSON, nullable=False)
    schedule: Mapped[dict] = mapped_column(JSON, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_triggered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def apply(self, rule: AlertRuleDef) -> None:
        """Copy the editable fields of a rule definition onto this row."""
        self.name = rule.name
        self.description = rule.description
        self.category = rule.category.value
        self.severity = rule.severity
        self.conditions = [condition_to_dict(c) for c in rule.conditions]
        self.actions = [action_to_dict(a) for a in rule.actions]
        self.schedule = schedule_to_dict(rule.schedule)
        self.is_active = rule.is_active

    @classmethod
    def from_dto(cls, rule: AlertRuleDef) -> AlertRuleModel:
        model = cls(created_by=rule.created_by)
        model.apply(rule)
        return model

    def to_dto(self) -> AlertRuleDef:
        return AlertRuleDef(
            rule_id=self.id,
            name=self.name,
            description=self.description,
            category=RuleCategory(self.category),
            severity=self.severity,
            conditions=tuple(condition_from_dict(c) for c in self.conditions),
            actions=tuple(action_from_dict(a) for a in self.actions),
            schedule=schedule_from_dict(self.schedule),
            is_active=self.is_active,
            last_triggered_at=(
                as_utc(self.last_triggered_at) if self.last_triggered_at else None
            ),
            created_by=self.created_by,
        )
