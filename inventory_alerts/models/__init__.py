"""ORM models for the alerting engine."""

from inventory_alerts.models.alert import AlertModel, EscalationModel
from inventory_alerts.models.rule import AlertRuleModel

__all__ = [
    "AlertModel",
    "AlertRuleModel",
    "EscalationModel",
]
