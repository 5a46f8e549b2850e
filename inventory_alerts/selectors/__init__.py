"""Read-only alert queries."""

from inventory_alerts.selectors.alert_selector import AlertAnalytics, AlertSelector

__all__ = [
    "AlertAnalytics",
    "AlertSelector",
]
