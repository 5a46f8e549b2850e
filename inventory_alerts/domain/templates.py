"""
Notification templates -- ``{variable}`` substitution over alert fields.

ZERO I/O.  Unknown placeholders are left in place rather than raising, so a
template with a typo still produces a readable message.
"""

from __future__ import annotations

import string
from collections.abc import Mapping
from typing import Any

from inventory_alerts.domain.types import Alert, AlertTemplate


class _Passthrough(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render(text: str, variables: Mapping[str, Any]) -> str:
    try:
        return string.Formatter().vformat(text, (), _Passthrough(variables))
    except (ValueError, IndexError, AttributeError):
        # Stray braces or positional fields: substitute what we can by hand
        for key, value in variables.items():
            text = text.replace("{" + key + "}", str(value))
        return text


def alert_variables(alert: Alert) -> dict[str, Any]:
    """Variables available to every template."""
    variables: dict[str, Any] = {
        "alert_id": alert.alert_id,
        "alert_type": alert.alert_type,
        "title": alert.title,
        "message": alert.message,
        "severity": alert.severity,
        "category": alert.category,
        "store_id": alert.store_id or "",
        "store_name": alert.store_id or "",
        "item_id": alert.item_id or "",
        "current_value": alert.current_value if alert.current_value is not None else "",
        "threshold": alert.threshold if alert.threshold is not None else "",
    }
    for key, value in alert.context.items():
        if isinstance(value, (str, int, float)) and key not in variables:
            variables[key] = value
    variables.setdefault("product_name", alert.context.get("product_id", ""))
    variables.setdefault("current_stock", variables["current_value"])
    variables.setdefault("min_threshold", variables["threshold"])
    return variables


def render_template(template: AlertTemplate, alert: Alert) -> tuple[str, str]:
    """Return (subject, body) for the alert."""
    variables = alert_variables(alert)
    return render(template.subject, variables), render(template.message, variables)
