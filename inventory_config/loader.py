"""
Configuration loader (``inventory_config.loader``).

Responsibility
--------------
Reads a YAML settings file and parses it into the frozen dataclasses of
``inventory_config.schema``.  Sections that are absent fall back to the
dataclass defaults; keys that are present are type-checked by conversion.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys (template ids, rule names)  -> ``KeyError``.
* Unknown keys or wrongly typed values  -> ``ValueError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import (
    AlertingSettings,
    DatabaseSettings,
    EscalationSettings,
    InventorySettings,
    LedgerSettings,
    ReconciliationSettings,
    TemplateSettings,
    ThresholdSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _section(cls: type, data: Mapping[str, Any] | None, name: str) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ValueError(f"section '{name}' must be a mapping")

    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"section '{name}': unknown keys {sorted(unknown)}")

    values: dict[str, Any] = {}
    for key, value in data.items():
        default = getattr(cls(), key)
        if isinstance(default, bool):
            if not isinstance(value, bool):
                raise ValueError(f"{name}.{key} must be true or false")
        elif isinstance(default, (int, float)) and not isinstance(default, bool):
            try:
                value = type(default)(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{name}.{key} must be a number") from exc
        values[key] = value
    return cls(**values)


def parse_alerting(data: Mapping[str, Any] | None) -> AlertingSettings:
    data = dict(data or {})
    raw_actions = data.pop("threshold_actions", None) or {}
    if not isinstance(raw_actions, Mapping):
        raise ValueError("alerting.threshold_actions must map alert types to action lists")
    base = _section(AlertingSettings, data, "alerting")
    actions = {
        str(alert_type): tuple(dict(a) for a in (action_list or ()))
        for alert_type, action_list in raw_actions.items()
    }
    return AlertingSettings(
        rule_interval_seconds=base.rule_interval_seconds,
        rule_timeout_seconds=base.rule_timeout_seconds,
        rule_workers=base.rule_workers,
        webhook_timeout_seconds=base.webhook_timeout_seconds,
        threshold_actions=actions,
    )


def parse_template(data: Mapping[str, Any]) -> TemplateSettings:
    return TemplateSettings(
        template_id=data["id"],
        name=data.get("name", data["id"]),
        subject=data["subject"],
        message=data["message"],
        category=data.get("category"),
        severity=data.get("severity"),
    )


def parse_settings(data: Mapping[str, Any]) -> InventorySettings:
    """Build InventorySettings from an already-loaded YAML mapping."""
    rules = tuple(dict(r) for r in data.get("default_rules") or ())
    for rule in rules:
        if "name" not in rule:
            raise KeyError("default_rules entry without 'name'")

    return InventorySettings(
        database=_section(DatabaseSettings, data.get("database"), "database"),
        ledger=_section(LedgerSettings, data.get("ledger"), "ledger"),
        thresholds=_section(ThresholdSettings, data.get("thresholds"), "thresholds"),
        alerting=parse_alerting(data.get("alerting")),
        escalation=_section(EscalationSettings, data.get("escalation"), "escalation"),
        reconciliation=_section(
            ReconciliationSettings, data.get("reconciliation"), "reconciliation",
        ),
        templates=tuple(parse_template(t) for t in data.get("templates") or ()),
        default_rules=rules,
    )


def load_settings(path: Path) -> InventorySettings:
    return parse_settings(load_yaml_file(path))
