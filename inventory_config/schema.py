"""
Inventory settings schema.

Frozen dataclasses that the loader builds from YAML.  Alert rules and
threshold actions stay in the plain dict shape of
``inventory_alerts.domain.codec`` so this package does not depend on the
alerting package; the runtime parses them when it wires the services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///inventory.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10
    pool_timeout: int = 30


@dataclass(frozen=True)
class LedgerSettings:
    cache_ttl_seconds: float = 300.0
    max_conflict_retries: int = 3


@dataclass(frozen=True)
class ThresholdSettings:
    expiry_critical_days: int = 3
    expiry_warning_days: int = 7
    expiry_check_interval_seconds: float = 3600.0


@dataclass(frozen=True)
class AlertingSettings:
    rule_interval_seconds: float = 300.0
    rule_timeout_seconds: float = 30.0
    rule_workers: int = 4
    webhook_timeout_seconds: float = 10.0
    # alert_type (or "default") -> list of action dicts
    threshold_actions: dict[str, tuple[dict[str, Any], ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class EscalationSettings:
    enabled: bool = True
    actor: str = "escalation_scheduler"


@dataclass(frozen=True)
class ReconciliationSettings:
    enabled: bool = True
    interval_seconds: float = 86400.0


@dataclass(frozen=True)
class TemplateSettings:
    template_id: str
    name: str
    subject: str
    message: str
    category: str | None = None
    severity: str | None = None


@dataclass(frozen=True)
class InventorySettings:
    """Root settings object returned by ``get_settings()``."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    thresholds: ThresholdSettings = field(default_factory=ThresholdSettings)
    alerting: AlertingSettings = field(default_factory=AlertingSettings)
    escalation: EscalationSettings = field(default_factory=EscalationSettings)
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    templates: tuple[TemplateSettings, ...] = ()
    default_rules: tuple[dict[str, Any], ...] = ()
