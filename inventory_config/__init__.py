"""
inventory_config -- single public entrypoint for inventory settings.

Responsibility:
    ``get_settings()`` returns the InventorySettings the runtime is built
    from.  Settings come from the packaged ``defaults.yaml`` unless a path
    is given or ``INVENTORY_CONFIG_PATH`` names another file;
    ``INVENTORY_DATABASE_URL`` overrides the database URL either way.

Architecture position:
    Configuration.  Imports nothing from the kernel or the alerting package.

Failure modes:
    - ``FileNotFoundError`` -- the configured file does not exist.
    - ``ValueError`` / ``KeyError`` -- schema errors (see loader).
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from inventory_config.loader import load_settings, parse_settings
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

_logger = logging.getLogger("inventory_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_PATH_ENV = "INVENTORY_CONFIG_PATH"
DATABASE_URL_ENV = "INVENTORY_DATABASE_URL"


def get_settings(path: Path | str | None = None) -> InventorySettings:
    """Load settings from ``path``, $INVENTORY_CONFIG_PATH, or the defaults."""
    source = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULTS_PATH)
    settings = load_settings(source)

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        settings = replace(settings, database=replace(settings.database, url=database_url))

    _logger.info(
        "settings_loaded",
        extra={
            "source": str(source),
            "template_count": len(settings.templates),
            "default_rule_count": len(settings.default_rules),
            "database_overridden": bool(database_url),
        },
    )
    return settings


__all__ = [
    "AlertingSettings",
    "DatabaseSettings",
    "EscalationSettings",
    "InventorySettings",
    "LedgerSettings",
    "ReconciliationSettings",
    "TemplateSettings",
    "ThresholdSettings",
    "get_settings",
    "parse_settings",
]
