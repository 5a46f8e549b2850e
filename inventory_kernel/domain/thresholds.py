"""
Threshold evaluation -- pure function of an item and its active lots.

Rules:
    Stock level (mutually exclusive, most severe wins):
        current_stock <= 0              -> out_of_stock   (critical)
        current_stock <= min_threshold  -> low_stock      (warning)
        current_stock >= max_threshold  -> overstock      (info, max > 0)
    Expiry (independent of stock level, one per lot):
        expiry <= as_of + critical_days -> expiry_critical (critical)
        expiry <= as_of + warning_days  -> expiry_warning  (warning)

ZERO I/O.  ``as_of`` comes from the caller's Clock.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from inventory_kernel.domain.types import (
    AlertSeverity,
    AlertType,
    InventoryItem,
    Lot,
    ThresholdAlertRequest,
)


@dataclass(frozen=True)
class ThresholdPolicy:
    """Expiry windows, in days, for the expiry checks."""

    expiry_critical_days: int = 3
    expiry_warning_days: int = 7

    def __post_init__(self) -> None:
        if self.expiry_critical_days > self.expiry_warning_days:
            raise ValueError(
                "expiry_critical_days must not exceed expiry_warning_days"
            )


def _stock_level_request(item: InventoryItem) -> ThresholdAlertRequest | None:
    if item.current_stock <= 0:
        return ThresholdAlertRequest(
            item_id=item.item_id,
            store_id=item.store_id,
            product_id=item.product_id,
            alert_type=AlertType.OUT_OF_STOCK,
            severity=AlertSeverity.CRITICAL,
            title="Out of stock",
            message=f"{item.product_id} is out of stock",
            current_value=item.current_stock,
        )
    if item.current_stock <= item.min_threshold:
        return ThresholdAlertRequest(
            item_id=item.item_id,
            store_id=item.store_id,
            product_id=item.product_id,
            alert_type=AlertType.LOW_STOCK,
            severity=AlertSeverity.WARNING,
            title="Low stock",
            message=(
                f"{item.product_id} is at or below its minimum threshold "
                f"({item.current_stock}/{item.min_threshold})"
            ),
            current_value=item.current_stock,
            threshold=item.min_threshold,
        )
    if item.max_threshold > 0 and item.current_stock >= item.max_threshold:
        return ThresholdAlertRequest(
            item_id=item.item_id,
            store_id=item.store_id,
            product_id=item.product_id,
            alert_type=AlertType.OVERSTOCK,
            severity=AlertSeverity.INFO,
            title="Overstock",
            message=(
                f"{item.product_id} is at or above its maximum threshold "
                f"({item.current_stock}/{item.max_threshold})"
            ),
            current_value=item.current_stock,
            threshold=item.max_threshold,
        )
    return None


def _expiry_request(
    item: InventoryItem,
    lot: Lot,
    as_of: datetime,
    policy: ThresholdPolicy,
) -> ThresholdAlertRequest | None:
    if not lot.is_active or lot.expiry_date is None:
        return None

    critical_date = (as_of + timedelta(days=policy.expiry_critical_days)).date()
    warning_date = (as_of + timedelta(days=policy.expiry_warning_days)).date()

    if lot.expiry_date <= critical_date:
        alert_type, severity, days = (
            AlertType.EXPIRY_CRITICAL, AlertSeverity.CRITICAL, policy.expiry_critical_days,
        )
        title = "Critical expiry"
    elif lot.expiry_date <= warning_date:
        alert_type, severity, days = (
            AlertType.EXPIRY_WARNING, AlertSeverity.WARNING, policy.expiry_warning_days,
        )
        title = "Expiry approaching"
    else:
        return None

    return ThresholdAlertRequest(
        item_id=item.item_id,
        store_id=item.store_id,
        product_id=item.product_id,
        alert_type=alert_type,
        severity=severity,
        title=title,
        message=(
            f"Lot {lot.lot_number} of {item.product_id} expires within "
            f"{days} days ({lot.expiry_date.isoformat()})"
        ),
        current_value=lot.quantity,
        lot_number=lot.lot_number,
    )


def evaluate_thresholds(
    item: InventoryItem,
    lots: Iterable[Lot],
    as_of: datetime,
    policy: ThresholdPolicy | None = None,
) -> tuple[ThresholdAlertRequest, ...]:
    """Return every alert request the item's current state warrants."""
    policy = policy or ThresholdPolicy()
    requests: list[ThresholdAlertRequest] = []

    stock_request = _stock_level_request(item)
    if stock_request is not None:
        requests.append(stock_request)

    for lot in lots:
        expiry_request = _expiry_request(item, lot, as_of, policy)
        if expiry_request is not None:
            requests.append(expiry_request)

    return tuple(requests)
