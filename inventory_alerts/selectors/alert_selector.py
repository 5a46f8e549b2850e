"""
Module: inventory_alerts.selectors.alert_selector
Responsibility: Read-only queries over alerts and escalations, and the
    alert analytics summary (counts by severity and category, resolution
    rate, escalation rate, mean time to acknowledge).
Architecture position: Alerts > Selectors.  Reuses the kernel's
    BaseSelector; the caller owns the session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.clock import as_utc
from inventory_kernel.selectors.base import BaseSelector

from inventory_alerts.domain.types import (
    OPEN_ALERT_STATUSES,
    Alert,
    AlertStatus,
    Escalation,
    EscalationStatus,
)
from inventory_alerts.models.alert import AlertModel, EscalationModel


@dataclass(frozen=True)
class AlertAnalytics:
    store_id: str | None
    since: datetime | None
    total_alerts: int
    active_alerts: int
    by_severity: dict[str, int] = field(default_factory=dict)
    by_category: dict[str, int] = field(default_factory=dict)
    resolution_rate: Decimal = Decimal("0")
    escalation_rate: Decimal = Decimal("0")
    mean_acknowledge_minutes: Decimal | None = None


def _percent(part: int, whole: int) -> Decimal:
    if whole <= 0:
        return Decimal("0")
    return (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.01"))


class AlertSelector(BaseSelector):
    """Read-only alert queries."""

    def get_alert(self, alert_id: UUID) -> Alert | None:
        model = self.session.get(AlertModel, alert_id)
        return model.to_dto() if model is not None else None

    def list_alerts(
        self,
        status: AlertStatus | str | None = None,
        store_id: str | None = None,
        *,
        open_only: bool = False,
        item_id: UUID | None = None,
        rule_id: UUID | None = None,
        limit: int = 100,
    ) -> list[Alert]:
        """Alerts, newest first."""
        query = select(AlertModel)
        if status is not None:
            query = query.where(AlertModel.status == AlertStatus(status).value)
        if open_only:
            query = query.where(
                AlertModel.status.in_([s.value for s in OPEN_ALERT_STATUSES])
            )
        if store_id is not None:
            query = query.where(AlertModel.store_id == store_id)
        if item_id is not None:
            query = query.where(AlertModel.item_id == item_id)
        if rule_id is not None:
            query = query.where(AlertModel.rule_id == rule_id)
        query = query.order_by(AlertModel.created_at.desc()).limit(limit)
        return [m.to_dto() for m in self.session.execute(query).scalars()]

    def open_alert_for(self, dedup_key: str) -> Alert | None:
        model = self.session.execute(
            select(AlertModel)
            .where(
                AlertModel.dedup_key == dedup_key,
                AlertModel.status.in_([s.value for s in OPEN_ALERT_STATUSES]),
            )
            .limit(1)
        ).scalars().first()
        return model.to_dto() if model is not None else None

    def escalations_for(self, alert_id: UUID) -> list[Escalation]:
        models = self.session.execute(
            select(EscalationModel)
            .where(EscalationModel.alert_id == alert_id)
            .order_by(EscalationModel.level)
        ).scalars()
        return [m.to_dto() for m in models]

    def pending_escalations(self) -> list[Escalation]:
        models = self.session.execute(
            select(EscalationModel)
            .where(EscalationModel.status == EscalationStatus.PENDING.value)
            .order_by(EscalationModel.fire_at)
        ).scalars()
        return [m.to_dto() for m in models]

    def alert_analytics(
        self,
        store_id: str | None = None,
        since: datetime | None = None,
    ) -> AlertAnalytics:
        query = select(AlertModel)
        if store_id is not None:
            query = query.where(AlertModel.store_id == store_id)
        if since is not None:
            query = query.where(AlertModel.created_at >= since)
        alerts = [m.to_dto() for m in self.session.execute(query).scalars()]

        by_severity: dict[str, int] = {}
        by_category: dict[str, int] = {}
        for alert in alerts:
            by_severity[alert.severity] = by_severity.get(alert.severity, 0) + 1
            by_category[alert.category] = by_category.get(alert.category, 0) + 1

        resolved = sum(1 for a in alerts if a.status == AlertStatus.RESOLVED)
        active = sum(1 for a in alerts if a.status == AlertStatus.ACTIVE)

        escalated = 0
        if alerts:
            fired_ids = set(
                self.session.execute(
                    select(EscalationModel.alert_id)
                    .where(
                        EscalationModel.alert_id.in_([a.alert_id for a in alerts]),
                        EscalationModel.status == EscalationStatus.FIRED.value,
                    )
                    .distinct()
                ).scalars()
            )
            escalated = len(fired_ids)

        ack_minutes = [
            (as_utc(a.acknowledged_at) - as_utc(a.created_at)).total_seconds() / 60
            for a in alerts
            if a.acknowledged_at is not None
        ]
        mean_ack = (
            Decimal(str(sum(ack_minutes) / len(ack_minutes))).quantize(Decimal("0.01"))
            if ack_minutes else None
        )

        return AlertAnalytics(
            store_id=store_id,
            since=since,
            total_alerts=len(alerts),
            active_alerts=active,
            by_severity=by_severity,
            by_category=by_category,
            resolution_rate=_percent(resolved, len(alerts)),
            escalation_rate=_percent(escalated, len(alerts)),
            mean_acknowledge_minutes=mean_ack,
        )
