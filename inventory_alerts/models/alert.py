"""
ORM models for alerts and their escalations.

Contract:
    AlertModel persists one alert occurrence; EscalationModel persists one
    delayed follow-up of an alert, including the absolute time it is due so
    pending escalations can be re-armed after a restart.

Invariants enforced:
    - status follows ALERT_TRANSITIONS (enforced by AlertService).
    - (dedup_key, status) index supports the "open alert with this key"
      lookup that deduplicates threshold alerts.
    - One escalation row per (alert_id, level).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.clock import as_utc

from inventory_alerts.domain.codec import action_from_dict
from inventory_alerts.domain.types import (
    Alert,
    AlertStatus,
    Escalation,
    EscalationStatus,
)


def _utc(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


class AlertModel(Base):
    """Persistent alert."""

    __tablename__ = "inventory_alerts"

    __table_args__ = (
        Index("ix_inventory_alerts_dedup_status", "dedup_key", "status"),
        Index("ix_inventory_alerts_status_created", "status", "created_at"),
        Index("ix_inventory_alerts_store", "store_id"),
        Index("ix_inventory_alerts_rule", "rule_id"),
    )

    rule_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("alert_rules.id"), nullable=True,
    )
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    store_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    context: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    dedup_key: Mapped[str | None] = mapped_column(String(300), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AlertStatus.ACTIVE.value,
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    acknowledged_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    acknowledged_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resolved_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> Alert:
        return Alert(
            alert_id=self.id,
            rule_id=self.rule_id,
            alert_type=self.alert_type,
            category=self.category,
            severity=self.severity,
            title=self.title,
            message=self.message,
            status=AlertStatus(self.status),
            created_at=as_utc(self.created_at),
            item_id=self.item_id,
            store_id=self.store_id,
            threshold=self.threshold,
            current_value=self.current_value,
            context=dict(self.context or {}),
            dedup_key=self.dedup_key,
            is_read=self.is_read,
            acknowledged_at=_utc(self.acknowledged_at),
            acknowledged_by=self.acknowledged_by,
            acknowledged_notes=self.acknowledged_notes,
            resolved_at=_utc(self.resolved_at),
            resolved_by=self.resolved_by,
            resolved_notes=self.resolved_notes,
        )

    def __repr__(self) -> str:
        return f"<Alert {self.id}: {self.alert_type} {self.severity} {self.status}>"


class EscalationModel(Base):
    """Persistent escalation of one alert at one level."""

    __tablename__ = "alert_escalations"

    __table_args__ = (
        UniqueConstraint("alert_id", "level", name="uq_alert_escalation_level"),
        Index("ix_alert_escalations_status_fire_at", "status", "fire_at"),
    )

    alert_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inventory_alerts.id"), nullable=False,
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    escalate_after_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    fire_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actions: Mapped[list] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EscalationStatus.PENDING.value,
    )
    performed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    performed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def to_dto(self) -> Escalation:
        return Escalation(
            escalation_id=self.id,
            alert_id=self.alert_id,
            level=self.level,
            escalate_after_minutes=self.escalate_after_minutes,
            fire_at=as_utc(self.fire_at),
            actions=tuple(action_from_dict(a) for a in self.actions),
            status=EscalationStatus(self.status),
            performed_at=_utc(self.performed_at),
            performed_by=self.performed_by,
        )
