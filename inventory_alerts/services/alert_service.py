"""
AlertService -- alert creation, deduplication and lifecycle.

Responsibility:
    Turns threshold alert requests (from the ledger) and rule matches (from
    the rule engine) into persisted Alerts, runs their actions, arms their
    escalations, and moves alerts through acknowledge / resolve.

Architecture position:
    Alerts > Services -- orchestrating service.  Implements the kernel's
    ThresholdAlertSink protocol (``submit``), so the ledger can hand it
    requests without importing this package.

Invariants enforced:
    - Idempotent threshold alerting: while an alert with the same
      ``dedup_key`` is open (active or acknowledged) no new alert is
      created.  The check and the insert run under a per-key lock.
    - A rule alert and the rule's ``last_triggered_at`` commit together;
      cooldown is re-checked under the per-rule lock before inserting.
    - Status moves only along ALERT_TRANSITIONS.  Acknowledge / resolve
      mark pending escalations cancelled in the same transaction and
      cancel their timers before returning, under the per-alert lock the
      escalation scheduler also takes when firing.

Failure modes:
    - AlertNotFoundError, InvalidAlertTransitionError: to the caller.
    - PersistenceFailureError: the database call failed.
    - Action failures never propagate (see ActionExecutor).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_kernel.db.engine import session_scope
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.types import AlertType, ThresholdAlertRequest
from inventory_kernel.exceptions import (
    AlertNotFoundError,
    InvalidAlertTransitionError,
    PersistenceFailureError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.locks import KeyedLockRegistry

from inventory_alerts.domain.conditions import is_in_cooldown
from inventory_alerts.domain.types import (
    ALERT_TRANSITIONS,
    OPEN_ALERT_STATUSES,
    Alert,
    AlertAction,
    AlertRuleDef,
    AlertStatus,
)
from inventory_alerts.models.alert import AlertModel
from inventory_alerts.models.rule import AlertRuleModel
from inventory_alerts.services.actions import ActionExecutor
from inventory_alerts.services.escalation import EscalationScheduler, alert_lock_key

logger = get_logger("alerts.alert_service")

DEFAULT_ACTIONS_KEY = "default"


@dataclass(frozen=True)
class RuleMatch:
    """One item that satisfied every condition of a rule."""

    item_id: UUID
    store_id: str
    product_id: str
    metrics: dict[str, Any] = field(default_factory=dict)


def rule_lock_key(rule_id: UUID) -> tuple[str, UUID]:
    return ("rule", rule_id)


def _dedup_lock_key(dedup_key: str) -> tuple[str, str]:
    return ("dedup", dedup_key)


class AlertService:
    """
    Alert creation and lifecycle.

    Contract:
        - ``submit`` / ``raise_alert``: threshold requests, deduplicated.
        - ``raise_rule_alert``: one alert per rule firing.
        - ``acknowledge`` / ``resolve`` / ``mark_read`` / ``get_alert``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        *,
        executor: ActionExecutor,
        escalations: EscalationScheduler,
        threshold_actions: Mapping[str, Sequence[AlertAction]] | None = None,
        locks: KeyedLockRegistry | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._executor = executor
        self._escalations = escalations
        self._threshold_actions = {
            key: tuple(actions) for key, actions in (threshold_actions or {}).items()
        }
        self._locks = locks or escalations.locks

    # -------------------------------------------------------------------------
    # Threshold alerts
    # -------------------------------------------------------------------------

    def submit(self, requests: Sequence[ThresholdAlertRequest]) -> None:
        """ThresholdAlertSink entry point: raise each request, one by one."""
        for request in requests:
            self.raise_alert(request)

    def actions_for(self, alert_type: AlertType | str) -> tuple[AlertAction, ...]:
        key = alert_type.value if isinstance(alert_type, AlertType) else alert_type
        if key in self._threshold_actions:
            return self._threshold_actions[key]
        return self._threshold_actions.get(DEFAULT_ACTIONS_KEY, ())

    def raise_alert(self, request: ThresholdAlertRequest) -> Alert | None:
        """
        Raise a threshold alert unless one with the same dedup key is open.

        Returns:
            The new Alert, or None when the request was deduplicated.
        """
        dedup_key = request.dedup_key
        with LogContext.bind(item_id=str(request.item_id)):
            with self._locks.hold(_dedup_lock_key(dedup_key)):
                try:
                    with session_scope(self._session_factory) as session:
                        existing = self._open_alert(session, dedup_key)
                        if existing is not None:
                            logger.info(
                                "threshold_alert_deduplicated",
                                extra={
                                    "dedup_key": dedup_key,
                                    "existing_alert_id": str(existing.id),
                                },
                            )
                            return None

                        model = AlertModel(
                            alert_type=request.alert_type.value,
                            category=request.category,
                            severity=request.severity.value,
                            title=request.title,
                            message=request.message,
                            item_id=request.item_id,
                            store_id=request.store_id,
                            threshold=request.threshold,
                            current_value=request.current_value,
                            context=_threshold_context(request),
                            dedup_key=dedup_key,
                            status=AlertStatus.ACTIVE.value,
                            is_read=False,
                            created_at=self._clock.now(),
                        )
                        session.add(model)
                        session.flush()
                        alert = model.to_dto()
                except SQLAlchemyError as exc:
                    raise PersistenceFailureError("raise_alert", str(exc)) from exc

            logger.info(
                "threshold_alert_raised",
                extra={
                    "alert_id": str(alert.alert_id),
                    "alert_type": alert.alert_type,
                    "severity": alert.severity,
                    "dedup_key": dedup_key,
                },
            )
            self._dispatch(alert, self.actions_for(request.alert_type))
        return alert

    def _open_alert(self, session: Session, dedup_key: str) -> AlertModel | None:
        return session.execute(
            select(AlertModel)
            .where(
                AlertModel.dedup_key == dedup_key,
                AlertModel.status.in_([s.value for s in OPEN_ALERT_STATUSES]),
            )
            .limit(1)
        ).scalars().first()

    # -------------------------------------------------------------------------
    # Rule alerts
    # -------------------------------------------------------------------------

    def raise_rule_alert(
        self,
        rule: AlertRuleDef,
        matches: Sequence[RuleMatch],
        now: datetime | None = None,
    ) -> Alert | None:
        """
        Raise one alert for a rule firing and record ``last_triggered_at``.

        Returns None when the rule was deactivated or entered cooldown
        since the caller evaluated it.
        """
        if not matches:
            return None
        now = now or self._clock.now()

        with LogContext.bind(rule_id=str(rule.rule_id)):
            with self._locks.hold(rule_lock_key(rule.rule_id)):
                try:
                    with session_scope(self._session_factory) as session:
                        rule_model = session.get(AlertRuleModel, rule.rule_id)
                        if rule_model is None or not rule_model.is_active:
                            logger.info("rule_alert_skipped_inactive")
                            return None
                        current = rule_model.to_dto()
                        if is_in_cooldown(current, now):
                            logger.info("rule_alert_skipped_cooldown")
                            return None

                        model = self._rule_alert_model(current, matches, now)
                        session.add(model)
                        rule_model.last_triggered_at = now
                        session.flush()
                        alert = model.to_dto()
                except SQLAlchemyError as exc:
                    raise PersistenceFailureError("raise_rule_alert", str(exc)) from exc

            logger.info(
                "rule_alert_raised",
                extra={
                    "alert_id": str(alert.alert_id),
                    "rule_name": current.name,
                    "severity": alert.severity,
                    "match_count": len(matches),
                },
            )
            self._dispatch(alert, current.actions)
        return alert

    def _rule_alert_model(
        self,
        rule: AlertRuleDef,
        matches: Sequence[RuleMatch],
        now: datetime,
    ) -> AlertModel:
        first = matches[0]
        stores = sorted({m.store_id for m in matches})
        if len(matches) == 1:
            message = (
                f"Rule '{rule.name}' matched product {first.product_id} "
                f"in store {first.store_id}"
            )
        else:
            message = f"Rule '{rule.name}' matched {len(matches)} items"
        current_value = first.metrics.get("current_stock")
        return AlertModel(
            rule_id=rule.rule_id,
            alert_type=AlertType.RULE.value,
            category=rule.category.value,
            severity=rule.severity,
            title=rule.name,
            message=rule.description or message,
            item_id=first.item_id if len(matches) == 1 else None,
            store_id=stores[0] if len(stores) == 1 else None,
            current_value=current_value if isinstance(current_value, int) else None,
            context={
                "rule_name": rule.name,
                "product_id": first.product_id,
                "match_count": len(matches),
                "matches": [
                    {
                        "item_id": str(m.item_id),
                        "store_id": m.store_id,
                        "product_id": m.product_id,
                    }
                    for m in matches
                ],
            },
            status=AlertStatus.ACTIVE.value,
            is_read=False,
            created_at=now,
        )

    def _dispatch(self, alert: Alert, actions: Sequence[AlertAction]) -> None:
        if not actions:
            return
        # Escalating actions also run now; the escalation re-runs them later
        self._executor.execute(alert, actions)
        self._escalations.schedule_for_alert(alert, actions)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def get_alert(self, alert_id: UUID) -> Alert:
        try:
            with session_scope(self._session_factory) as session:
                model = session.get(AlertModel, alert_id)
                if model is None:
                    raise AlertNotFoundError(str(alert_id))
                return model.to_dto()
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("get_alert", str(exc)) from exc

    def acknowledge(self, alert_id: UUID, actor: str, notes: str | None = None) -> Alert:
        return self._transition(alert_id, AlertStatus.ACKNOWLEDGED, actor, notes)

    def resolve(self, alert_id: UUID, actor: str, notes: str | None = None) -> Alert:
        return self._transition(alert_id, AlertStatus.RESOLVED, actor, notes)

    def mark_read(self, alert_id: UUID) -> Alert:
        try:
            with session_scope(self._session_factory) as session:
                model = session.get(AlertModel, alert_id)
                if model is None:
                    raise AlertNotFoundError(str(alert_id))
                model.is_read = True
                session.flush()
                return model.to_dto()
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("mark_read", str(exc)) from exc

    def _transition(
        self,
        alert_id: UUID,
        target: AlertStatus,
        actor: str,
        notes: str | None,
    ) -> Alert:
        with LogContext.bind(alert_id=str(alert_id), actor_id=actor):
            with self._locks.hold(alert_lock_key(alert_id)):
                try:
                    with session_scope(self._session_factory) as session:
                        model = session.get(AlertModel, alert_id)
                        if model is None:
                            raise AlertNotFoundError(str(alert_id))

                        current = AlertStatus(model.status)
                        if target not in ALERT_TRANSITIONS[current]:
                            raise InvalidAlertTransitionError(
                                str(alert_id), current.value, target.value,
                            )

                        now = self._clock.now()
                        model.status = target.value
                        if target == AlertStatus.ACKNOWLEDGED:
                            model.acknowledged_at = now
                            model.acknowledged_by = actor
                            model.acknowledged_notes = notes
                        else:
                            model.resolved_at = now
                            model.resolved_by = actor
                            model.resolved_notes = notes

                        cancelled = self._escalations.mark_cancelled(session, alert_id)
                        session.flush()
                        alert = model.to_dto()
                except SQLAlchemyError as exc:
                    raise PersistenceFailureError(f"{target.value}_alert", str(exc)) from exc

                self._escalations.cancel_timers(alert_id)

            logger.info(
                "alert_status_changed",
                extra={
                    "from_status": current.value,
                    "to_status": target.value,
                    "escalations_cancelled": cancelled,
                },
            )
        return alert


def _threshold_context(request: ThresholdAlertRequest) -> dict[str, Any]:
    context: dict[str, Any] = {"product_id": request.product_id}
    if request.lot_number is not None:
        context["lot_number"] = request.lot_number
    return context
