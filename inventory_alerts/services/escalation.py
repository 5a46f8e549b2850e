"""
EscalationScheduler -- delayed, cancellable follow-ups of open alerts.

Responsibility:
    When an alert is raised with actions that carry ``escalate_after_minutes``,
    persists one Escalation per distinct delay (levels 1..n in delay order)
    with its absolute ``fire_at``, and arms a one-shot timer for each.
    When a timer fires and the alert is still ``active``, the escalation's
    actions are executed with the escalation template.  Acknowledging or
    resolving the alert cancels every pending escalation.

Architecture position:
    Alerts > Services.  Called by AlertService (schedule, cancel) and by the
    runtime (recover on start, shutdown on stop).

Invariants enforced:
    - Firing and cancelling take the same per-alert lock, and firing
      re-reads both the alert and the escalation inside it: a fire that
      loses the race to an acknowledgement is a no-op (status ``skipped``).
    - An escalation is marked ``fired`` and committed BEFORE its actions run,
      so it can never fire twice.
    - Pending escalations survive restarts: recover() re-arms future ones
      and fires past-due ones immediately.

Failure modes:
    - Timer callbacks run on background threads; their exceptions are
      logged, never raised.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Sequence
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_kernel.db.engine import session_scope
from inventory_kernel.domain.clock import Clock, SystemClock, as_utc
from inventory_kernel.exceptions import PersistenceFailureError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.locks import KeyedLockRegistry

from inventory_alerts.domain.codec import action_to_dict
from inventory_alerts.domain.types import (
    Alert,
    AlertAction,
    AlertStatus,
    Escalation,
    EscalationStatus,
)
from inventory_alerts.models.alert import AlertModel, EscalationModel
from inventory_alerts.services.actions import ActionExecutor

logger = get_logger("alerts.escalation")

TimerFactory = Callable[[float, Callable[[], None]], Any]


def alert_lock_key(alert_id: UUID) -> tuple[str, UUID]:
    return ("alert", alert_id)


def _default_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


def plan_levels(actions: Iterable[AlertAction]) -> list[tuple[int, int, tuple[AlertAction, ...]]]:
    """Group escalating actions by delay: [(level, delay_minutes, actions)]."""
    by_delay: dict[int, list[AlertAction]] = {}
    for action in actions:
        if action.escalates:
            by_delay.setdefault(action.escalate_after_minutes, []).append(action)
    return [
        (level, delay, tuple(by_delay[delay]))
        for level, delay in enumerate(sorted(by_delay), start=1)
    ]


class EscalationScheduler:
    """
    Persisted, timer-armed escalations.

    Contract:
        - ``schedule_for_alert`` persists and arms.
        - ``mark_cancelled`` (inside the caller's transaction) plus
          ``cancel_timers`` cancel; ``cancel_for_alert`` does both on its own.
        - ``fire`` / ``fire_due`` / ``recover`` are safe to call at any time.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor: ActionExecutor,
        clock: Clock | None = None,
        *,
        locks: KeyedLockRegistry | None = None,
        timer_factory: TimerFactory | None = None,
        actor: str = "escalation_scheduler",
    ):
        self._session_factory = session_factory
        self._executor = executor
        self._clock = clock or SystemClock()
        self._locks = locks or KeyedLockRegistry()
        self._timer_factory = timer_factory or _default_timer
        self._actor = actor
        self._timers: dict[UUID, tuple[UUID, Any]] = {}
        self._timers_lock = threading.Lock()

    @property
    def locks(self) -> KeyedLockRegistry:
        return self._locks

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def schedule_for_alert(
        self,
        alert: Alert,
        actions: Sequence[AlertAction],
    ) -> list[Escalation]:
        levels = plan_levels(actions)
        if not levels:
            return []

        created_at = as_utc(alert.created_at)
        try:
            with session_scope(self._session_factory) as session:
                models = [
                    EscalationModel(
                        alert_id=alert.alert_id,
                        level=level,
                        escalate_after_minutes=delay,
                        fire_at=created_at + timedelta(minutes=delay),
                        actions=[action_to_dict(a) for a in level_actions],
                        status=EscalationStatus.PENDING.value,
                    )
                    for level, delay, level_actions in levels
                ]
                session.add_all(models)
                session.flush()
                escalations = [m.to_dto() for m in models]
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("schedule_escalations", str(exc)) from exc

        for escalation in escalations:
            self._arm(escalation)
            logger.info(
                "escalation_scheduled",
                extra={
                    "alert_id": str(alert.alert_id),
                    "escalation_id": str(escalation.escalation_id),
                    "level": escalation.level,
                    "fire_at": escalation.fire_at,
                },
            )
        return escalations

    def _arm(self, escalation: Escalation) -> None:
        delay = (escalation.fire_at - self._clock.now_utc()).total_seconds()
        escalation_id = escalation.escalation_id
        timer = self._timer_factory(max(0.0, delay), lambda: self._on_timer(escalation_id))
        with self._timers_lock:
            previous = self._timers.pop(escalation_id, None)
            self._timers[escalation_id] = (escalation.alert_id, timer)
        if previous is not None:
            previous[1].cancel()
        timer.start()

    def _on_timer(self, escalation_id: UUID) -> None:
        with self._timers_lock:
            self._timers.pop(escalation_id, None)
        try:
            self.fire(escalation_id)
        except Exception:
            logger.exception(
                "escalation_timer_failed",
                extra={"escalation_id": str(escalation_id)},
            )

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def mark_cancelled(self, session: Session, alert_id: UUID) -> int:
        """Mark every pending escalation of the alert cancelled (caller commits)."""
        pending = session.execute(
            select(EscalationModel).where(
                EscalationModel.alert_id == alert_id,
                EscalationModel.status == EscalationStatus.PENDING.value,
            )
        ).scalars().all()
        for model in pending:
            model.status = EscalationStatus.CANCELLED.value
        session.flush()
        return len(pending)

    def cancel_timers(self, alert_id: UUID) -> int:
        with self._timers_lock:
            doomed = [
                (esc_id, timer)
                for esc_id, (owner, timer) in self._timers.items()
                if owner == alert_id
            ]
            for esc_id, _ in doomed:
                del self._timers[esc_id]
        for _, timer in doomed:
            timer.cancel()
        if doomed:
            logger.info(
                "escalation_timers_cancelled",
                extra={"alert_id": str(alert_id), "count": len(doomed)},
            )
        return len(doomed)

    def cancel_for_alert(self, alert_id: UUID) -> int:
        """Cancel all pending escalations of the alert in their own transaction."""
        with self._locks.hold(alert_lock_key(alert_id)):
            try:
                with session_scope(self._session_factory) as session:
                    cancelled = self.mark_cancelled(session, alert_id)
            except SQLAlchemyError as exc:
                raise PersistenceFailureError("cancel_escalations", str(exc)) from exc
            self.cancel_timers(alert_id)
        return cancelled

    # -------------------------------------------------------------------------
    # Firing
    # -------------------------------------------------------------------------

    def fire(self, escalation_id: UUID) -> bool:
        """
        Fire one escalation if it is still pending and its alert still active.

        Returns True when the escalation's actions were executed.
        """
        try:
            with session_scope(self._session_factory) as session:
                model = session.get(EscalationModel, escalation_id)
                if model is None:
                    return False
                alert_id = model.alert_id
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("fire_escalation", str(exc)) from exc

        with LogContext.bind(alert_id=str(alert_id)):
            with self._locks.hold(alert_lock_key(alert_id)):
                try:
                    with session_scope(self._session_factory) as session:
                        model = session.get(EscalationModel, escalation_id)
                        alert_model = session.get(AlertModel, alert_id)

                        if model is None or model.status != EscalationStatus.PENDING.value:
                            return False

                        if alert_model is None or alert_model.status != AlertStatus.ACTIVE.value:
                            model.status = EscalationStatus.SKIPPED.value
                            logger.info(
                                "escalation_skipped",
                                extra={
                                    "escalation_id": str(escalation_id),
                                    "alert_status": alert_model.status if alert_model else None,
                                },
                            )
                            return False

                        model.status = EscalationStatus.FIRED.value
                        model.performed_at = self._clock.now()
                        model.performed_by = self._actor
                        session.flush()
                        escalation = model.to_dto()
                        alert = alert_model.to_dto()
                except SQLAlchemyError as exc:
                    raise PersistenceFailureError("fire_escalation", str(exc)) from exc

                # Sent under the alert lock so a concurrent resolve waits for it
                outcomes = self._executor.execute(
                    alert, escalation.actions, escalation_level=escalation.level,
                )

        logger.info(
            "escalation_fired",
            extra={
                "escalation_id": str(escalation_id),
                "level": escalation.level,
                "actions_failed": sum(1 for o in outcomes if not o.succeeded),
            },
        )
        return True

    def _pending(self, due_only: bool) -> list[Escalation]:
        query = select(EscalationModel).where(
            EscalationModel.status == EscalationStatus.PENDING.value,
        )
        if due_only:
            query = query.where(EscalationModel.fire_at <= self._clock.now())
        query = query.order_by(EscalationModel.fire_at, EscalationModel.level)
        with session_scope(self._session_factory) as session:
            return [m.to_dto() for m in session.execute(query).scalars()]

    def fire_due(self) -> int:
        """Fire every pending escalation whose fire_at has passed."""
        fired = 0
        for escalation in self._pending(due_only=True):
            with self._timers_lock:
                entry = self._timers.pop(escalation.escalation_id, None)
            if entry is not None:
                entry[1].cancel()
            try:
                if self.fire(escalation.escalation_id):
                    fired += 1
            except Exception:
                logger.exception(
                    "escalation_fire_failed",
                    extra={"escalation_id": str(escalation.escalation_id)},
                )
        return fired

    def recover(self) -> int:
        """Re-arm pending escalations after a restart; past-due ones fire now."""
        fired = self.fire_due()
        armed = 0
        for escalation in self._pending(due_only=False):
            with self._timers_lock:
                if escalation.escalation_id in self._timers:
                    continue
            self._arm(escalation)
            armed += 1
        logger.info(
            "escalations_recovered",
            extra={"fired": fired, "armed": armed},
        )
        return armed

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def armed_count(self) -> int:
        with self._timers_lock:
            return len(self._timers)

    def armed_for(self, alert_id: UUID) -> int:
        with self._timers_lock:
            return sum(1 for owner, _ in self._timers.values() if owner == alert_id)

    def shutdown(self) -> None:
        """Cancel every armed timer.  Pending rows stay pending for recover()."""
        with self._timers_lock:
            timers = [timer for _, timer in self._timers.values()]
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        logger.info("escalation_scheduler_stopped", extra={"timers_cancelled": len(timers)})
