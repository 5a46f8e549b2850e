"""
AlertRuleEngine -- periodic evaluation of configurable alert rules.

Responsibility:
    Every polling cycle, loads the active rules and for each one:
    skips it when outside every schedule window or still in cooldown,
    evaluates its conditions (AND) against the live metrics of every item
    in scope, and when at least one item matches hands the matches to
    AlertService, which raises the alert, runs the actions, arms the
    escalations and records ``last_triggered_at``.

Architecture position:
    Alerts > Services -- a PollingWorker.  Reads through InventorySelector;
    writes only through AlertService.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - Each rule is evaluated on its own session with a timeout; a rule that
      is slow or fails is logged and skipped for the cycle without affecting
      the other rules.
    - A rule whose timed-out evaluation is still running is skipped until
      it finishes; the hung worker keeps only its own abandoned pool.
    - Cooldown is checked here and again, under the rule lock, when the
      alert is raised.

Failure modes:
    - Nothing escapes ``tick()``.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_kernel.db.engine import session_scope
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.selectors.inventory_selector import InventorySelector

from inventory_alerts.domain.conditions import (
    condition_holds,
    is_in_cooldown,
    is_within_schedule,
    item_in_scope,
)
from inventory_alerts.domain.metrics import (
    DEFAULT_WINDOW_MINUTES,
    item_metrics,
    windowed_metrics,
)
from inventory_alerts.domain.types import AlertRuleDef
from inventory_alerts.models.rule import AlertRuleModel
from inventory_alerts.services.alert_service import AlertService, RuleMatch
from inventory_alerts.services.worker import PollingWorker

logger = get_logger("alerts.rule_engine")


def _scope_filter(values: list[tuple | None]) -> set | None:
    """Intersect the non-None scope tuples of a rule's conditions."""
    scope: set | None = None
    for value in values:
        if value is None:
            continue
        scope = set(value) if scope is None else scope & set(value)
    return scope


class AlertRuleEngine(PollingWorker):
    """
    Polling rule evaluator.

    Contract:
        - ``tick()`` evaluates every active rule once; returns the number
          of alerts raised.
        - ``evaluate_rule()`` returns the items matching a rule right now,
          ignoring schedule and cooldown.
    """

    name = "alert-rule-engine"

    def __init__(
        self,
        session_factory: Callable[[], Session],
        alert_service: AlertService,
        clock: Clock | None = None,
        *,
        interval_seconds: float = 300.0,
        rule_timeout_seconds: float = 30.0,
        max_workers: int = 4,
        expiry_warning_days: int = 7,
    ):
        super().__init__(interval_seconds)
        self._session_factory = session_factory
        self._alerts = alert_service
        self._clock = clock or SystemClock()
        self._rule_timeout = rule_timeout_seconds
        self._max_workers = max_workers
        self._expiry_warning_days = expiry_warning_days
        self._pool: ThreadPoolExecutor | None = None
        self._running: dict[UUID, Future] = {}

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Evaluate all active rules once (public for testing)."""
        now = self._clock.now()
        try:
            rules = self._active_rules()
        except SQLAlchemyError:
            logger.exception("rule_engine_load_failed")
            return 0

        fired = 0
        for rule in rules:
            if self.stopping:
                break
            with LogContext.bind(rule_id=str(rule.rule_id)):
                if self._process_rule(rule, now):
                    fired += 1

        logger.info(
            "rule_engine_tick_completed",
            extra={"rules_evaluated": len(rules), "alerts_raised": fired},
        )
        return fired

    def _active_rules(self) -> list[AlertRuleDef]:
        with session_scope(self._session_factory) as session:
            models = session.execute(
                select(AlertRuleModel)
                .where(AlertRuleModel.is_active == True)  # noqa: E712
                .order_by(AlertRuleModel.name)
            ).scalars()
            return [m.to_dto() for m in models]

    def _process_rule(self, rule: AlertRuleDef, now: datetime) -> bool:
        if not is_within_schedule(rule.schedule, now):
            logger.debug("rule_outside_schedule", extra={"rule_name": rule.name})
            return False
        if is_in_cooldown(rule, now):
            logger.debug("rule_in_cooldown", extra={"rule_name": rule.name})
            return False

        previous = self._running.get(rule.rule_id)
        if previous is not None:
            if not previous.done():
                logger.warning("rule_evaluation_still_running", extra={"rule_name": rule.name})
                return False
            del self._running[rule.rule_id]

        future: Future = self._executor().submit(self.evaluate_rule, rule, now)
        try:
            matches = future.result(timeout=self._rule_timeout)
        except FutureTimeoutError:
            if not future.cancel():
                # The worker cannot be interrupted; give later rules a fresh pool
                self._running[rule.rule_id] = future
                self._abandon_pool()
            logger.warning(
                "rule_evaluation_timeout",
                extra={"rule_name": rule.name, "timeout_seconds": self._rule_timeout},
            )
            return False
        except Exception:
            logger.exception("rule_evaluation_failed", extra={"rule_name": rule.name})
            return False

        if not matches:
            return False

        try:
            alert = self._alerts.raise_rule_alert(rule, matches, now)
        except Exception:
            logger.exception("rule_alert_failed", extra={"rule_name": rule.name})
            return False
        return alert is not None

    def _executor(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="rule-eval",
            )
        return self._pool

    def _abandon_pool(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None

    def stop(self, timeout: float = 30.0) -> None:
        super().stop(timeout)
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate_rule(self, rule: AlertRuleDef, now: datetime) -> list[RuleMatch]:
        """Items in the rule's scope that satisfy every condition at ``now``."""
        if not rule.conditions:
            return []

        store_ids = _scope_filter([c.store_ids for c in rule.conditions])
        product_ids = _scope_filter([c.product_ids for c in rule.conditions])
        item_ids = _scope_filter([c.item_ids for c in rule.conditions])

        with session_scope(self._session_factory) as session:
            selector = InventorySelector(session)
            items = [
                item
                for item in selector.list_items(
                    store_ids=store_ids, product_ids=product_ids, item_ids=item_ids,
                )
                if item_in_scope(rule.conditions, item)
            ]
            if not items:
                return []

            ids = [item.item_id for item in items]
            lots = selector.active_lots_by_item(ids)

            windows = {
                c.time_window_minutes or DEFAULT_WINDOW_MINUTES for c in rule.conditions
            }
            totals_by_window: dict[int, dict[UUID, object]] = {
                window: selector.movement_totals(ids, now - timedelta(minutes=window))
                for window in windows
            }

        matches: list[RuleMatch] = []
        for item in items:
            base = item_metrics(
                item, lots.get(item.item_id, ()), now, self._expiry_warning_days,
            )
            holds = True
            for condition in rule.conditions:
                window = condition.time_window_minutes or DEFAULT_WINDOW_MINUTES
                metrics = {
                    **base,
                    **windowed_metrics(totals_by_window[window].get(item.item_id)),
                }
                if not condition_holds(condition, metrics):
                    holds = False
                    break
            if holds:
                matches.append(
                    RuleMatch(
                        item_id=item.item_id,
                        store_id=item.store_id,
                        product_id=item.product_id,
                        metrics=base,
                    )
                )

        logger.debug(
            "rule_evaluated",
            extra={"rule_name": rule.name, "items_in_scope": len(items), "matches": len(matches)},
        )
        return matches
