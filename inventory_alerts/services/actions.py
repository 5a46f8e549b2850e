"""
ActionExecutor -- runs a rule's actions for one alert, best-effort.

Responsibility:
    Executes each AlertAction in order: notifications fan out over their
    channels through the NotificationDispatcher, webhooks POST the alert
    payload, and auto_order / stock_adjustment invoke registered callbacks.

Architecture position:
    Alerts > Services.  Called by AlertService when an alert is raised and
    by EscalationScheduler when an escalation fires.

Invariants enforced:
    - Each action runs in its own try block.  A failure is wrapped in
      ActionExecutionError, logged, and recorded as a failed outcome; the
      remaining actions still run.
    - Within a notification action every channel is attempted even if an
      earlier channel failed.

Failure modes:
    - None propagate.  The outcomes tuple reports which actions failed.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping

from inventory_kernel.exceptions import ActionExecutionError
from inventory_kernel.logging_config import LogContext, get_logger

from inventory_alerts.domain.types import (
    ActionOutcome,
    ActionType,
    Alert,
    AlertAction,
    AlertTemplate,
    ChannelType,
    NotificationChannel,
)
from inventory_alerts.services.dispatch import NotificationDispatcher, WebhookSender

logger = get_logger("alerts.actions")

ActionCallback = Callable[[Alert, AlertAction], None]

ESCALATION_TEMPLATE_ID = "escalation"


class ActionExecutor:
    """Best-effort fan-out of alert actions."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        *,
        webhook_sender: WebhookSender | None = None,
        templates: Mapping[str, AlertTemplate] | None = None,
        callbacks: Mapping[ActionType, ActionCallback] | None = None,
    ):
        self._dispatcher = dispatcher
        self._webhooks = webhook_sender
        self._templates = dict(templates or {})
        self._callbacks: dict[ActionType, ActionCallback] = dict(callbacks or {})

    def register_callback(self, action_type: ActionType, callback: ActionCallback) -> None:
        if action_type not in (ActionType.AUTO_ORDER, ActionType.STOCK_ADJUSTMENT):
            raise ValueError("callbacks are only supported for auto_order and stock_adjustment")
        self._callbacks[action_type] = callback

    def template(self, template_id: str | None) -> AlertTemplate | None:
        return self._templates.get(template_id) if template_id else None

    def execute(
        self,
        alert: Alert,
        actions: Iterable[AlertAction],
        escalation_level: int | None = None,
    ) -> tuple[ActionOutcome, ...]:
        outcomes: list[ActionOutcome] = []
        with LogContext.bind(alert_id=str(alert.alert_id)):
            for action in actions:
                try:
                    self._run(alert, action, escalation_level)
                except ActionExecutionError as exc:
                    outcomes.append(self._failed(action, exc))
                except Exception as exc:
                    wrapped = ActionExecutionError(
                        str(alert.alert_id), action.type.value, str(exc),
                    )
                    wrapped.__cause__ = exc
                    outcomes.append(self._failed(action, wrapped))
                else:
                    outcomes.append(ActionOutcome(action.type.value, True))
                    logger.info(
                        "alert_action_executed",
                        extra={
                            "action_type": action.type.value,
                            "escalation_level": escalation_level,
                        },
                    )
        return tuple(outcomes)

    def _failed(self, action: AlertAction, error: ActionExecutionError) -> ActionOutcome:
        logger.error(
            "alert_action_failed",
            extra={"action_type": action.type.value},
            exc_info=error,
        )
        return ActionOutcome(action.type.value, False, error.detail)

    def _run(self, alert: Alert, action: AlertAction, escalation_level: int | None) -> None:
        if action.type in (ActionType.NOTIFICATION, ActionType.EMAIL, ActionType.SMS):
            self._notify(alert, action, escalation_level)
        elif action.type == ActionType.WEBHOOK:
            if not action.webhook_url:
                raise ActionExecutionError(str(alert.alert_id), action.type.value, "no webhook_url")
            if self._webhooks is None:
                raise ActionExecutionError(
                    str(alert.alert_id), action.type.value, "no webhook sender configured",
                )
            payload = alert.payload()
            if escalation_level is not None:
                payload["escalation_level"] = escalation_level
            self._webhooks.post(action.webhook_url, payload)
        else:
            callback = self._callbacks.get(action.type)
            if callback is None:
                raise ActionExecutionError(
                    str(alert.alert_id), action.type.value, "no callback registered",
                )
            callback(alert, action)

    def _channels(self, action: AlertAction) -> tuple[NotificationChannel, ...]:
        if action.type == ActionType.EMAIL:
            return (NotificationChannel(ChannelType.EMAIL, action.recipients),)
        if action.type == ActionType.SMS:
            return (NotificationChannel(ChannelType.SMS, action.recipients),)
        if action.recipients:
            return tuple(
                NotificationChannel(
                    c.type, c.recipients or action.recipients, c.webhook_url, c.channel_id,
                )
                for c in action.channels
            )
        return action.channels

    def _notify(self, alert: Alert, action: AlertAction, escalation_level: int | None) -> None:
        template = None
        if escalation_level is not None:
            template = self.template(ESCALATION_TEMPLATE_ID)
        template = template or self.template(action.template)
        if template is None and action.template is None:
            template = self.template(f"{alert.category}_{alert.severity}")

        failures: list[str] = []
        for channel in self._channels(action):
            try:
                self._dispatcher.dispatch(alert, channel, template)
            except Exception as exc:
                failures.append(f"{channel.type.value}: {exc}")

        if failures:
            raise ActionExecutionError(
                str(alert.alert_id), action.type.value, "; ".join(failures),
            )
